"""
Odor Search Index for OpenSmell

Holds the static catalog of odorant chemicals and the search functions used
by the web interface. Each record links a PubChem compound (CID, name, SMILES)
to the odor descriptors collected for it and the sources they came from.

The index is loaded once from a bundled JSON document and never modified
afterwards. All searches are plain case-insensitive substring matches over
the in-memory records and always return records in index order.

Data sources:
- PubChem (https://pubchem.ncbi.nlm.nih.gov)
- Flavornet (Acree & Arn)
- The Good Scents Company
- Arctander, Perfume and Flavor Chemicals (1969)
- Leffingwell & Associates

Author: OpenSmell Development Team
"""

import json
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Any, Iterable, Iterator, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_INDEX_PATH = DATA_DIR / "odor_search_index.json"

PUBCHEM_COMPOUND_URL = "https://pubchem.ncbi.nlm.nih.gov/compound/{cid}"
CID_PREFIX = "cid_"

REQUIRED_FIELDS = ("cid", "name", "smiles", "descriptors", "sources")


class OdorIndexError(ValueError):
    """Raised when the odor index document is missing or malformed."""


def pubchem_url(cid: int) -> str:
    """Canonical PubChem compound page for a CID."""
    return PUBCHEM_COMPOUND_URL.format(cid=cid)


def _require_text(value: Any, key: str, where: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise OdorIndexError(f"{where}: '{key}' must be a non-empty string, got {value!r}")
    return value


def _require_text_list(value: Any, key: str, where: str) -> Tuple[str, ...]:
    if not isinstance(value, list):
        raise OdorIndexError(f"{where}: '{key}' must be an array of strings, got {type(value).__name__}")
    for item in value:
        _require_text(item, key, where)
    return tuple(value)


@dataclass(frozen=True)
class ChemicalRecord:
    """
    A single odorant in the index.

    descriptors and sources keep the order (and any duplicates) of the
    source document.
    """
    cid: int
    name: str
    smiles: str
    descriptors: Tuple[str, ...] = field(default_factory=tuple)
    sources: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def pubchem_url(self) -> str:
        return pubchem_url(self.cid)

    @property
    def display_id(self) -> str:
        return f"CID_{self.cid}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cid": self.cid,
            "name": self.name,
            "smiles": self.smiles,
            "descriptors": list(self.descriptors),
            "sources": list(self.sources),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: Optional[int] = None) -> 'ChemicalRecord':
        """
        Build a record from one entry of the index document.

        Raises:
            OdorIndexError: if a required field is missing or has the wrong type
        """
        where = f"record #{position}" if position is not None else "record"
        if not isinstance(data, dict):
            raise OdorIndexError(f"{where}: expected an object, got {type(data).__name__}")

        missing = [key for key in REQUIRED_FIELDS if key not in data]
        if missing:
            raise OdorIndexError(f"{where}: missing required field(s) {', '.join(missing)}")

        cid = data["cid"]
        # bool is an int subclass; reject it explicitly
        if isinstance(cid, bool) or not isinstance(cid, int) or cid <= 0:
            raise OdorIndexError(f"{where}: 'cid' must be a positive integer, got {cid!r}")

        return cls(
            cid=cid,
            name=_require_text(data["name"], "name", where),
            smiles=_require_text(data["smiles"], "smiles", where),
            descriptors=_require_text_list(data["descriptors"], "descriptors", where),
            sources=_require_text_list(data["sources"], "sources", where),
        )


class OdorIndex:
    """
    Read-only store of chemical records with the search operations over it.
    """

    def __init__(self, records: Iterable[ChemicalRecord]):
        self._records: Tuple[ChemicalRecord, ...] = tuple(records)
        self._cid_index: Dict[int, ChemicalRecord] = {}
        self._descriptor_index: Dict[str, List[int]] = {}
        self._search_keys: List[Tuple[str, str, str, Tuple[str, ...]]] = []
        self._build_indices()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'OdorIndex':
        """
        Load the index from a JSON array of records.

        Raises:
            OdorIndexError: if the file is missing, unreadable, or any record is invalid
        """
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                document = json.load(f)
        except FileNotFoundError:
            raise OdorIndexError(f"Odor index not found: {path}")
        except OSError as e:
            raise OdorIndexError(f"Cannot read odor index {path}: {e}")
        except json.JSONDecodeError as e:
            raise OdorIndexError(f"Odor index is not valid JSON ({path}): {e}")

        if not isinstance(document, list):
            raise OdorIndexError(f"Odor index must be a JSON array, got {type(document).__name__}")

        records = [ChemicalRecord.from_dict(entry, position=i) for i, entry in enumerate(document)]
        index = cls(records)
        logger.info(f"Loaded {len(index)} chemicals from {path}")
        return index

    def _build_indices(self):
        """Build lookup indices for fast access."""
        for position, record in enumerate(self._records):
            if record.cid in self._cid_index:
                raise OdorIndexError(f"Duplicate cid {record.cid} in odor index")
            self._cid_index[record.cid] = record

            # Descriptor -> positions, each position listed once per key
            for descriptor in set(d.lower() for d in record.descriptors):
                self._descriptor_index.setdefault(descriptor, []).append(position)

            self._search_keys.append((
                str(record.cid),
                record.name.lower(),
                record.smiles.lower(),
                tuple(d.lower() for d in record.descriptors),
            ))

    def get_all(self) -> List[ChemicalRecord]:
        """Get all records in index order."""
        return list(self._records)

    def lookup_by_id(self, cid: int) -> Optional[ChemicalRecord]:
        """Get a record by CID, or None if the index has no such compound."""
        return self._cid_index.get(cid)

    def _positions_for_term(self, term: str) -> set:
        positions = set()
        for descriptor, hits in self._descriptor_index.items():
            if term in descriptor:
                positions.update(hits)
        return positions

    def search_by_descriptors(self, terms: Sequence[str]) -> List[ChemicalRecord]:
        """
        Find records described by every one of the given odor terms.

        A record matches when, for each term, at least one of its
        descriptors contains the term (case-insensitive). An empty term
        list matches nothing.

        Args:
            terms: Odor terms, already split and trimmed by the caller

        Returns:
            Matching records in index order
        """
        if not terms:
            return []

        matched: Optional[set] = None
        for term in terms:
            positions = self._positions_for_term(term.lower())
            matched = positions if matched is None else matched & positions
            if not matched:
                return []

        return [self._records[i] for i in sorted(matched)]

    def search_by_chemical_query(self, query: str) -> List[ChemicalRecord]:
        """
        Find records whose CID, name, SMILES, or any descriptor contains the query.

        Matching is case-insensitive. A leading "cid_" is stripped before the
        query is compared against the CID, so "CID_1183" finds vanillin.
        Blank queries match nothing.
        """
        needle = (query or "").strip().lower()
        if not needle:
            return []

        cid_needle = needle[len(CID_PREFIX):] if needle.startswith(CID_PREFIX) else needle

        results = []
        for record, (cid_text, name, smiles, descriptors) in zip(self._records, self._search_keys):
            if cid_needle and cid_needle in cid_text:
                results.append(record)
            elif needle in name or needle in smiles:
                results.append(record)
            elif any(needle in d for d in descriptors):
                results.append(record)
        return results

    def descriptor_stats(self, top_n: int = 20) -> Dict[str, Any]:
        """
        Frequency of each descriptor across the index.

        Ties in the top list keep the order in which descriptors first
        appear in the index.
        """
        counts = Counter(d for record in self._records for d in record.descriptors)
        return {
            "total_descriptors": len(counts),
            "descriptor_counts": dict(counts),
            "top_descriptors": [
                {"descriptor": desc, "count": count}
                for desc, count in counts.most_common(top_n)
            ],
        }

    def source_stats(self) -> Dict[str, int]:
        """Number of records citing each source."""
        counts = Counter(s for record in self._records for s in set(record.sources))
        return dict(counts.most_common())

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ChemicalRecord]:
        return iter(self._records)

    def __contains__(self, cid: int) -> bool:
        return cid in self._cid_index


# Global index instance
_index: Optional[OdorIndex] = None
_index_lock = threading.Lock()


def load_index(path: Optional[Union[str, Path]] = None) -> OdorIndex:
    """
    Load the odor index from disk and install it as the global instance.

    Called once at application startup. Errors propagate so a corrupt
    dataset stops the service instead of serving partial data.
    """
    global _index
    index = OdorIndex.from_file(path or DEFAULT_INDEX_PATH)
    with _index_lock:
        _index = index
    return index


def get_index() -> OdorIndex:
    """Get the global odor index, loading the bundled dataset on first use."""
    global _index
    with _index_lock:
        if _index is None:
            _index = OdorIndex.from_file(DEFAULT_INDEX_PATH)
        return _index


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def search_by_odor(terms: Sequence[str]) -> List[ChemicalRecord]:
    """Search the global index by odor descriptors."""
    return get_index().search_by_descriptors(terms)


def search_by_chemical(query: str) -> List[ChemicalRecord]:
    """Search the global index by CID, name, SMILES, or descriptor."""
    return get_index().search_by_chemical_query(query)


def get_chemical_by_cid(cid: int) -> Optional[ChemicalRecord]:
    """Get a chemical by CID."""
    return get_index().lookup_by_id(cid)


def get_all_chemicals() -> List[ChemicalRecord]:
    """Get all chemicals."""
    return get_index().get_all()


def get_descriptor_stats(top_n: int = 20) -> Dict[str, Any]:
    """Get descriptor frequency statistics for the global index."""
    return get_index().descriptor_stats(top_n)
