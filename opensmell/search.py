"""
Search orchestration for OpenSmell.

Turns a (mode, query) pair from the web layer into a result list:
- odor mode splits the query on commas into descriptor terms
- chemical mode passes the raw query to the chemical search
- results beyond MAX_DISPLAY_RESULTS are cut off with an advisory notice

Also keeps the short list of recent searches shown on the landing page.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional, Sequence

from opensmell.chemdata.odor_index import ChemicalRecord, OdorIndex, get_index

logger = logging.getLogger(__name__)

MAX_DISPLAY_RESULTS = 500
RECENT_SEARCH_LIMIT = 10


class SearchMode(str, Enum):
    ODOR = "odor"
    CHEMICAL = "chemical"


def parse_search_mode(value: Optional[str]) -> SearchMode:
    """
    Resolve the ``type`` query parameter. Missing or blank means chemical.

    Raises:
        ValueError: for any value other than odor/chemical
    """
    if value is None or not value.strip():
        return SearchMode.CHEMICAL
    try:
        return SearchMode(value.strip().lower())
    except ValueError:
        raise ValueError(f"Unknown search type: '{value}' (expected 'odor' or 'chemical')")


def parse_odor_terms(query: Optional[str]) -> List[str]:
    """Split a comma separated odor query into trimmed, non-empty terms."""
    if not query:
        return []
    return [term.strip() for term in query.split(",") if term.strip()]


@dataclass
class SearchOutcome:
    """A displayable result list plus what was cut from it."""
    results: List[ChemicalRecord]
    total_matches: int
    truncated: bool = False
    notice: Optional[str] = None

    @property
    def result_count(self) -> int:
        return len(self.results)


def cap_results(records: Sequence[ChemicalRecord], limit: int = MAX_DISPLAY_RESULTS) -> SearchOutcome:
    """
    Keep the first ``limit`` records in index order.

    When records are dropped the outcome carries an advisory notice that
    reports the full, pre-truncation match count.
    """
    total = len(records)
    if total <= limit:
        return SearchOutcome(results=list(records), total_matches=total)

    notice = (
        f"Showing first {limit} of {total} results. "
        "Use specific search terms for better results."
    )
    logger.info(f"Search returned {total} matches, showing first {limit}")
    return SearchOutcome(
        results=list(records[:limit]),
        total_matches=total,
        truncated=True,
        notice=notice,
    )


def run_search(
    mode: SearchMode,
    query: Optional[str],
    index: Optional[OdorIndex] = None,
    limit: int = MAX_DISPLAY_RESULTS,
) -> SearchOutcome:
    """
    Run a search the way the search page does.

    Args:
        mode: odor or chemical
        query: Raw query string from the request
        index: Index to search (defaults to the global index)
        limit: Display cap

    Returns:
        SearchOutcome with capped results and advisory notice if any
    """
    if index is None:
        index = get_index()
    query = query or ""

    if mode == SearchMode.ODOR:
        matches = index.search_by_descriptors(parse_odor_terms(query))
    else:
        matches = index.search_by_chemical_query(query)

    logger.debug(f"{mode.value} search '{query}': {len(matches)} matches")
    return cap_results(matches, limit)


@dataclass
class RecentSearch:
    query: str
    type: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        return asdict(self)


class RecentSearches:
    """
    Thread-safe, bounded log of recent searches, newest first.
    """

    def __init__(self, limit: int = RECENT_SEARCH_LIMIT):
        self._entries = deque(maxlen=limit)
        self._lock = threading.RLock()

    def record(self, query: str, mode: SearchMode) -> Optional[RecentSearch]:
        """Record a search. Blank queries are ignored."""
        if not query or not query.strip():
            return None
        entry = RecentSearch(query=query.strip(), type=mode.value)
        with self._lock:
            self._entries.appendleft(entry)
        return entry

    def list(self) -> List[RecentSearch]:
        with self._lock:
            return list(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
