"""
OpenSmell Chemical Data Package

This package provides the odor search index: PubChem compounds paired with
the odor descriptors reported for them, plus the search functions over it.

Author: OpenSmell Development Team
"""

from .odor_index import (
    ChemicalRecord,
    OdorIndex,
    OdorIndexError,
    DEFAULT_INDEX_PATH,
    pubchem_url,
    load_index,
    get_index,
    search_by_odor,
    search_by_chemical,
    get_chemical_by_cid,
    get_all_chemicals,
    get_descriptor_stats
)

__all__ = [
    'ChemicalRecord',
    'OdorIndex',
    'OdorIndexError',
    'DEFAULT_INDEX_PATH',
    'pubchem_url',
    'load_index',
    'get_index',
    'search_by_odor',
    'search_by_chemical',
    'get_chemical_by_cid',
    'get_all_chemicals',
    'get_descriptor_stats'
]
