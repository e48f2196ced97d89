"""Candidate sources: the full-text index and its relational fallback"""

from .base import (
    EFFECTIVE_SORT,
    CandidateFilter,
    CandidateSource,
    CandidateWindow,
    EffectiveSort,
    SortField,
    SourceKind,
    fetch_window,
)
from .relational import RelationalStore
from .text_index import TextIndexClient

__all__ = [
    "EFFECTIVE_SORT",
    "CandidateFilter",
    "CandidateSource",
    "CandidateWindow",
    "EffectiveSort",
    "RelationalStore",
    "SortField",
    "SourceKind",
    "TextIndexClient",
    "fetch_window",
]
