"""
Error handling module for the listing search engine.

Provides the error taxonomy and per-phase timeout handling.
"""

from .errors import (
    AdapterUnavailable,
    IndexUnavailable,
    InvalidCriteria,
    PartialEnrichmentFailure,
    SearchError,
    SearchUnavailable,
    StoreUnavailable,
)
from .phase_guard import PhaseConfig, PhaseGuard

__all__ = [
    'AdapterUnavailable',
    'IndexUnavailable',
    'InvalidCriteria',
    'PartialEnrichmentFailure',
    'PhaseConfig',
    'PhaseGuard',
    'SearchError',
    'SearchUnavailable',
    'StoreUnavailable',
]
