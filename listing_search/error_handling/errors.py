"""
Error taxonomy for the listing search engine.

Callers only ever see InvalidCriteria or SearchUnavailable. The adapter
errors are raised inside the engine and either recovered by fallback or
translated before they leave the orchestrator.
"""


class SearchError(Exception):
    """Base class for all search engine errors."""


class InvalidCriteria(SearchError, ValueError):
    """Raised when search criteria fail validation.

    Never retried and never triggers the relational fallback.
    """


class AdapterUnavailable(SearchError):
    """A backing adapter failed (timeout, connection error, bad response).

    Attributes:
        phase: Name of the phase that failed (e.g. "index", "geo")
    """

    def __init__(self, message: str, phase: str = "unknown"):
        super().__init__(message)
        self.phase = phase


class IndexUnavailable(AdapterUnavailable):
    """The full-text index could not serve the request."""


class StoreUnavailable(AdapterUnavailable):
    """The relational store could not serve the request."""


class SearchUnavailable(SearchError):
    """Search is temporarily unavailable.

    Distinct from an empty result: an empty list with no error means there
    were no matches.
    """


class PartialEnrichmentFailure(SearchError):
    """A display metadata lookup failed. Rows are kept with empty metadata."""

    def __init__(self, message: str, field: str):
        super().__init__(message)
        self.field = field
