"""Display metadata enrichment for search results"""

from .result_enricher import ResultEnricher

__all__ = ["ResultEnricher"]
