"""Request dependencies resolved from application state"""

from fastapi import HTTPException, Request
from prometheus_client import CollectorRegistry

from listing_search.orchestrator import SearchOrchestrator, UNAVAILABLE_MESSAGE
from .cache import SearchResultCache


def get_orchestrator(request: Request) -> SearchOrchestrator:
    """Get the search orchestrator built at startup"""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail=UNAVAILABLE_MESSAGE)
    return orchestrator


def get_search_cache(request: Request) -> SearchResultCache:
    """Get the result cache, a disabled one when none was configured"""
    cache = getattr(request.app.state, "search_cache", None)
    if cache is None:
        return SearchResultCache(None, enabled=False)
    return cache


def get_metrics_registry(request: Request) -> CollectorRegistry:
    registry = getattr(request.app.state, "metrics_registry", None)
    if registry is None:
        registry = CollectorRegistry()
    return registry
