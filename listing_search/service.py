"""
Engine assembly: wires the adapters, radius filter, and enricher into an
orchestrator from one settings object.
"""

from typing import Optional

import aiohttp
import asyncpg
from prometheus_client import CollectorRegistry

from listing_search.config import SearchSettings
from listing_search.enrichment import ResultEnricher
from listing_search.error_handling import PhaseGuard
from listing_search.geo import GeoRadiusFilter, GeoReference
from listing_search.metrics import SearchMetrics
from listing_search.orchestrator import SearchOrchestrator
from listing_search.sources import RelationalStore, TextIndexClient


def build_orchestrator(
    settings: SearchSettings,
    pg_pool: asyncpg.Pool,
    http_session: Optional[aiohttp.ClientSession],
    registry: Optional[CollectorRegistry] = None
) -> SearchOrchestrator:
    """
    Build a search orchestrator over shared connection pools.

    Args:
        settings: Engine settings
        pg_pool: asyncpg pool for the relational store
        http_session: Session for the full-text index (the client opens its
            own when None)
        registry: Prometheus registry for the engine's metrics (a fresh one
            when None)

    Returns:
        Ready-to-use SearchOrchestrator
    """
    store = RelationalStore(
        pg_pool, acquire_timeout_ms=settings.database.acquire_timeout_ms
    )
    geo_reference = GeoReference(store)

    return SearchOrchestrator(
        primary=TextIndexClient(settings.index, session=http_session),
        fallback=store,
        geo_filter=GeoRadiusFilter(
            store,
            geo_reference,
            unit=settings.geo.distance_unit,
            spatial_pushdown=settings.geo.spatial_pushdown,
        ),
        enricher=ResultEnricher(
            geo_reference, store, timeout_ms=settings.timeouts.enrichment_ms
        ),
        settings=settings,
        metrics=SearchMetrics(registry),
        phase_guard=PhaseGuard(),
    )
