"""
Tests for the search orchestrator.

The orchestrator runs over in-memory doubles of the index, the relational
store, and the geo reference, so the full search flow (fallback, radius
filter, re-pagination, hydration, enrichment, metrics) is exercised without
live services.
"""

import pytest
import asyncio
from decimal import Decimal

from hypothesis import given, settings, strategies as st
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from listing_search.config import IndexConfig, SearchSettings, TimeoutConfig, WindowConfig
from listing_search.error_handling import (
    IndexUnavailable,
    InvalidCriteria,
    SearchUnavailable,
    StoreUnavailable,
)
from listing_search.models import GeoPoint, SearchCriteria, SortMode
from tests.fakes import (
    CENTER,
    Engine,
    InMemorySource,
    ListingWorld,
    make_listing,
    point_north_of,
)


SEATTLE = GeoPoint(id=10, display_name="Seattle, WA", latitude=47.6062, longitude=-122.3321)


def bicycle_world():
    return ListingWorld(listings=[
        make_listing("l-1", title="Road bicycle", age_hours=5),
        make_listing("l-2", title="Oak desk", age_hours=1),
        make_listing("l-3", title="Kids Bicycle with helmet", age_hours=2),
        make_listing("l-4", title="Lamp", age_hours=3),
        make_listing("l-5", title="Bookshelf", age_hours=4),
    ])


def seattle_world():
    near5 = point_north_of(11, 5.0, center=SEATTLE)
    far30 = point_north_of(12, 30.0, center=SEATTLE)
    near10 = point_north_of(13, 10.0, center=SEATTLE)
    return ListingWorld(
        listings=[
            make_listing("e-5", category_id="electronics", price=Decimal("100"), location_id=11, age_hours=3),
            make_listing("e-30", category_id="electronics", price=Decimal("200"), location_id=12, age_hours=1),
            make_listing("e-10", category_id="electronics", price=Decimal("300"), location_id=13, age_hours=2),
            make_listing("f-1", category_id="furniture", price=Decimal("100"), location_id=11),
            make_listing("e-cheap", category_id="electronics", price=Decimal("20"), location_id=11),
        ],
        locations=[SEATTLE, near5, far30, near10],
        images={"e-5": 2},
    )


def radius_world(distances, ages=None):
    """Listing l-NNN sits distances[NNN] miles north of CENTER."""
    locations = [CENTER]
    listings = []
    for position, distance in enumerate(distances):
        location_id = 100 + position
        locations.append(point_north_of(location_id, distance))
        age = ages[position] if ages else position
        listings.append(make_listing(f"l-{position:03d}", location_id=location_id, age_hours=age))
    return ListingWorld(listings=listings, locations=locations)


# Scenarios

@pytest.mark.asyncio
async def test_text_search_returns_matches_newest_first():
    engine = Engine(bicycle_world())

    rows = await engine.orchestrator.search(SearchCriteria(query="bicycle", limit=2))

    assert [row.id for row in rows] == ["l-3", "l-1"]
    assert all(row.distance is None for row in rows)
    assert engine.sample("marketplace_search_index_errors_total", {"operation": "search"}) == 0


@pytest.mark.asyncio
async def test_geographic_distance_sort():
    engine = Engine(seattle_world())
    criteria = SearchCriteria(
        category_id="electronics",
        min_price=Decimal("50"),
        max_price=Decimal("500"),
        location_id=SEATTLE.id,
        radius=25,
        sort_by=SortMode.DISTANCE,
        limit=10,
    )

    rows = await engine.orchestrator.search(criteria)

    assert [row.id for row in rows] == ["e-5", "e-10"]
    assert rows[0].distance == pytest.approx(5.0, abs=1e-6)
    assert rows[1].distance == pytest.approx(10.0, abs=1e-6)
    assert rows[0].location_name == "Town 11, IL"
    assert rows[0].image_count == 2


@pytest.mark.asyncio
async def test_index_failure_falls_back_with_same_results():
    healthy = Engine(bicycle_world())
    degraded = Engine(bicycle_world(), primary_error=ConnectionError("index down"))
    criteria = SearchCriteria(query="bicycle", limit=2)

    expected = await healthy.orchestrator.search(criteria)
    rows = await degraded.orchestrator.search(criteria)

    assert rows == expected
    assert degraded.store.called("find_candidates") == 1
    assert degraded.sample(
        "marketplace_search_index_errors_total", {"operation": "search"}
    ) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("pushdown", [True, False])
async def test_geographic_search_falls_back_with_same_window(pushdown):
    world = radius_world([3.0, 1.0, 30.0, 2.0, 4.0, 8.0])
    healthy = Engine(world, spatial_pushdown=pushdown)
    degraded = Engine(world, primary_error=ConnectionError("index down"), spatial_pushdown=pushdown)
    criteria = SearchCriteria(
        location_id=CENTER.id, radius=5, sort_by=SortMode.DISTANCE, offset=1, limit=2
    )

    expected = await healthy.orchestrator.search(criteria)
    rows = await degraded.orchestrator.search(criteria)

    assert rows == expected
    assert [row.id for row in rows] == ["l-003", "l-000"]
    windows = [args[1:] for name, args in degraded.store.calls if name == "find_candidates"]
    assert windows == [(0, 20)]
    assert degraded.sample(
        "marketplace_search_index_errors_total", {"operation": "search"}
    ) == 1


@pytest.mark.asyncio
async def test_count_falls_back_to_store():
    healthy = Engine(bicycle_world())
    degraded = Engine(bicycle_world(), primary_error=ConnectionError("index down"))
    criteria = SearchCriteria(query="bicycle", offset=1, limit=1)

    assert await degraded.orchestrator.count(criteria) == await healthy.orchestrator.count(criteria) == 2
    assert degraded.store.called("count_candidates") == 1
    assert degraded.sample(
        "marketplace_search_index_errors_total", {"operation": "count"}
    ) == 1
    assert degraded.sample(
        "marketplace_search_index_errors_total", {"operation": "search"}
    ) == 0


@pytest.mark.asyncio
async def test_offset_past_filtered_set_returns_empty_page():
    engine = Engine(radius_world([1.0, 2.0, 3.0]))
    criteria = SearchCriteria(location_id=CENTER.id, radius=5, offset=1000, limit=10)

    rows = await engine.orchestrator.search(criteria)

    assert rows == []
    assert engine.store.called("load_listings") == 0


# Failure semantics

@pytest.mark.asyncio
async def test_fallback_failure_raises_search_unavailable():
    engine = Engine(
        bicycle_world(),
        primary_error=IndexUnavailable("index down", phase="index"),
        store_failing={"find_candidates"},
    )

    with pytest.raises(SearchUnavailable) as exc_info:
        await engine.orchestrator.search(SearchCriteria(query="bicycle"))

    assert isinstance(exc_info.value.__cause__, StoreUnavailable)
    assert engine.sample("marketplace_search_index_errors_total", {"operation": "search"}) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("failing", ["radius_distances", "load_listings"])
async def test_geo_or_hydration_failure_raises_search_unavailable(failing):
    engine = Engine(radius_world([1.0, 2.0]), store_failing={failing})

    with pytest.raises(SearchUnavailable):
        await engine.orchestrator.search(SearchCriteria(location_id=CENTER.id, radius=5))


@pytest.mark.asyncio
async def test_invalid_criteria_never_reaches_a_source():
    engine = Engine(bicycle_world())

    with pytest.raises(InvalidCriteria):
        await engine.orchestrator.search(SearchCriteria(limit=0))
    with pytest.raises(InvalidCriteria):
        await engine.orchestrator.count(SearchCriteria(radius=25))

    assert engine.primary.calls == []
    assert engine.store.calls == []
    assert engine.sample("marketplace_search_index_errors_total", {"operation": "search"}) == 0


@pytest.mark.asyncio
async def test_request_budget_exceeded_raises_search_unavailable():
    class SlowSource(InMemorySource):
        async def find_candidates(self, criteria, window_offset, window_limit):
            await asyncio.sleep(1)
            return []

    settings = SearchSettings(timeouts=TimeoutConfig(index_phase_ms=0, request_budget_ms=20))
    engine = Engine(bicycle_world(), settings=settings)
    engine.orchestrator.primary = SlowSource(engine.world)

    with pytest.raises(SearchUnavailable):
        await engine.orchestrator.search(SearchCriteria(query="bicycle"))


@pytest.mark.asyncio
async def test_slow_index_times_out_and_falls_back():
    class SlowSource(InMemorySource):
        async def find_candidates(self, criteria, window_offset, window_limit):
            await asyncio.sleep(1)
            return []

    settings = SearchSettings(timeouts=TimeoutConfig(index_phase_ms=10))
    engine = Engine(bicycle_world(), settings=settings)
    engine.orchestrator.primary = SlowSource(engine.world)

    rows = await engine.orchestrator.search(SearchCriteria(query="bicycle"))

    assert [row.id for row in rows] == ["l-3", "l-1"]
    assert engine.sample("marketplace_search_index_errors_total", {"operation": "search"}) == 1


@pytest.mark.asyncio
async def test_cancellation_propagates():
    started = asyncio.Event()

    class HangingSource(InMemorySource):
        async def find_candidates(self, criteria, window_offset, window_limit):
            started.set()
            await asyncio.sleep(10)

    settings = SearchSettings(timeouts=TimeoutConfig(index_phase_ms=0))
    engine = Engine(bicycle_world(), settings=settings)
    engine.orchestrator.primary = HangingSource(engine.world)

    task = asyncio.create_task(engine.orchestrator.search(SearchCriteria(query="bicycle")))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert engine.store.calls == []


# Ordering and pagination

@pytest.mark.asyncio
async def test_non_distance_sort_keeps_candidate_order():
    world = radius_world([4.0, 1.0, 30.0, 2.0], ages=[1, 4, 0, 2])
    engine = Engine(world)

    rows = await engine.orchestrator.search(
        SearchCriteria(location_id=CENTER.id, radius=5, sort_by=SortMode.NEWEST)
    )

    # newest first among those within 5 miles: l-000 (1h), l-003 (2h), l-001 (4h)
    assert [row.id for row in rows] == ["l-000", "l-003", "l-001"]
    assert [round(row.distance, 6) for row in rows] == [4.0, 2.0, 1.0]


@pytest.mark.asyncio
async def test_listing_gone_before_hydration_is_dropped():
    class StaleSource(InMemorySource):
        async def find_candidates(self, criteria, window_offset, window_limit):
            ids = await super().find_candidates(criteria, window_offset, window_limit)
            return ["ghost"] + ids

    engine = Engine(bicycle_world())
    engine.orchestrator.primary = StaleSource(engine.world)

    rows = await engine.orchestrator.search(SearchCriteria(query="bicycle", limit=3))

    assert [row.id for row in rows] == ["l-3", "l-1"]


@given(
    distances=st.lists(
        st.integers(min_value=0, max_value=80).filter(lambda n: n != 50).map(lambda n: n / 2),
        max_size=30
    ),
    limit=st.integers(min_value=1, max_value=10),
    offset=st.integers(min_value=0, max_value=35),
    sort_by=st.sampled_from([SortMode.DISTANCE, SortMode.NEWEST]),
    pushdown=st.booleans(),
)
@settings(max_examples=100, deadline=None)
def test_geographic_pagination(distances, limit, offset, sort_by, pushdown):
    """
    **Feature: listing-search, Property 11: Geographic re-pagination**

    A geographic page is the [offset, offset + limit) slice of the windowed
    candidates that lie within the radius, in the requested order.
    """
    world = radius_world(distances)
    engine = Engine(world, spatial_pushdown=pushdown)
    criteria = SearchCriteria(
        location_id=CENTER.id, radius=25, sort_by=sort_by, offset=offset, limit=limit
    )

    rows = asyncio.run(engine.orchestrator.search(criteria))

    window = world.matching_ids(criteria)[:min(500, limit * 10)]
    within = [
        (rank, listing_id, distances[int(listing_id[2:])])
        for rank, listing_id in enumerate(window)
        if distances[int(listing_id[2:])] <= 25
    ]
    if sort_by is SortMode.DISTANCE:
        within.sort(key=lambda item: (item[2], item[0]))
    expected = [listing_id for _, listing_id, _ in within][offset:offset + limit]

    assert [row.id for row in rows] == expected
    assert len(rows) <= limit
    assert all(row.distance <= 25 + 1e-6 for row in rows)


@pytest.mark.asyncio
async def test_repeated_search_is_idempotent():
    engine = Engine(radius_world([3.0, 3.0, 1.0, 7.0, 2.0]))
    criteria = SearchCriteria(location_id=CENTER.id, radius=10, sort_by=SortMode.DISTANCE, limit=3)

    first = await engine.orchestrator.search(criteria)
    second = await engine.orchestrator.search(criteria)

    assert first == second
    assert [row.id for row in first] == ["l-002", "l-004", "l-000"]


@pytest.mark.asyncio
async def test_saturated_window_is_logged(caplog):
    engine = Engine(radius_world([1.0] * 12))

    with caplog.at_level("DEBUG", logger="listing_search.orchestrator"):
        await engine.orchestrator.search(SearchCriteria(location_id=CENTER.id, radius=5, limit=1))

    assert "window saturated at 10 candidates" in caplog.text


@pytest.mark.asyncio
async def test_geo_window_is_configurable():
    settings = SearchSettings(window=WindowConfig(max_geo_window=3))
    engine = Engine(radius_world([1.0] * 6), settings=settings)

    rows = await engine.orchestrator.search(SearchCriteria(location_id=CENTER.id, radius=5, limit=10))

    assert len(rows) == 3
    _, args = engine.primary.calls[0]
    assert args[1:] == (0, 3)


# Counting

@pytest.mark.asyncio
async def test_count_ignores_pagination():
    engine = Engine(bicycle_world())

    assert await engine.orchestrator.count(SearchCriteria(query="bicycle", offset=1, limit=1)) == 2
    assert [name for name, _ in engine.primary.calls] == ["count_candidates"]


@pytest.mark.asyncio
@pytest.mark.parametrize("primary_error,pushdown", [
    (None, True),
    (ConnectionError("index down"), True),
    (ConnectionError("index down"), False),
])
async def test_geographic_count_is_not_capped_by_window(primary_error, pushdown):
    distances = [1.0] * 620 + [80.0] * 15
    engine = Engine(radius_world(distances), primary_error=primary_error, spatial_pushdown=pushdown)
    criteria = SearchCriteria(location_id=CENTER.id, radius=25, limit=10)

    assert await engine.orchestrator.count(criteria) == 620

    if primary_error is None:
        assert [name for name, _ in engine.primary.calls] == ["collect_candidate_ids"]
        assert engine.store.called("radius_count") == 1
    elif pushdown:
        assert engine.store.called("count_within_radius") == 1
        assert engine.sample("marketplace_search_index_errors_total", {"operation": "count"}) == 1
    else:
        assert engine.store.called("collect_candidate_ids") == 1


@pytest.mark.asyncio
async def test_search_page_combines_rows_and_total():
    engine = Engine(radius_world([1.0, 2.0, 3.0, 40.0]))
    criteria = SearchCriteria(location_id=CENTER.id, radius=5, sort_by=SortMode.DISTANCE, limit=2)

    page = await engine.orchestrator.search_page(criteria)

    assert [row.id for row in page.results] == ["l-000", "l-001"]
    assert page.total_count == 3
    assert page.has_more is True
    assert page.total_pages == 2


# Metrics

@pytest.mark.asyncio
async def test_request_metrics_are_recorded():
    engine = Engine(seattle_world())
    criteria = SearchCriteria(category_id="electronics", location_id=SEATTLE.id, radius=25)

    rows = await engine.orchestrator.search(criteria)
    await engine.orchestrator.count(criteria)

    labels = {"has_radius": "true", "has_category": "true", "has_filters": "true"}
    assert engine.sample(
        "marketplace_search_requests_total", {**labels, "operation": "search"}
    ) == 1
    assert engine.sample(
        "marketplace_search_requests_total", {**labels, "operation": "count"}
    ) == 1
    assert engine.sample(
        "marketplace_search_duration_seconds_count", {"operation": "search"}
    ) == 1
    assert engine.sample("marketplace_search_results_count_count") == 1
    assert engine.sample("marketplace_search_results_count_sum") == len(rows)


# Deep pages

@pytest.mark.asyncio
async def test_window_past_index_result_window_reads_from_store():
    settings = SearchSettings(index=IndexConfig(max_result_window=3))
    engine = Engine(bicycle_world(), settings=settings)

    rows = await engine.orchestrator.search(SearchCriteria(offset=2, limit=2))

    assert [row.id for row in rows] == ["l-4", "l-5"]
    assert engine.primary.calls == []
    assert engine.store.called("find_candidates") == 1
    assert engine.sample("marketplace_search_index_errors_total", {"operation": "search"}) == 0


@pytest.mark.asyncio
async def test_window_within_index_result_window_uses_index():
    settings = SearchSettings(index=IndexConfig(max_result_window=4))
    engine = Engine(bicycle_world(), settings=settings)

    await engine.orchestrator.search(SearchCriteria(offset=2, limit=2))

    assert [name for name, _ in engine.primary.calls] == ["find_candidates"]
    assert engine.store.called("find_candidates") == 0


# Logging and tracing

@pytest.mark.asyncio
async def test_degradation_is_logged_once_at_warning(caplog):
    engine = Engine(bicycle_world(), primary_error=ConnectionError("index down"))

    with caplog.at_level("WARNING"):
        await engine.orchestrator.search(SearchCriteria(query="bicycle"))

    warnings = [record for record in caplog.records if record.levelname == "WARNING"]
    assert len(warnings) == 1
    assert "using relational fallback" in warnings[0].getMessage()


def _tracing():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter, provider.get_tracer("tests")


@pytest.mark.asyncio
async def test_search_and_count_spans_carry_criteria():
    exporter, tracer = _tracing()
    engine = Engine(seattle_world(), tracer=tracer)
    criteria = SearchCriteria(
        query="tv", category_id="electronics", location_id=SEATTLE.id, radius=25
    )

    await engine.orchestrator.search_page(criteria)

    spans = {span.name: span for span in exporter.get_finished_spans()}
    assert set(spans) == {"marketplace.search", "marketplace.count"}
    attributes = spans["marketplace.search"].attributes
    assert attributes["query"] == "tv"
    assert attributes["has_radius"] is True
    assert attributes["category_id"] == "electronics"
    assert "fallback" not in attributes


@pytest.mark.asyncio
async def test_degraded_span_is_marked_with_fallback():
    exporter, tracer = _tracing()
    engine = Engine(bicycle_world(), primary_error=ConnectionError("index down"), tracer=tracer)

    await engine.orchestrator.search(SearchCriteria(query="bicycle"))

    (span,) = exporter.get_finished_spans()
    assert span.name == "marketplace.search"
    assert span.attributes["fallback"] == "postgres"
    assert span.attributes["query"] == "bicycle"
    assert span.attributes["has_radius"] is False
    assert span.attributes["category_id"] == ""
