"""
Tests for result enrichment.

Each page is enriched with one batched location lookup and one batched
image-count lookup, and a failing lookup degrades the field rather than
the page.
"""

import pytest
import asyncio

from listing_search.enrichment import ResultEnricher
from tests.fakes import (
    CENTER,
    InMemoryGeoReference,
    InMemoryStore,
    ListingWorld,
    make_listing,
    point_north_of,
)


def _world():
    far = point_north_of(2, 40.0)
    listings = [
        make_listing("a", location_id=CENTER.id),
        make_listing("b", location_id=far.id),
        make_listing("c", location_id=None),
        make_listing("d", location_id=CENTER.id),
    ]
    return ListingWorld(listings=listings, locations=[CENTER, far], images={"a": 3, "b": 1})


@pytest.mark.asyncio
async def test_enrich_batches_lookups():
    world = _world()
    store = InMemoryStore(world)
    geo_reference = InMemoryGeoReference(world)
    enricher = ResultEnricher(geo_reference, store)
    listings = list(world.listings.values())

    rows = await enricher.enrich(listings, {"a": 0.0, "b": 40.0})

    assert [row.id for row in rows] == ["a", "b", "c", "d"]
    assert len(geo_reference.calls) == 1
    assert geo_reference.calls[0] == [1, 2]
    assert store.called("image_counts") == 1

    by_id = {row.id: row for row in rows}
    assert by_id["a"].location_name == "Springfield, IL"
    assert by_id["b"].location_name == "Town 2, IL"
    assert by_id["c"].location_name is None
    assert by_id["a"].image_count == 3
    assert by_id["d"].image_count == 0
    assert by_id["b"].distance == 40.0
    assert by_id["c"].distance is None


@pytest.mark.asyncio
async def test_enrich_empty_page_issues_no_lookups():
    world = _world()
    store = InMemoryStore(world)
    geo_reference = InMemoryGeoReference(world)

    assert await ResultEnricher(geo_reference, store).enrich([]) == []
    assert store.calls == []
    assert geo_reference.calls == []


@pytest.mark.asyncio
async def test_location_failure_keeps_rows():
    world = _world()
    geo_reference = InMemoryGeoReference(world, error=ConnectionError("down"))
    enricher = ResultEnricher(geo_reference, InMemoryStore(world))

    rows = await enricher.enrich(list(world.listings.values()))

    assert len(rows) == 4
    assert all(row.location_name is None for row in rows)
    assert rows[0].image_count == 3


@pytest.mark.asyncio
async def test_image_count_failure_keeps_rows(caplog):
    world = _world()
    store = InMemoryStore(world, failing={"image_counts"})
    enricher = ResultEnricher(InMemoryGeoReference(world), store)

    with caplog.at_level("WARNING"):
        rows = await enricher.enrich(list(world.listings.values()))

    assert [row.image_count for row in rows] == [0, 0, 0, 0]
    assert rows[0].location_name == "Springfield, IL"
    assert "Image counts unavailable" in caplog.text


@pytest.mark.asyncio
async def test_slow_lookup_times_out_to_empty_metadata():
    world = _world()

    class SlowGeoReference(InMemoryGeoReference):
        async def resolve_locations(self, location_ids):
            await asyncio.sleep(1)
            return {}

    enricher = ResultEnricher(SlowGeoReference(world), InMemoryStore(world), timeout_ms=10)

    rows = await enricher.enrich(list(world.listings.values()))

    assert all(row.location_name is None for row in rows)
