from __future__ import annotations

import asyncio
import math

import pytest

from youpick_service.cache import SearchQueryKey
from youpick_service.errors import TransportFailure
from youpick_service.schemas import EventRecord, GeoPoint, Timeframe
from youpick_service.search import EventSearchService, sort_by_distance

ORIGIN = GeoPoint(latitude=0, longitude=0)


def _event(name: str, lat: float | None = None, lng: float | None = None) -> EventRecord:
    return EventRecord(name=name, date="2026-10-18", latitude=lat, longitude=lng)


@pytest.fixture
def service(result_cache, search_client, producer) -> EventSearchService:
    return EventSearchService(result_cache, search_client, producer)


@pytest.mark.asyncio
async def test_repeat_search_within_ttl_fetches_once(service, search_client, clock):
    search_client.events = [_event("Jazz Night")]

    first = await service.search("Blue Note", "nightlife", Timeframe.TODAY, "Chicago")
    clock.advance(599)
    second = await service.search("Blue Note", "nightlife", Timeframe.TODAY, "Chicago")

    assert len(search_client.calls) == 1
    assert [e.name for e in first] == [e.name for e in second] == ["Jazz Night"]


@pytest.mark.asyncio
async def test_search_after_ttl_fetches_again(service, search_client, clock):
    await service.search("Blue Note", "nightlife", Timeframe.TODAY)
    clock.advance(601)
    await service.search("Blue Note", "nightlife", Timeframe.TODAY)
    assert len(search_client.calls) == 2


@pytest.mark.asyncio
async def test_timeframe_change_always_fetches(service, search_client):
    await service.search("Blue Note", "nightlife", Timeframe.TODAY)
    await service.search("Blue Note", "nightlife", Timeframe.WEEK)
    assert [call[2] for call in search_client.calls] == ["today", "week"]

    # Switching back to a key that is still fresh is served from cache
    await service.search("Blue Note", "nightlife", Timeframe.TODAY)
    assert len(search_client.calls) == 2


@pytest.mark.asyncio
async def test_default_timeframe_follows_set_timeframe(service, search_client):
    await service.search("Blue Note", "nightlife")
    service.set_timeframe("month")
    await service.search("Blue Note", "nightlife")
    assert [call[2] for call in search_client.calls] == ["today", "month"]


@pytest.mark.asyncio
async def test_caller_location_is_not_part_of_the_key(service, search_client):
    search_client.events = [_event("Fair", 0, 1)]

    near = await service.search("Park", "activity", caller_location=GeoPoint(latitude=0, longitude=0.5))
    far = await service.search("Park", "activity", caller_location=GeoPoint(latitude=0, longitude=-10))

    assert len(search_client.calls) == 1
    assert near[0].distance < far[0].distance


@pytest.mark.asyncio
async def test_cached_payload_is_not_enriched(service, search_client, result_cache):
    search_client.events = [_event("Fair", 0, 1)]
    await service.search("Park", "activity", caller_location=ORIGIN)

    entry = await result_cache.get(SearchQueryKey("Park", "activity", "today"))
    assert entry.payload[0].distance is None


@pytest.mark.asyncio
async def test_results_ranked_nearest_first(service, search_client):
    search_client.events = [_event("Far", 0, 2), _event("Near", 0, 1)]

    events = await service.search("Park", "activity", caller_location=ORIGIN)

    assert [e.name for e in events] == ["Near", "Far"]
    assert events[0].distance == pytest.approx(3958.8 * math.pi / 180)


@pytest.mark.asyncio
async def test_equidistant_records_keep_input_order(service, search_client):
    search_client.events = [_event("East", 0, 1), _event("North", 1, 0)]

    events = await service.search("Park", "activity", caller_location=ORIGIN)

    assert events[0].distance == pytest.approx(events[1].distance)
    assert [e.name for e in events] == ["East", "North"]


@pytest.mark.asyncio
async def test_records_without_coordinates_sort_last(service, search_client):
    search_client.events = [
        _event("Unknown A"),
        _event("Far", 0, 3),
        _event("Unknown B"),
        _event("Near", 0, 1),
    ]

    events = await service.search("Park", "activity", caller_location=ORIGIN)

    assert [e.name for e in events] == ["Near", "Far", "Unknown A", "Unknown B"]
    assert events[2].distance is None


@pytest.mark.asyncio
async def test_without_caller_location_order_is_unchanged(service, search_client):
    search_client.events = [_event("B", 0, 3), _event("A", 0, 1)]
    events = await service.search("Park", "activity")
    assert [e.name for e in events] == ["B", "A"]
    assert all(e.distance is None for e in events)


def test_sort_by_distance_is_stable():
    events = [
        EventRecord(name="x", date="d", distance=2.0),
        EventRecord(name="y", date="d"),
        EventRecord(name="z", date="d", distance=2.0),
    ]
    assert [e.name for e in sort_by_distance(events)] == ["x", "z", "y"]


@pytest.mark.asyncio
async def test_failed_fetch_is_not_cached(service, search_client):
    search_client.replies = [TransportFailure("provider down"), [_event("Jazz Night")]]

    first = await service.search("Blue Note", "nightlife")
    assert first == []
    assert service.error == "Failed to search for events"
    assert service.is_loading is False

    second = await service.search("Blue Note", "nightlife")
    assert len(search_client.calls) == 2
    assert [e.name for e in second] == ["Jazz Night"]
    assert service.error is None


@pytest.mark.asyncio
async def test_unexpected_exception_degrades_to_empty_result(service, search_client):
    search_client.replies = [RuntimeError("boom")]
    assert await service.search("Blue Note", "nightlife") == []
    assert service.error == "Failed to search for events"


@pytest.mark.asyncio
@pytest.mark.parametrize("name,category", [("", "nightlife"), ("   ", "nightlife"), ("Blue Note", "")])
async def test_missing_fields_rejected_before_fetch(service, search_client, name, category):
    assert await service.search(name, category) == []
    assert service.error is not None
    assert search_client.calls == []


@pytest.mark.asyncio
async def test_unknown_timeframe_rejected_before_fetch(service, search_client):
    assert await service.search("Blue Note", "nightlife", "year") == []
    assert "timeframe" in service.error
    assert search_client.calls == []


@pytest.mark.asyncio
async def test_loading_state_is_visible_during_fetch(service, search_client):
    seen = []
    original = search_client.search_events

    async def spy(*args):
        seen.append(service.is_loading)
        return await original(*args)

    search_client.search_events = spy
    await service.search("Blue Note", "nightlife")

    assert seen == [True]
    assert service.is_loading is False


@pytest.mark.asyncio
async def test_superseded_response_does_not_overwrite_state(service, search_client):
    gate = asyncio.Event()
    search_client.gates = [gate, None]
    search_client.replies = [[_event("Stale")], [_event("Fresh")]]

    slow = asyncio.create_task(service.search("Blue Note", "nightlife", Timeframe.TODAY))
    await asyncio.sleep(0)
    fresh = await service.search("Blue Note", "nightlife", Timeframe.WEEK)
    gate.set()
    stale = await slow

    assert [e.name for e in fresh] == ["Fresh"]
    assert [e.name for e in stale] == ["Stale"]
    assert [e.name for e in service.events] == ["Fresh"]
    assert service.is_loading is False


@pytest.mark.asyncio
async def test_network_search_is_tracked(service, search_client, producer):
    await service.search("Blue Note", "nightlife")
    await service.search("Blue Note", "nightlife")
    assert [t[0] for t in producer.tracked] == ["event_search_performed"]


@pytest.mark.asyncio
async def test_tracking_failure_does_not_affect_results(service, search_client, producer):
    producer.fail = True
    search_client.events = [_event("Jazz Night")]

    events = await service.search("Blue Note", "nightlife")

    assert [e.name for e in events] == ["Jazz Night"]
    assert service.error is None
