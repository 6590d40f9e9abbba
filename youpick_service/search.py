"""
Event search - cache lookup, provider fetch, distance enrichment and ranking
"""
from typing import List, Optional, Protocol
import logging

from .cache import SearchQueryKey
from .errors import DiscoveryError, ValidationFailure, best_effort
from .geo import distance_or_none
from .schemas import EventRecord, GeoPoint, Timeframe

logger = logging.getLogger(__name__)

SEARCH_FAILED_MESSAGE = "Failed to search for events"


class EventSearchClient(Protocol):
    async def search_events(
        self,
        subject_name: str,
        subject_category: str,
        timeframe: str,
        location_scope: Optional[str] = None
    ) -> List[EventRecord]:
        ...


def enrich_with_distance(
    events: List[EventRecord],
    caller_location: Optional[GeoPoint]
) -> List[EventRecord]:
    """Copies of events with distance from the caller filled in where known"""
    enriched = []
    for event in events:
        distance = distance_or_none(caller_location, event.latitude, event.longitude)
        enriched.append(event.model_copy(update={"distance": distance}))
    return enriched


def sort_by_distance(events: List[EventRecord]) -> List[EventRecord]:
    """Nearest first; events without a distance keep their order at the end"""
    return sorted(
        events,
        key=lambda e: (e.distance is None, e.distance if e.distance is not None else 0.0),
    )


class EventSearchService:
    """
    Searches events related to a spot.

    Raw provider results are cached per SearchQueryKey; distance is
    recomputed for every caller, so one cached payload serves callers at
    any position. Failures are never cached.

    The latest call owns the observable state (events, is_loading, error).
    A slower, older call still caches and returns its results but leaves
    that state alone.
    """

    def __init__(self, cache, search_client: EventSearchClient, kafka_producer=None):
        self.cache = cache
        self.search_client = search_client
        self.kafka_producer = kafka_producer

        self.events: List[EventRecord] = []
        self.is_loading = False
        self.error: Optional[str] = None
        self.timeframe = Timeframe.TODAY
        self._generation = 0

    def set_timeframe(self, timeframe: Timeframe) -> None:
        self.timeframe = Timeframe(timeframe)

    async def search(
        self,
        subject_name: str,
        subject_category: str,
        timeframe: Optional[Timeframe] = None,
        location_scope: Optional[str] = None,
        caller_location: Optional[GeoPoint] = None
    ) -> List[EventRecord]:
        """Events for a spot, nearest to the caller first"""
        self._generation += 1
        generation = self._generation
        self.error = None

        try:
            effective = Timeframe(timeframe or self.timeframe)
            key = self._build_key(subject_name, subject_category, effective, location_scope)
        except (ValueError, ValidationFailure) as e:
            message = e.message if isinstance(e, ValidationFailure) else f"Invalid timeframe: {timeframe}"
            logger.warning(f"Rejected event search: {message}")
            return self._finish(generation, [], message)

        entry = await self.cache.get(key)
        if entry is not None:
            logger.debug(f"Event search cache hit for {key}")
            payload = entry.payload
        else:
            logger.info(f"Event search cache miss for {key}")
            if generation == self._generation:
                self.is_loading = True
            try:
                payload = await self.search_client.search_events(
                    key.subject_name,
                    key.subject_category,
                    key.timeframe,
                    key.location_scope,
                )
            except DiscoveryError as e:
                logger.error(f"Event search failed for {key}: {e.message}")
                return self._finish(generation, [], SEARCH_FAILED_MESSAGE)
            except Exception as e:
                logger.error(f"Event search failed for {key}: {e}")
                return self._finish(generation, [], SEARCH_FAILED_MESSAGE)

            await self.cache.put(key, payload)
            if self.kafka_producer is not None:
                await best_effort("Search tracking", self.kafka_producer.track(
                    "event_search_performed",
                    metadata={"category": key.subject_category, "timeframe": key.timeframe},
                ))

        events = sort_by_distance(enrich_with_distance(payload, caller_location))
        return self._finish(generation, events, None)

    def _build_key(
        self,
        subject_name: str,
        subject_category: str,
        timeframe: Timeframe,
        location_scope: Optional[str]
    ) -> SearchQueryKey:
        subject_name = (subject_name or "").strip()
        subject_category = (subject_category or "").strip()
        if not subject_name:
            raise ValidationFailure("subject_name is required")
        if not subject_category:
            raise ValidationFailure("subject_category is required")

        return SearchQueryKey(
            subject_name=subject_name,
            subject_category=subject_category,
            timeframe=timeframe.value,
            location_scope=(location_scope or "").strip() or None,
        )

    def _finish(
        self,
        generation: int,
        events: List[EventRecord],
        error: Optional[str]
    ) -> List[EventRecord]:
        if generation == self._generation:
            self.events = events
            self.error = error
            self.is_loading = False
        else:
            logger.debug("Discarding state update from a superseded event search")
        return events
