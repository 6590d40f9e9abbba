"""
HTTP client for the event search provider and the places provider
"""
import httpx
from typing import Optional, List, Dict, Any
from pydantic import ValidationError
import asyncio
import logging

from .cache import ResultCache
from .config import settings
from .errors import TransportFailure, ValidationFailure
from .schemas import City, EventRecord, PlaceDetails, PlacePrediction

logger = logging.getLogger(__name__)

PLACES_OK_STATUSES = {"OK", "ZERO_RESULTS"}


class ServiceClient:
    """HTTP client for upstream providers"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = httpx.Timeout(settings.HTTP_TIMEOUT, connect=5.0)
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None
        self.cities_cache = ResultCache(ttl=settings.CITIES_CACHE_TTL)
        self._sleep = asyncio.sleep

    async def start(self):
        """Initialize HTTP client"""
        self.client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        logger.info("Service client initialized")

    async def stop(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Service client closed")

    async def _make_request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """Make HTTP request and return the decoded JSON body"""
        if not self.client:
            raise TransportFailure("Service client not initialized")

        try:
            response = await self.client.request(
                method,
                url,
                headers=headers,
                **kwargs
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error {e.response.status_code} for {url}: {e}")
            raise TransportFailure(f"Upstream returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Request failed for {url}: {e}")
            raise TransportFailure("Upstream request failed") from e

    def _service_headers(self) -> Dict[str, str]:
        if not settings.SERVICE_API_KEY:
            return {}
        return {
            "Authorization": f"Bearer {settings.SERVICE_API_KEY}",
            "apikey": settings.SERVICE_API_KEY,
        }

    # Event search provider
    async def search_events(
        self,
        subject_name: str,
        subject_category: str,
        timeframe: str,
        location_scope: Optional[str] = None
    ) -> List[EventRecord]:
        """Search events related to a spot; raises TransportFailure on provider errors"""
        body = {
            "spotName": subject_name,
            "spotCategory": subject_category,
            "timeframe": timeframe,
        }
        if location_scope:
            body["city"] = location_scope

        response = await self._make_request(
            "POST",
            settings.SEARCH_EVENTS_URL,
            headers=self._service_headers(),
            json=body,
        )

        raw_events = response.get("events")
        if response.get("error") and not raw_events:
            logger.error(f"Event search provider error: {response['error']}")
            raise TransportFailure("Failed to search for events")
        if not isinstance(raw_events, list):
            return []

        events = []
        for raw in raw_events:
            try:
                events.append(EventRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed event record: {e.error_count()} errors")
        return events

    # Places provider
    async def _places_request(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {**params, "key": settings.PLACES_API_KEY}
        return await self._make_request(
            "GET",
            f"{settings.PLACES_API_URL}/{endpoint}/json",
            params=params,
        )

    async def autocomplete(
        self,
        query: str,
        types: Optional[str] = None,
        country: Optional[str] = None
    ) -> List[PlacePrediction]:
        """Ranked place predictions for a partial query"""
        if not query or not query.strip():
            raise ValidationFailure("query is required")

        params = {"input": query}
        if types:
            params["types"] = types
        if country:
            params["components"] = f"country:{country}"

        data = await self._places_request("autocomplete", params)
        if data.get("status") not in PLACES_OK_STATUSES:
            logger.error(f"Autocomplete API error: {data.get('status')} {data.get('error_message')}")
            raise TransportFailure(data.get("error_message") or "Autocomplete failed")

        predictions = []
        for p in data.get("predictions", []):
            formatting = p.get("structured_formatting") or {}
            predictions.append(PlacePrediction(
                place_id=p["place_id"],
                description=p.get("description", ""),
                main_text=formatting.get("main_text") or p.get("description"),
                secondary_text=formatting.get("secondary_text", ""),
            ))
        return predictions

    async def place_details(self, place_id: str) -> Optional[PlaceDetails]:
        """Resolve a place id to its locality, region, country and coordinates"""
        if not place_id:
            raise ValidationFailure("place_id is required")

        data = await self._places_request("details", {
            "place_id": place_id,
            "fields": "place_id,geometry,address_components,formatted_address,name",
        })
        if data.get("status") == "NOT_FOUND":
            return None
        if data.get("status") != "OK":
            raise TransportFailure(data.get("error_message") or data.get("status"))

        result = data.get("result", {})
        components = result.get("address_components", [])

        def component(kind: str) -> Dict[str, Any]:
            for c in components:
                if kind in c.get("types", []):
                    return c
            return {}

        location = (result.get("geometry") or {}).get("location") or {}
        return PlaceDetails(
            place_id=result.get("place_id", place_id),
            city=component("locality").get("long_name") or result.get("name"),
            region=component("administrative_area_level_1").get("long_name"),
            country=component("country").get("long_name"),
            country_code=component("country").get("short_name"),
            latitude=location.get("lat"),
            longitude=location.get("lng"),
        )

    async def cities_in_region(
        self,
        region: str,
        country: Optional[str] = None
    ) -> List[City]:
        """
        List the localities of a region.

        Pages through the provider's text search (at most CITIES_MAX_PAGES
        pages, pausing CITIES_PAGE_DELAY seconds before each next-page token
        is used), drops duplicate names and sorts alphabetically. Complete
        results are cached per region.
        """
        if not region or not region.strip():
            raise ValidationFailure("region is required")

        cache_key = f"{region}_{country or ''}".lower()
        cached = self.cities_cache.get(cache_key)
        if cached:
            return list(cached.payload)

        query = f"cities in {region}" + (f", {country}" if country else "")
        seen = set()
        cities: List[City] = []
        next_page_token = None
        page_count = 0
        complete = True

        while True:
            params = {"query": query, "type": "locality"}
            if next_page_token:
                params["pagetoken"] = next_page_token

            data = await self._places_request("textsearch", params)
            if data.get("status") not in PLACES_OK_STATUSES:
                logger.error(f"Text search error: {data.get('status')} {data.get('error_message')}")
                if not cities:
                    raise TransportFailure(data.get("error_message") or "City lookup failed")
                complete = False
                break

            for place in data.get("results", []):
                name_key = place.get("name", "").strip().lower()
                if not name_key or name_key in seen:
                    continue
                seen.add(name_key)
                location = (place.get("geometry") or {}).get("location") or {}
                cities.append(City(
                    place_id=place["place_id"],
                    name=place["name"],
                    formatted_address=place.get("formatted_address", ""),
                    latitude=location.get("lat"),
                    longitude=location.get("lng"),
                ))

            next_page_token = data.get("next_page_token")
            page_count += 1
            if not next_page_token or page_count >= settings.CITIES_MAX_PAGES:
                break
            # The provider rejects a next-page token used too soon
            await self._sleep(settings.CITIES_PAGE_DELAY)

        cities.sort(key=lambda c: c.name.lower())

        if complete:
            self.cities_cache.put(cache_key, cities)
        logger.info(f"Found {len(cities)} cities in {region} over {page_count} pages")
        return cities


# Global service client instance
service_client = ServiceClient()


async def get_service_client() -> ServiceClient:
    """Dependency for getting service client instance"""
    return service_client
