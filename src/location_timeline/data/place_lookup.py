"""
External place lookup.

The default implementation reverse-geocodes through the OpenStreetMap Nominatim
API with httpx, respecting its one-request-per-second usage policy. Callers go
through resolve_with_timeout(), which turns timeouts and failures into a
degraded PlaceResolution instead of an exception.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import PlaceLookupError
from ..models import PlaceCandidate, PlaceLookupConfig, PlaceResolution

logger = logging.getLogger(__name__)

# OSM (key, value) -> place category
OSM_CATEGORY_MAP: dict[tuple[str, str], str] = {
    ("amenity", "cafe"): "cafe",
    ("amenity", "restaurant"): "restaurant",
    ("amenity", "fast_food"): "restaurant",
    ("amenity", "bar"): "bar",
    ("amenity", "pub"): "bar",
    ("amenity", "place_of_worship"): "church",
    ("amenity", "coworking_space"): "coworking",
    ("leisure", "fitness_centre"): "gym",
    ("leisure", "sports_centre"): "fitness",
    ("leisure", "park"): "park",
    ("leisure", "recreation_ground"): "recreation",
    ("building", "house"): "home",
    ("building", "residential"): "home",
    ("building", "apartments"): "home",
    ("building", "office"): "office",
}

# Religion tag refines places of worship
WORSHIP_CATEGORY_MAP: dict[str, str] = {
    "christian": "church",
    "muslim": "mosque",
    "buddhist": "temple",
    "hindu": "temple",
    "jewish": "temple",
}


def _mapping(value: Any) -> dict[str, Any]:
    """Nested response objects; anything else counts as empty."""
    return value if isinstance(value, dict) else {}


class PlaceLookup(Protocol):
    """Capability for resolving a coordinate to a place name."""

    async def lookup_place(
        self, lat: float, lng: float, window: tuple[datetime, datetime]
    ) -> PlaceCandidate | None:
        """
        Resolve a coordinate observed during a time window.

        Returns:
            A candidate, or None when the service knows no place there

        Raises:
            PlaceLookupError: If the service fails
        """
        ...


class NominatimPlaceLookup:
    """Reverse geocoding via the Nominatim API."""

    def __init__(
        self, config: PlaceLookupConfig, client: httpx.AsyncClient | None = None
    ):
        """
        Initialize the lookup.

        Args:
            config: Base URL, User-Agent, timeout and rate limit
            client: Optional pre-built client (tests inject a mock transport)
        """
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._last_request_time = 0.0
        self._rate_lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.timeout_s,
            )
        return self._client

    async def _rate_limit(self) -> None:
        """Space requests by the configured interval."""
        async with self._rate_lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.config.rate_limit_s:
                await asyncio.sleep(self.config.rate_limit_s - elapsed)
            self._last_request_time = time.monotonic()

    async def lookup_place(
        self, lat: float, lng: float, window: tuple[datetime, datetime]
    ) -> PlaceCandidate | None:
        """Reverse geocode a coordinate."""
        await self._rate_limit()
        try:
            response = await self._get_client().get(
                "/reverse",
                params={
                    "lat": f"{lat:.6f}",
                    "lon": f"{lng:.6f}",
                    "format": "jsonv2",
                    "addressdetails": "1",
                    "namedetails": "1",
                    "extratags": "1",
                    "zoom": "18",
                },
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PlaceLookupError(f"Reverse geocoding failed: {e}") from e

        if not isinstance(data, dict) or "error" in data:
            self.logger.debug(f"No place found at ({lat:.5f}, {lng:.5f})")
            return None

        try:
            candidate = self.parse_response(data)
        except (PydanticValidationError, TypeError, AttributeError) as e:
            raise PlaceLookupError(f"Unexpected reverse geocoding response: {e}") from e
        if candidate is not None:
            self.logger.info(f"Reverse geocoded ({lat:.5f}, {lng:.5f}) -> {candidate.name}")
        return candidate

    @staticmethod
    def parse_response(data: dict[str, Any]) -> PlaceCandidate | None:
        """Build a candidate from a Nominatim jsonv2 response."""
        address = _mapping(data.get("address"))
        namedetails = _mapping(data.get("namedetails"))
        name = data.get("name") or namedetails.get("name") or ""
        if not name:
            name = (
                address.get("amenity")
                or address.get("building")
                or address.get("road")
                or address.get("suburb")
                or address.get("city")
                or ""
            )
        if not name:
            return None

        alternatives = []
        for key in ("road", "suburb", "city"):
            value = address.get(key)
            if value and value != name and value not in alternatives:
                alternatives.append(value)
        display_name = data.get("display_name")
        if display_name and display_name != name:
            alternatives.append(display_name)

        osm_key = data.get("category", "")
        osm_value = data.get("type", "")
        category = OSM_CATEGORY_MAP.get((osm_key, osm_value))
        if category == "church":
            religion = _mapping(data.get("extratags")).get("religion", "christian")
            category = WORSHIP_CATEGORY_MAP.get(religion, "church")
        if category is None and osm_key == "office":
            category = "office"

        return PlaceCandidate(name=name, alternatives=alternatives, category=category)

    async def close(self) -> None:
        """Close the HTTP client if this lookup created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


async def resolve_with_timeout(
    lookup: PlaceLookup,
    lat: float,
    lng: float,
    window: tuple[datetime, datetime],
    timeout_s: float,
) -> PlaceResolution:
    """
    Call a place lookup with a timeout, degrading on any failure.

    Cancellation of the caller propagates and abandons the request.
    """
    try:
        candidate = await asyncio.wait_for(
            lookup.lookup_place(lat, lng, window), timeout=timeout_s
        )
    except asyncio.TimeoutError:
        logger.warning(f"Place lookup timed out after {timeout_s}s at ({lat:.5f}, {lng:.5f})")
        return PlaceResolution.degraded_result(f"place lookup timed out after {timeout_s}s")
    except (PlaceLookupError, httpx.HTTPError) as e:
        logger.warning(f"Place lookup failed at ({lat:.5f}, {lng:.5f}): {e}")
        return PlaceResolution.degraded_result(f"place lookup failed: {e}")
    return PlaceResolution.resolved(candidate)
