"""Unit tests for the Nominatim place lookup."""

from datetime import timedelta

import httpx
import pytest
from conftest import BASE_TIME

from location_timeline.data.place_lookup import NominatimPlaceLookup, resolve_with_timeout
from location_timeline.exceptions import PlaceLookupError
from location_timeline.models import PlaceLookupConfig

WINDOW = (BASE_TIME, BASE_TIME + timedelta(minutes=30))

CAFE_RESPONSE = {
    "name": "Corner Cafe",
    "category": "amenity",
    "type": "cafe",
    "display_name": "Corner Cafe, Main Street, Utrecht",
    "address": {"amenity": "Corner Cafe", "road": "Main Street", "city": "Utrecht"},
}


def make_lookup(handler) -> NominatimPlaceLookup:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://nominatim.test"
    )
    return NominatimPlaceLookup(PlaceLookupConfig(rate_limit_s=0), client)


class TestParseResponse:
    """Test mapping Nominatim responses to candidates."""

    def test_named_amenity(self):
        candidate = NominatimPlaceLookup.parse_response(CAFE_RESPONSE)

        assert candidate.name == "Corner Cafe"
        assert candidate.category == "cafe"
        assert candidate.alternatives == [
            "Main Street",
            "Utrecht",
            "Corner Cafe, Main Street, Utrecht",
        ]

    def test_place_of_worship_uses_religion(self):
        candidate = NominatimPlaceLookup.parse_response(
            {
                "name": "Blue Mosque",
                "category": "amenity",
                "type": "place_of_worship",
                "extratags": {"religion": "muslim"},
            }
        )
        assert candidate.category == "mosque"

    def test_unnamed_place_falls_back_to_road(self):
        candidate = NominatimPlaceLookup.parse_response(
            {"category": "highway", "type": "residential", "address": {"road": "Elm Row"}}
        )
        assert candidate.name == "Elm Row"
        assert candidate.category is None

    def test_nothing_to_name(self):
        assert NominatimPlaceLookup.parse_response({"address": {}}) is None

    def test_malformed_nested_objects_are_ignored(self):
        candidate = NominatimPlaceLookup.parse_response(
            {
                "name": "Chapel",
                "category": "amenity",
                "type": "place_of_worship",
                "address": ["not", "a", "dict"],
                "namedetails": "Chapel",
                "extratags": None,
            }
        )

        assert candidate.name == "Chapel"
        assert candidate.category == "church"
        assert candidate.alternatives == []


class TestLookupPlace:
    """Test HTTP behaviour against a mock transport."""

    @pytest.mark.asyncio
    async def test_reverse_geocodes(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=CAFE_RESPONSE)

        lookup = make_lookup(handler)
        candidate = await lookup.lookup_place(52.0, 4.0, WINDOW)

        assert candidate.name == "Corner Cafe"
        assert seen[0].url.path == "/reverse"
        assert seen[0].url.params["lat"] == "52.000000"
        assert seen[0].url.params["format"] == "jsonv2"

    @pytest.mark.asyncio
    async def test_error_payload_means_no_place(self):
        lookup = make_lookup(
            lambda request: httpx.Response(200, json={"error": "Unable to geocode"})
        )
        assert await lookup.lookup_place(0.0, 0.0, WINDOW) is None

    @pytest.mark.asyncio
    async def test_http_failure_raises(self):
        lookup = make_lookup(lambda request: httpx.Response(503))

        with pytest.raises(PlaceLookupError):
            await lookup.lookup_place(52.0, 4.0, WINDOW)

    @pytest.mark.asyncio
    async def test_resolve_with_timeout_degrades(self):
        lookup = make_lookup(lambda request: httpx.Response(503))

        resolution = await resolve_with_timeout(lookup, 52.0, 4.0, WINDOW, 1.0)

        assert resolution.degraded is True
        assert resolution.candidate is None
        assert "failed" in resolution.error

    @pytest.mark.asyncio
    async def test_unreadable_place_raises_lookup_error(self):
        lookup = make_lookup(
            lambda request: httpx.Response(200, json={"name": {"en": "Cafe"}})
        )

        with pytest.raises(PlaceLookupError):
            await lookup.lookup_place(52.0, 4.0, WINDOW)

    @pytest.mark.asyncio
    async def test_unreadable_place_degrades(self):
        lookup = make_lookup(lambda request: httpx.Response(200, json={"name": ["Cafe"]}))

        resolution = await resolve_with_timeout(lookup, 52.0, 4.0, WINDOW, 1.0)

        assert resolution.degraded is True
        assert "Unexpected" in resolution.error

    @pytest.mark.asyncio
    async def test_resolve_with_timeout_success(self):
        lookup = make_lookup(lambda request: httpx.Response(200, json=CAFE_RESPONSE))

        resolution = await resolve_with_timeout(lookup, 52.0, 4.0, WINDOW, 1.0)

        assert resolution.degraded is False
        assert resolution.candidate.category == "cafe"
