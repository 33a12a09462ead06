"""
Unit tests for PlacesService: memoization and metering around upstream calls.
"""

import json

import httpx
import pytest

from services.exceptions import MissingApiKeyError, QuotaExceededError, UpstreamError
from services.places import PlacesService

SEARCH_RESPONSE = {
    "places": [
        {
            "id": "ChIJ1",
            "displayName": {"text": "Sushi Tei"},
            "formattedAddress": "1 Main St",
            "location": {"latitude": 1.0, "longitude": 2.0},
            "rating": 4.6,
            "userRatingCount": 120,
            "types": ["restaurant"],
            "priceLevel": "PRICE_LEVEL_MODERATE",
            "photos": [{"name": "places/ChIJ1/photos/a", "widthPx": 800, "heightPx": 600},
                       {"name": "places/ChIJ1/photos/b", "widthPx": 800, "heightPx": 600}],
        },
        {"id": "ChIJ2", "displayName": {"text": "Sushi Go"}},
    ]
}

DETAILS_RESPONSE = {
    "id": "ChIJ1",
    "displayName": {"text": "Sushi Tei"},
    "nationalPhoneNumber": "021 555",
    "regularOpeningHours": {"openNow": True, "weekdayDescriptions": ["Mon: 10-22"]},
    "reviews": [{"authorAttribution": {"displayName": "Ana"}, "rating": 5,
                 "text": {"text": "Great"}, "publishTime": "2024-01-01T00:00:00Z"}],
}


class Upstream:
    """Records requests and answers with a canned response."""

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = SEARCH_RESPONSE if payload is None else payload
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def service(cache, quota, ledger, settings, upstream):
    return PlacesService(cache, quota, ledger, settings, http_client=upstream.client())


class TestPlacesSearch:
    """Search flow: cache, gate, upstream, memoize, record."""

    @pytest.mark.asyncio
    async def test_miss_calls_upstream_caches_and_records(self, service, upstream, cache, ledger):
        result = await service.search("Sushi", location="1.0,2.0", max_results=5)

        assert result["status"] == "success"
        assert result["results_count"] == 2
        assert result["results"][0]["name"] == "Sushi Tei"
        assert result["results"][0]["location"] == {"lat": 1.0, "lng": 2.0}
        assert len(result["results"][0]["photos"]) == 1
        assert result["results"][1]["name"] == "Sushi Go"
        assert len(upstream.requests) == 1

        key = "app:places:search:location:1.0,2.0|maxResults:5|query:sushi|radius:5000"
        assert await cache.get(key) == result

        today = await ledger.usage_for_today()
        assert today.endpoints == {"places_search": 1}

    @pytest.mark.asyncio
    async def test_request_body_and_headers(self, service, upstream):
        await service.search("Sushi", location="1.5,-2.25", radius=1000, max_results=3)

        request = upstream.requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/places:searchText")
        assert request.headers["X-Goog-Api-Key"] == "test-key"
        body = json.loads(request.content)
        assert body["textQuery"] == "Sushi"
        assert body["maxResultCount"] == 3
        assert body["locationBias"]["circle"]["center"] == {"latitude": 1.5, "longitude": -2.25}
        assert body["locationBias"]["circle"]["radius"] == 1000.0

    @pytest.mark.asyncio
    async def test_hit_short_circuits_metering(self, service, upstream, ledger):
        first = await service.search("sushi")
        second = await service.search("  SUSHI ")

        assert first == second
        assert len(upstream.requests) == 1
        assert (await ledger.usage_for_today()).count == 1

    @pytest.mark.asyncio
    async def test_quota_exhausted_blocks_upstream(self, service, upstream, ledger):
        await ledger.record("places_search", 5)

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.search("ramen")

        assert exc_info.value.decision.allowed is False
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_cached_result_served_when_quota_exhausted(self, service, upstream, ledger):
        await service.search("sushi")
        await ledger.record("places_search", 4)

        result = await service.search("sushi")

        assert result["results_count"] == 2
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_cache_outage_still_meters(self, service, upstream, fake_redis, ledger):
        fake_redis.down = True

        result = await service.search("sushi")

        assert result["results_count"] == 2
        assert len(upstream.requests) == 1
        assert fake_redis.store == {}
        assert (await ledger.usage_for_today()).count == 1

    @pytest.mark.asyncio
    async def test_cache_outage_still_gated(self, service, upstream, fake_redis, ledger):
        fake_redis.down = True
        await ledger.record("places_search", 5)

        with pytest.raises(QuotaExceededError):
            await service.search("sushi")
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_upstream_error_is_not_cached_or_recorded(self, cache, quota, ledger, settings, fake_redis):
        upstream = Upstream(status_code=403, payload={"error": {"message": "Places API not enabled"}})
        service = PlacesService(cache, quota, ledger, settings, http_client=upstream.client())

        with pytest.raises(UpstreamError) as exc_info:
            await service.search("sushi")

        assert exc_info.value.status_code == 403
        assert "Places API not enabled" in str(exc_info.value)
        assert fake_redis.store == {}
        assert (await ledger.usage_for_today()).count == 0

    @pytest.mark.asyncio
    async def test_malformed_payload_is_upstream_error(self, cache, quota, ledger, settings):
        upstream = Upstream(payload={"unexpected": True})
        service = PlacesService(cache, quota, ledger, settings, http_client=upstream.client())

        with pytest.raises(UpstreamError):
            await service.search("sushi")
        assert (await ledger.usage_for_today()).count == 0

    @pytest.mark.asyncio
    async def test_missing_api_key(self, cache, quota, ledger, settings, upstream):
        settings.google_maps_api_key = None
        service = PlacesService(cache, quota, ledger, settings, http_client=upstream.client())

        with pytest.raises(MissingApiKeyError):
            await service.search("sushi")
        assert upstream.requests == []


class TestPlaceDetails:
    """Details flow."""

    @pytest.mark.asyncio
    async def test_details_cached_and_recorded(self, cache, quota, ledger, settings):
        upstream = Upstream(payload=DETAILS_RESPONSE)
        service = PlacesService(cache, quota, ledger, settings, http_client=upstream.client())

        result = await service.details("ChIJ1")
        again = await service.details("ChIJ1")

        assert result == again
        assert len(upstream.requests) == 1
        assert upstream.requests[0].method == "GET"
        assert upstream.requests[0].url.path.endswith("/places/ChIJ1")

        place = result["result"]
        assert place["name"] == "Sushi Tei"
        assert place["formatted_phone_number"] == "021 555"
        assert place["opening_hours"] == {"openNow": True, "weekdayDescriptions": ["Mon: 10-22"]}
        assert place["reviews"][0]["author"] == "Ana"
        assert place["website"] == ""

        assert await cache.get("app:places:details:placeId:ChIJ1") == result
        assert (await ledger.usage_for_today()).endpoints == {"places_details": 1}
