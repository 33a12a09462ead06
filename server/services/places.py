"""Google Places (New) service behind the quota-gated cache."""

import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from core.cache import CacheStore
from core.config import Settings
from core.exceptions import NotConnected
from core.logging import get_logger, log_api_call, log_execution_time
from core.quota import QuotaGate
from core.usage import UsageLedger
from services.exceptions import MissingApiKeyError, QuotaExceededError, UpstreamError

logger = get_logger(__name__)

SEARCH_FIELD_MASK = ",".join([
    "places.id", "places.displayName", "places.formattedAddress", "places.location",
    "places.rating", "places.userRatingCount", "places.types", "places.priceLevel",
    "places.photos",
])

DETAILS_FIELD_MASK = ",".join([
    "id", "displayName", "formattedAddress", "location", "rating", "userRatingCount",
    "nationalPhoneNumber", "website", "regularOpeningHours", "types", "priceLevel",
    "photos", "reviews",
])

MAX_DETAIL_PHOTOS = 3
MAX_DETAIL_REVIEWS = 5


def maps_url(place_id: str) -> str:
    return f"https://www.google.com/maps/place/?q=place_id:{place_id}"


def embed_url(place_id: str, api_key: str) -> str:
    return f"https://www.google.com/maps/embed/v1/place?key={api_key}&q=place_id:{place_id}"


class PlacesService:
    """Text search and place details, memoized in Redis and metered by the ledger.

    Flow per call: cache hit returns immediately without metering; on a miss
    the quota gate is consulted, the upstream call is made, and only a
    successful result is cached and recorded.
    """

    def __init__(self, cache: CacheStore, quota: QuotaGate, ledger: UsageLedger,
                 settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.cache = cache
        self.quota = quota
        self.ledger = ledger
        self.settings = settings
        self.http_client = http_client

    def _api_key(self) -> str:
        if not self.settings.google_maps_api_key:
            raise MissingApiKeyError("Google Maps", "GOOGLE_MAPS_API_KEY")
        return self.settings.google_maps_api_key

    async def _metered(self, namespace: str, params: Dict[str, Any], ttl: int,
                       endpoint: str, fetch: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
        key = self.cache.make_key(namespace, params)

        cache_available = True
        try:
            cached = await self.cache.get(key)
        except NotConnected as e:
            # Not a miss: skip memoization but keep metering.
            cache_available = False
            logger.warning("Cache unavailable, calling upstream without memoization",
                           cache_key=key, error=str(e))
        else:
            if cached is not None:
                logger.info("Cache hit", cache_key=key)
                return cached

        decision = await self.quota.check()
        if not decision.allowed:
            raise QuotaExceededError(decision)

        payload = await fetch()

        if cache_available:
            try:
                await self.cache.set(key, payload, ttl)
            except NotConnected as e:
                logger.warning("Cache unavailable, result not memoized", cache_key=key, error=str(e))

        await self.ledger.record(endpoint, 1)
        return payload

    async def _request(self, method: str, url: str, operation: str, api_key: str,
                       field_mask: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": api_key,
            "X-Goog-FieldMask": field_mask,
        }
        start_time = time.time()

        try:
            if self.http_client is not None:
                response = await self.http_client.request(
                    method, url, headers=headers, json=body, timeout=self.settings.maps_timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.settings.maps_timeout) as client:
                    response = await client.request(method, url, headers=headers, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            message = _google_error_message(e.response) or "Request rejected"
            log_api_call(logger, "google_places", operation, False,
                         status_code=e.response.status_code, error=message)
            raise UpstreamError("Google Places API", message, e.response.status_code) from e
        except httpx.TimeoutException as e:
            log_api_call(logger, "google_places", operation, False, error="timeout")
            raise UpstreamError("Google Places API", "Request timed out", 504) from e
        except httpx.RequestError as e:
            log_api_call(logger, "google_places", operation, False, error=str(e))
            raise UpstreamError("Google Places API", f"Network error: {e}", 502) from e
        except ValueError as e:
            raise UpstreamError("Google Places API", "Response is not JSON", 502) from e

        log_api_call(logger, "google_places", operation, True)
        log_execution_time(logger, operation, start_time, time.time())
        return data

    async def search(self, query: str, location: Optional[str] = None,
                     radius: int = 5000, max_results: int = 5) -> Dict[str, Any]:
        """Text search, optionally biased to a circle around ``lat,lng``."""
        api_key = self._api_key()
        params = {
            "query": query.lower().strip(),
            "location": location or "",
            "radius": int(radius),
            "maxResults": int(max_results),
        }

        async def fetch() -> Dict[str, Any]:
            body: Dict[str, Any] = {
                "textQuery": query,
                "maxResultCount": int(max_results),
            }
            if location:
                lat, lng = (float(part) for part in location.split(","))
                body["locationBias"] = {
                    "circle": {
                        "center": {"latitude": lat, "longitude": lng},
                        "radius": float(radius),
                    }
                }

            data = await self._request(
                "POST", f"{self.settings.places_api_base}/places:searchText",
                "places_search", api_key, SEARCH_FIELD_MASK, body
            )
            if not isinstance(data, dict) or "places" not in data:
                raise UpstreamError("Google Places API", "Invalid response from Google Places API", 502)

            results = [map_place_summary(place, api_key) for place in data["places"][:int(max_results)]]
            return {
                "status": "success",
                "query": query,
                "results_count": len(results),
                "results": results,
            }

        return await self._metered(
            "places:search", params, self.settings.places_search_ttl, "places_search", fetch
        )

    async def details(self, place_id: str) -> Dict[str, Any]:
        """Full details for a single place."""
        api_key = self._api_key()

        async def fetch() -> Dict[str, Any]:
            data = await self._request(
                "GET", f"{self.settings.places_api_base}/places/{place_id}",
                "places_details", api_key, DETAILS_FIELD_MASK
            )
            if not data:
                raise UpstreamError("Google Places API", "Invalid response from Google Places API", 502)
            return {"status": "success", "result": map_place_details(data, api_key)}

        return await self._metered(
            "places:details", {"placeId": place_id}, self.settings.places_details_ttl,
            "places_details", fetch
        )


def _google_error_message(response: httpx.Response) -> Optional[str]:
    try:
        return response.json().get("error", {}).get("message")
    except (ValueError, AttributeError):
        return None


def _location(place: Dict[str, Any]) -> Dict[str, float]:
    loc = place.get("location") or {}
    return {"lat": loc.get("latitude", 0), "lng": loc.get("longitude", 0)}


def map_place_summary(place: Dict[str, Any], api_key: str) -> Dict[str, Any]:
    """Flatten a searchText result into the public search DTO."""
    place_id = place.get("id", "")
    photos = place.get("photos") or []
    return {
        "place_id": place_id,
        "name": (place.get("displayName") or {}).get("text") or "Unknown",
        "formatted_address": place.get("formattedAddress") or "",
        "location": _location(place),
        "rating": place.get("rating"),
        "user_ratings_total": place.get("userRatingCount"),
        "types": place.get("types") or [],
        "price_level": place.get("priceLevel"),
        "photos": [
            {"name": p.get("name"), "widthPx": p.get("widthPx"), "heightPx": p.get("heightPx")}
            for p in photos[:1]
        ],
        "maps_url": maps_url(place_id),
        "embed_url": embed_url(place_id, api_key),
    }


def map_place_details(place: Dict[str, Any], api_key: str) -> Dict[str, Any]:
    """Flatten a place details payload into the public details DTO."""
    place_id = place.get("id", "")
    hours = place.get("regularOpeningHours")
    return {
        "place_id": place_id,
        "name": (place.get("displayName") or {}).get("text") or "Unknown",
        "formatted_address": place.get("formattedAddress") or "",
        "location": _location(place),
        "rating": place.get("rating"),
        "user_ratings_total": place.get("userRatingCount"),
        "formatted_phone_number": place.get("nationalPhoneNumber") or "",
        "website": place.get("website") or "",
        "opening_hours": {
            "openNow": hours.get("openNow"),
            "weekdayDescriptions": hours.get("weekdayDescriptions") or [],
        } if hours else None,
        "types": place.get("types") or [],
        "price_level": place.get("priceLevel"),
        "photos": [
            {
                "name": p.get("name"),
                "widthPx": p.get("widthPx"),
                "heightPx": p.get("heightPx"),
                "url": f"https://places.googleapis.com/v1/{p.get('name')}/media?maxWidthPx=400&key={api_key}",
            }
            for p in (place.get("photos") or [])[:MAX_DETAIL_PHOTOS]
        ],
        "reviews": [
            {
                "author": (r.get("authorAttribution") or {}).get("displayName") or "Anonymous",
                "rating": r.get("rating"),
                "text": (r.get("text") or {}).get("text") or "",
                "time": r.get("publishTime") or "",
            }
            for r in (place.get("reviews") or [])[:MAX_DETAIL_REVIEWS]
        ],
        "maps_url": maps_url(place_id),
        "embed_url": embed_url(place_id, api_key),
    }
