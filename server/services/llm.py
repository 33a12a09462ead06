"""LLM-assisted place search via an OpenAI-compatible Open WebUI backend."""

import re
import time
from typing import Any, Dict, List, Optional

import httpx

from core.config import Settings
from core.logging import get_logger, log_api_call, log_execution_time
from services.exceptions import (
    LLMUnavailableError,
    MissingApiKeyError,
    QuotaExceededError,
    UpstreamError,
)
from services.places import PlacesService

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a helpful assistant that helps users find places to visit, eat, or explore using Google Maps.
When users ask about places (e.g., "where to go", "where to eat"), provide helpful suggestions with:
- Specific place names
- Place types (restaurants, cafes, parks, museums, etc.)
- General locations (neighborhoods, cities, areas)

Your responses will be used to search the Google Maps Places API, so be specific and clear about
what type of place the user is looking for and where they want to find it."""

QUERY_PATTERNS = [
    re.compile(r"(?:find|search for|look for|where to|places to)\s+([^.!?]+)", re.IGNORECASE),
    re.compile(r"(?:restaurants?|cafes?|hotels?|shops?|parks?|museums?)\s+(?:in|near|at)\s+([^.!?]+)", re.IGNORECASE),
    re.compile(r"(?:best|good|popular)\s+([^.!?]+)\s+(?:in|near|at)\s+([^.!?]+)", re.IGNORECASE),
]
PLACE_NAME_PATTERN = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\b")
FALLBACK_PATTERNS = [
    re.compile(r"(?:restaurants?|cafes?|hotels?|shops?|parks?|museums?|attractions?)", re.IGNORECASE),
    re.compile(r"(?:in|near|at)\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*"),
]
IGNORED_NAMES = frozenset(["The", "This", "That", "There", "Here", "You", "Your"])


def extract_place_info(text: str) -> Dict[str, List[str]]:
    """Pull candidate search phrases and capitalized place names out of free text."""
    queries: List[str] = []
    for pattern in QUERY_PATTERNS:
        for match in pattern.finditer(text):
            queries.extend(group.strip() for group in match.groups() if group)

    names = [m.group(1) for m in PLACE_NAME_PATTERN.finditer(text) if m.group(1) not in IGNORED_NAMES]
    return {"queries": queries, "place_names": names}


def generate_search_query(text: str) -> Optional[str]:
    """Best-effort search query for an LLM answer; None when nothing fits."""
    info = extract_place_info(text)
    if info["queries"]:
        return info["queries"][0]
    if info["place_names"]:
        return " ".join(info["place_names"])
    for pattern in FALLBACK_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


class LLMService:
    """Chat completion plus a cached, metered place lookup on the answer."""

    def __init__(self, places: PlacesService, settings: Settings,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.places = places
        self.settings = settings
        self.http_client = http_client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.open_webui_api_key:
            headers["Authorization"] = f"Bearer {self.settings.open_webui_api_key}"
        return headers

    async def _send(self, method: str, path: str, timeout: float,
                    body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = f"{self.settings.open_webui_base_url.rstrip('/')}{path}"
        if self.http_client is not None:
            return await self.http_client.request(method, url, headers=self._headers(), json=body, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(method, url, headers=self._headers(), json=body)

    async def list_models(self) -> List[Dict[str, Any]]:
        response = await self._send("GET", "/api/v1/models", timeout=5.0)
        response.raise_for_status()
        return response.json().get("data") or []

    async def _resolve_model(self) -> str:
        if self.settings.llm_model:
            return self.settings.llm_model
        try:
            models = await self.list_models()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to list LLM models", error=str(e))
            models = []
        model = next((m for m in models if not m.get("arena")), models[0] if models else None)
        if not model:
            raise LLMUnavailableError(
                "No models available in Open WebUI. Connect a model in Settings > Connections."
            )
        return model.get("id") or model.get("name")

    async def chat(self, prompt: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
        """Single-turn chat completion.

        Raises:
            LLMUnavailableError: backend refused the connection or our credentials.
            UpstreamError: backend answered with an error or an unusable payload.
        """
        start_time = time.time()
        model = await self._resolve_model()
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.7,
            "max_tokens": 200,
            "stream": False,
        }
        if conversation_id:
            payload["conversation_id"] = conversation_id

        try:
            response = await self._send("POST", "/api/v1/chat/completions",
                                        timeout=self.settings.llm_timeout, body=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log_api_call(logger, "open_webui", "chat", False, model=model, status_code=status)
            if status == 401:
                raise LLMUnavailableError(
                    "Open WebUI requires authentication. Set OPEN_WEBUI_API_KEY"
                ) from e
            if status == 404:
                raise LLMUnavailableError("Open WebUI not running or not accessible. Check the URL.") from e
            raise UpstreamError("LLM API", e.response.text or "Request rejected", status) from e
        except httpx.ConnectError as e:
            log_api_call(logger, "open_webui", "chat", False, model=model, error=str(e))
            raise LLMUnavailableError("Open WebUI not running or not accessible. Check the URL.") from e
        except httpx.RequestError as e:
            log_api_call(logger, "open_webui", "chat", False, model=model, error=str(e))
            raise UpstreamError("LLM API", str(e)) from e
        except ValueError as e:
            raise UpstreamError("LLM API", "Response is not JSON") from e

        choices = data.get("choices") or []
        if not choices:
            raise UpstreamError("LLM API", "Invalid response format from LLM")

        log_api_call(logger, "open_webui", "chat", True, model=data.get("model") or model)
        log_execution_time(logger, "llm_chat", start_time, time.time())
        return {
            "text": choices[0]["message"]["content"],
            "model": data.get("model") or model,
            "conversation_id": data.get("conversation_id") or conversation_id,
        }

    async def ask(self, prompt: str, location: Optional[str] = None,
                  conversation_id: Optional[str] = None, max_results: int = 5) -> Dict[str, Any]:
        """Answer a prompt and attach matching places.

        Place lookups go through PlacesService, so they share its cache and
        daily quota; a maps failure degrades to an LLM-only answer.
        """
        llm = await self.chat(prompt, conversation_id)
        search_query = generate_search_query(llm["text"]) or prompt

        results: List[Dict[str, Any]] = []
        maps_error: Optional[str] = None
        try:
            found = await self.places.search(search_query, location=location, max_results=max_results)
            results = found["results"]
        except MissingApiKeyError:
            maps_error = "Google Maps API key not configured. Showing LLM recommendations only."
        except (QuotaExceededError, UpstreamError) as e:
            logger.warning("Place lookup failed for LLM answer", query=search_query, error=str(e))
            maps_error = str(e)

        places: Dict[str, Any] = {
            "query": search_query,
            "results_count": len(results),
            "results": results,
            "google_maps_available": maps_error is None,
        }
        if maps_error:
            places["google_maps_error"] = maps_error
            places["note"] = "Showing LLM recommendations only. Google Maps unavailable."

        return {
            "status": "success",
            "places": places,
            "llm_response": {
                "text": llm["text"],
                "model": llm["model"],
                "extracted_query": search_query,
                "conversation_id": llm["conversation_id"],
            },
        }

    async def health(self) -> Dict[str, Any]:
        """Probe the LLM backend by listing its models."""
        base_url = self.settings.open_webui_base_url
        try:
            models = await self.list_models()
        except httpx.HTTPStatusError as e:
            auth_error = e.response.status_code == 401
            return {
                "status": "disconnected",
                "llm_service": "Open WebUI",
                "url": base_url,
                "error": "Open WebUI requires authentication. Set OPEN_WEBUI_API_KEY" if auth_error else str(e),
            }
        except (httpx.RequestError, ValueError) as e:
            return {"status": "disconnected", "llm_service": "Open WebUI", "url": base_url, "error": str(e)}

        return {
            "status": "connected",
            "llm_service": "Open WebUI",
            "url": base_url,
            "models_available": len(models),
        }
