"""
Unit tests for LLMService and query extraction.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from services.exceptions import LLMUnavailableError, QuotaExceededError
from services.llm import LLMService, extract_place_info, generate_search_query
from models.usage import QuotaDecision


def llm_client(status_code=200, answer="Try the best ramen in Shibuya tonight.", models=None):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/models"):
            return httpx.Response(200, json={"data": models if models is not None else [{"id": "llama3"}]})
        if status_code != 200:
            return httpx.Response(status_code, json={"detail": "nope"})
        return httpx.Response(200, json={
            "model": "llama3",
            "choices": [{"message": {"role": "assistant", "content": answer}}],
        })

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


@pytest.fixture
def places():
    places = MagicMock()
    places.search = AsyncMock(return_value={"results": [{"name": "Ichiran"}], "results_count": 1})
    return places


class TestQueryExtraction:
    """Free-text query extraction."""

    def test_extracts_best_x_in_y(self):
        info = extract_place_info("Try the best ramen in Shibuya.")

        assert info["queries"] == ["ramen", "Shibuya"]
        assert "Shibuya" in info["place_names"]

    def test_first_query_wins(self):
        assert generate_search_query("You should look for cafes near the river.") == "cafes near the river"

    def test_falls_back_to_place_names(self):
        assert generate_search_query("Ubud Monkey Forest is lovely.") == "Ubud Monkey Forest"

    def test_nothing_found(self):
        assert generate_search_query("sounds good to me") is None


class TestLLMService:
    """Chat plus metered place lookup."""

    @pytest.mark.asyncio
    async def test_ask_searches_extracted_query(self, settings, places):
        client, requests = llm_client()
        service = LLMService(places, settings, http_client=client)

        result = await service.ask("where to eat ramen?", location="1.0,2.0", max_results=3)

        places.search.assert_called_once_with("ramen", location="1.0,2.0", max_results=3)
        assert result["places"]["results_count"] == 1
        assert result["places"]["google_maps_available"] is True
        assert result["llm_response"]["model"] == "llama3"
        assert result["llm_response"]["extracted_query"] == "ramen"

        chat_request = requests[-1]
        body = json.loads(chat_request.content)
        assert body["model"] == "llama3"
        assert body["messages"][1] == {"role": "user", "content": "where to eat ramen?"}

    @pytest.mark.asyncio
    async def test_configured_model_skips_discovery(self, settings, places):
        settings.llm_model = "mistral"
        client, requests = llm_client()
        service = LLMService(places, settings, http_client=client)

        await service.chat("hello")

        assert len(requests) == 1
        assert json.loads(requests[0].content)["model"] == "mistral"

    @pytest.mark.asyncio
    async def test_ask_degrades_when_quota_exhausted(self, settings, places):
        places.search.side_effect = QuotaExceededError(
            QuotaDecision(allowed=False, limit=5, used=5, remaining=0, message="Daily API limit of 5 requests reached")
        )
        client, _ = llm_client()
        service = LLMService(places, settings, http_client=client)

        result = await service.ask("where to eat ramen?")

        assert result["places"]["google_maps_available"] is False
        assert result["places"]["results"] == []
        assert "Daily API limit" in result["places"]["google_maps_error"]
        assert result["llm_response"]["text"]

    @pytest.mark.asyncio
    async def test_unauthorized_backend(self, settings, places):
        client, _ = llm_client(status_code=401)
        service = LLMService(places, settings, http_client=client)

        with pytest.raises(LLMUnavailableError):
            await service.ask("where to eat?")
        places.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_models_available(self, settings, places):
        client, _ = llm_client(models=[])
        service = LLMService(places, settings, http_client=client)

        with pytest.raises(LLMUnavailableError):
            await service.chat("hello")

    @pytest.mark.asyncio
    async def test_health(self, settings, places):
        client, _ = llm_client(models=[{"id": "a"}, {"id": "b"}])
        service = LLMService(places, settings, http_client=client)

        health = await service.health()

        assert health["status"] == "connected"
        assert health["models_available"] == 2
