"""LLM-assisted place search routes."""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from core.container import container
from services.llm import LLMService
from routers.places import LOCATION_PATTERN

router = APIRouter(prefix="/api/llm", tags=["llm"])


class AskRequest(BaseModel):
    prompt: str = Field(max_length=2000)
    location: Optional[str] = Field(default=None, pattern=LOCATION_PATTERN)
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    max_results: int = Field(default=5, ge=1, le=20, alias="maxResults")

    model_config = {"populate_by_name": True}

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt is required")
        return v


@router.post("/ask")
async def ask(
    request: AskRequest,
    llm_service: LLMService = Depends(lambda: container.llm_service())
):
    """Ask the LLM for recommendations and attach matching places."""
    return await llm_service.ask(
        request.prompt,
        location=request.location,
        conversation_id=request.conversation_id,
        max_results=request.max_results,
    )


@router.get("/health")
async def llm_health(
    llm_service: LLMService = Depends(lambda: container.llm_service())
):
    """Report whether the LLM backend is reachable."""
    result = await llm_service.health()
    if result["status"] != "connected":
        return JSONResponse(status_code=503, content=result)
    return result
