"""Usage and cache administration routes."""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from core.cache import CacheStore
from core.container import container
from core.exceptions import NotConnected
from core.logging import get_logger
from core.quota import QuotaGate

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["usage"])


class PurgeRequest(BaseModel):
    pattern: str = Field(min_length=1, description="Glob pattern, e.g. app:places:*")


def require_admin_token(x_admin_token: Optional[str] = Header(default=None)) -> None:
    """Operator endpoints need ADMIN_TOKEN configured and echoed in X-Admin-Token."""
    expected = container.settings().admin_token
    if not expected:
        raise HTTPException(status_code=403, detail="Operator endpoints are disabled; set ADMIN_TOKEN")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        logger.warning("Rejected operator request", reason="bad admin token")
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/usage/stats")
async def usage_stats(
    quota_gate: QuotaGate = Depends(lambda: container.quota_gate())
):
    """Today's usage against the daily limit, lifetime total and recent days."""
    stats = await quota_gate.stats()
    return {"status": "success", **stats}


@router.post("/cache/purge", dependencies=[Depends(require_admin_token)])
async def purge_cache(
    request: PurgeRequest,
    cache: CacheStore = Depends(lambda: container.cache())
):
    """Operator-triggered invalidation of this application's cached responses."""
    pattern = cache.scope_pattern(request.pattern)
    try:
        deleted = await cache.purge(pattern)
    except NotConnected as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "success", "pattern": pattern, "deleted": deleted}
