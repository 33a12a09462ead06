"""Pydantic v2 models for the usage ledger and quota decisions."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class DailyUsage(BaseModel):
    """Calls made on one calendar day, in total and per endpoint."""
    count: int = 0
    endpoints: Dict[str, int] = Field(default_factory=dict)


class UsageDocument(BaseModel):
    """Persisted ledger: per-day buckets keyed by ISO date, plus a lifetime total."""
    daily: Dict[str, DailyUsage] = Field(default_factory=dict)
    total: int = 0  # never decremented, survives pruning


class DailyCount(BaseModel):
    date: str
    count: int


class UsageSnapshot(BaseModel):
    """Observability view of the ledger."""
    date: str
    today: DailyUsage
    total: int
    recent_history: List[DailyCount] = Field(default_factory=list)


class QuotaDecision(BaseModel):
    """Outcome of a quota check for the current day."""
    allowed: bool
    limit: int
    remaining: Optional[int] = None
    used: Optional[int] = None
    message: Optional[str] = None
