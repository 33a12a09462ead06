"""Daily quota gate over the usage ledger."""

from typing import Any, Dict

from core.config import Settings
from core.exceptions import CoreError
from core.logging import get_logger
from core.usage import UsageLedger
from models.usage import QuotaDecision

logger = get_logger(__name__)


class QuotaGate:
    """Allow or deny metered upstream calls against a per-day limit.

    The decision is recomputed from the ledger on every call, so the gate
    reopens on its own when the UTC date rolls over. When the ledger cannot
    be read the outcome follows ``settings.quota_fail_open``.
    """

    def __init__(self, ledger: UsageLedger, settings: Settings):
        self.ledger = ledger
        self.limit = settings.google_maps_daily_limit
        self.fail_open = settings.quota_fail_open

    async def check(self) -> QuotaDecision:
        try:
            used = (await self.ledger.usage_for_today()).count
        except CoreError as e:
            logger.error("Error checking daily limit", error=str(e), fail_open=self.fail_open)
            if self.fail_open:
                return QuotaDecision(allowed=True, limit=self.limit)
            return QuotaDecision(
                allowed=False,
                limit=self.limit,
                message="Usage ledger unavailable; metered calls are suspended"
            )

        if used >= self.limit:
            logger.warning("Daily API limit reached", used=used, limit=self.limit)
            return QuotaDecision(
                allowed=False,
                used=used,
                remaining=0,
                limit=self.limit,
                message=f"Daily API limit of {self.limit} requests reached. Current usage: {used}"
            )

        return QuotaDecision(
            allowed=True,
            used=used,
            remaining=self.limit - used,
            limit=self.limit
        )

    async def stats(self) -> Dict[str, Any]:
        """Usage snapshot enriched with today's remaining budget."""
        try:
            snapshot = await self.ledger.snapshot()
        except CoreError as e:
            logger.error("Error getting usage stats", error=str(e))
            return {
                "today": {
                    "date": self.ledger.today_key(),
                    "count": 0,
                    "endpoints": {},
                    "remaining": self.limit,
                    "limit": self.limit,
                },
                "total": 0,
                "daily_history": [],
            }

        return {
            "today": {
                "date": snapshot.date,
                "count": snapshot.today.count,
                "endpoints": snapshot.today.endpoints,
                "remaining": max(0, self.limit - snapshot.today.count),
                "limit": self.limit,
            },
            "total": snapshot.total,
            "daily_history": [entry.model_dump() for entry in snapshot.recent_history],
        }
