"""Durable, date-bucketed usage ledger.

One JSON document holds per-day call counts (split by endpoint) and a lifetime
total. Buckets older than the retention window are pruned on every write; the
lifetime total is never reduced.

Writes inside a process are serialized through an asyncio.Lock and land on
disk via write-to-temp + os.replace, so readers never see a torn document.
Separate worker processes sharing one file can still lose increments.
"""

import os
import asyncio
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from core.config import Settings
from core.exceptions import CoreError, LedgerIOFailure, StorageCorruption
from core.logging import get_logger
from models.usage import DailyCount, DailyUsage, UsageDocument, UsageSnapshot

logger = get_logger(__name__)

RETENTION_DAYS = 30
HISTORY_DAYS = 7


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UsageLedger:
    """Persistent per-day call counters backing the daily quota."""

    def __init__(self, settings: Settings, path: Optional[Path] = None,
                 clock: Callable[[], date] = utc_today):
        self.path = Path(path) if path is not None else settings.usage_path
        self.clock = clock
        self._lock = asyncio.Lock()

    def today_key(self) -> str:
        return self.clock().isoformat()

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _read_sync(self) -> UsageDocument:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return UsageDocument()
        except OSError as e:
            raise LedgerIOFailure(str(self.path), str(e)) from e
        try:
            return UsageDocument.model_validate_json(raw)
        except ValidationError as e:
            raise StorageCorruption(f"Usage ledger {self.path} is not a valid document") from e

    def _exists_sync(self) -> bool:
        try:
            self.path.stat()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise LedgerIOFailure(str(self.path), str(e)) from e
        return True

    def _write_sync(self, document: UsageDocument) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise LedgerIOFailure(str(self.path), str(e)) from e

    async def load(self) -> UsageDocument:
        """Read the ledger; a corrupt document reads as empty.

        Raises:
            LedgerIOFailure: the file exists but cannot be read.
        """
        try:
            return await asyncio.to_thread(self._read_sync)
        except StorageCorruption as e:
            logger.warning("Usage ledger corrupt, resetting", path=str(self.path), error=str(e.__cause__))
            return UsageDocument()

    async def initialize(self) -> None:
        """Create an empty ledger document if none exists yet."""
        try:
            async with self._lock:
                if not await asyncio.to_thread(self._exists_sync):
                    await asyncio.to_thread(self._write_sync, UsageDocument())
                    logger.info("Usage ledger created", path=str(self.path))
        except CoreError as e:
            logger.error("Usage ledger initialization failed", path=str(self.path), error=str(e))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @staticmethod
    def prune(document: UsageDocument, today: date) -> int:
        """Drop buckets dated before today minus the retention window."""
        cutoff = (today - timedelta(days=RETENTION_DAYS)).isoformat()
        stale = [day for day in document.daily if day < cutoff]
        for day in stale:
            del document.daily[day]
        return len(stale)

    async def record(self, endpoint: str, count: int = 1) -> None:
        """Add count calls for endpoint to today's bucket and the lifetime total.

        Storage failures are logged and swallowed: metering must never fail
        the request it is metering. Non-positive counts are ignored.
        """
        if count < 1:
            logger.error("Ignoring non-positive usage count", endpoint=endpoint, count=count)
            return

        try:
            async with self._lock:
                document = await self.load()
                today = self.clock()
                bucket = document.daily.setdefault(today.isoformat(), DailyUsage())
                bucket.count += count
                bucket.endpoints[endpoint] = bucket.endpoints.get(endpoint, 0) + count
                document.total += count

                pruned = self.prune(document, today)
                await asyncio.to_thread(self._write_sync, document)

            logger.debug("Usage recorded",
                         endpoint=endpoint,
                         count=count,
                         today_count=bucket.count,
                         pruned_days=pruned)
        except CoreError as e:
            logger.error("Error tracking usage", endpoint=endpoint, count=count, error=str(e))

    async def usage_for_today(self) -> DailyUsage:
        """Today's bucket, zeroed when nothing was recorded yet.

        Raises:
            LedgerIOFailure: the ledger cannot be read.
        """
        document = await self.load()
        return document.daily.get(self.today_key(), DailyUsage())

    async def snapshot(self) -> UsageSnapshot:
        """Today's bucket, lifetime total and the last few recorded days."""
        document = await self.load()
        today = self.today_key()
        recent = sorted(document.daily)[-HISTORY_DAYS:]
        return UsageSnapshot(
            date=today,
            today=document.daily.get(today, DailyUsage()),
            total=document.total,
            recent_history=[DailyCount(date=day, count=document.daily[day].count) for day in recent],
        )
