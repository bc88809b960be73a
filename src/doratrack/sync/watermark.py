"""Incremental sync watermarks.

Each batch job owns one key in a :class:`WatermarkStore`. The first run of a
job reads from a fixed lookback instead of the epoch; later runs resume from
the start time of the last successful run.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

import structlog

logger = structlog.get_logger()

DEFAULT_LOOKBACK = timedelta(days=30)


class WatermarkStore(Protocol):
    async def get_watermark(self, job_name: str) -> datetime | None: ...

    async def set_watermark(self, job_name: str, timestamp: datetime) -> None: ...


class Watermark:
    """One job's view of the watermark store."""

    def __init__(
        self,
        store: WatermarkStore,
        job_name: str,
        lookback: timedelta = DEFAULT_LOOKBACK,
    ) -> None:
        self._store = store
        self.job_name = job_name
        self._lookback = lookback

    async def since(self, now: datetime) -> datetime:
        last = await self._store.get_watermark(self.job_name)
        if last is None:
            logger.info("watermark.first_run", job=self.job_name, lookback=str(self._lookback))
            return now - self._lookback
        return last

    async def advance(self, timestamp: datetime) -> None:
        await self._store.set_watermark(self.job_name, timestamp)
        logger.debug("watermark.advanced", job=self.job_name, timestamp=timestamp.isoformat())
