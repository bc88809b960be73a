"""Asyncio interval scheduler for the batch passes.

Each enabled job runs in its own task: sleep for the interval, run, repeat.
A failing run is logged and counted; the loop keeps going.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

logger = structlog.get_logger()

JobFunc = Callable[..., Awaitable[Any]]


@dataclass
class ScheduledJob:
    name: str
    func: JobFunc
    interval_seconds: int
    kwargs: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0
    _task: asyncio.Task[None] | None = field(default=None, repr=False)


class JobScheduler:
    """Runs registered coroutine functions on fixed intervals."""

    def __init__(self) -> None:
        self._jobs: dict[str, ScheduledJob] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def add_job(
        self,
        name: str,
        func: JobFunc,
        interval_seconds: int,
        enabled: bool = True,
        **kwargs: Any,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        existing = self._jobs.get(name)
        if existing is not None and existing._task is not None:
            existing._task.cancel()
        self._jobs[name] = ScheduledJob(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            kwargs=kwargs,
            enabled=enabled,
        )
        logger.info("scheduler.job_added", job=name, interval_seconds=interval_seconds)

    def remove_job(self, name: str) -> bool:
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        if job._task is not None:
            job._task.cancel()
        logger.info("scheduler.job_removed", job=name)
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for job in self._jobs.values():
            if job.enabled:
                job._task = asyncio.create_task(self._run_loop(job), name=f"job:{job.name}")
        logger.info("scheduler.started", jobs=len(self._jobs))

    async def stop(self) -> None:
        tasks = [job._task for job in self._jobs.values() if job._task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for job in self._jobs.values():
            job._task = None
        if self._running:
            logger.info("scheduler.stopped")
        self._running = False

    async def _run_loop(self, job: ScheduledJob) -> None:
        while True:
            await asyncio.sleep(job.interval_seconds)
            try:
                await job.func(**job.kwargs)
            except asyncio.CancelledError:
                raise
            except Exception:
                job.error_count += 1
                logger.exception("scheduler.job_failed", job=job.name)
                continue
            job.run_count += 1
            job.last_run = datetime.now(UTC)
            logger.debug("scheduler.job_completed", job=job.name, run_count=job.run_count)

    def _describe(self, job: ScheduledJob) -> dict[str, Any]:
        return {
            "name": job.name,
            "interval_seconds": job.interval_seconds,
            "enabled": job.enabled,
            "last_run": job.last_run.isoformat() if job.last_run else None,
            "run_count": job.run_count,
            "error_count": job.error_count,
            "running": job._task is not None and not job._task.done(),
        }

    def list_jobs(self) -> list[dict[str, Any]]:
        return [self._describe(job) for job in self._jobs.values()]

    def get_job(self, name: str) -> dict[str, Any] | None:
        job = self._jobs.get(name)
        return self._describe(job) if job else None
