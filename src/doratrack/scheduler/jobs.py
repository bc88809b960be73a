"""Job functions registered with :class:`JobScheduler`.

Each job takes its collaborator as an optional keyword argument and is a
no-op when it is missing, so the scheduler can be wired before every
dependency is available.
"""

from __future__ import annotations

import structlog

from doratrack.changes.lead_time import LeadTimeCalculator
from doratrack.sync.runners import BatchSyncRunner

logger = structlog.get_logger()


async def lead_time_pass(calculator: LeadTimeCalculator | None = None) -> None:
    if calculator is None:
        logger.debug("job.lead_time_pass.skipped", reason="no calculator")
        return
    result = await calculator.calculate()
    logger.info(
        "job.lead_time_pass.complete",
        deployments=result.deployments_processed,
        facts=result.facts_created,
    )


async def sync_pass(runner: BatchSyncRunner | None = None) -> None:
    if runner is None:
        logger.debug("job.sync_pass.skipped", reason="no runner")
        return
    result = await runner.run()
    logger.info(
        "job.sync_pass.complete",
        job=result.job,
        units=result.units,
        units_failed=result.units_failed,
        created=result.created,
    )
