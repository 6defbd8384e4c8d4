"""Celery task for the periodic scheduler pass.

Runs every minute via Celery Beat. Fires due cron schedules, releases
waiting executions whose resume time has passed, evaluates time-based
triggers and recovers stale runs, then hands the resulting pending
executions to the workflow queue.

All datetime comparisons use naive UTC to match the database columns.
"""

import asyncio
import logging

from core.logging_config import setup_logging
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.scheduler.run_scheduler_tick",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="scheduler",
)
def run_scheduler_tick(self):
    """Run one scheduler pass and dispatch the executions it made runnable."""
    setup_logging()
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        report = loop.run_until_complete(_tick())
    except Exception as exc:
        logger.error(f"[scheduler] Tick failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()

    from worker.tasks.workflow import advance_execution

    for execution_id in report["execution_ids"]:
        advance_execution.delay(execution_id)

    if report["errors"]:
        logger.warning(f"[scheduler] Tick finished with {len(report['errors'])} error(s): {report['errors']}")
    return report


async def _tick() -> dict:
    from db.worker_session import worker_session_factory
    from workflow.scheduler import create_scheduler_for

    async with worker_session_factory() as session_factory:
        report = await create_scheduler_for(session_factory).run_once()
    return report.to_dict()
