"""Celery tasks for workflow execution.

These tasks bridge the Celery worker with the WorkflowEngine. Each task
opens its own event loop and its own database engine, advances one or
more executions, and returns a small summary. All progress lives in the
database, so a task that dies midway is picked up again by stale-run
recovery in the scheduler.
"""

import asyncio
import logging

from core.logging_config import setup_logging
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run(coro):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(
    name="worker.tasks.workflow.advance_execution",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    queue="workflows",
)
def advance_execution(self, execution_id: str):
    """Advance one execution until it completes, fails or suspends.

    Args:
        execution_id: Execution to advance (must be pending to be claimed)
    """
    setup_logging()
    logger.info(f"Advancing execution {execution_id}")
    try:
        result = _run(_advance(execution_id))
        logger.info(f"Execution {execution_id} -> {result['status']}")
        return result
    except Exception as exc:
        logger.error(f"Advancing execution {execution_id} failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="worker.tasks.workflow.process_pending_executions",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="workflows",
)
def process_pending_executions(self, limit: int = None):
    """Advance every pending execution, oldest first, up to ``limit``."""
    setup_logging()
    try:
        result = _run(_process_pending(limit))
        if result["processed"]:
            logger.info(f"Processed {result['processed']} pending execution(s)")
        return result
    except Exception as exc:
        logger.error(f"Processing pending executions failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)


async def _advance(execution_id: str) -> dict:
    from db.worker_session import worker_session_factory
    from workflow.engine import create_engine_for

    async with worker_session_factory() as session_factory:
        engine = create_engine_for(session_factory)
        execution = await engine.advance(execution_id)

    if execution is None:
        return {"execution_id": execution_id, "status": "not_found"}
    return {"execution_id": execution_id, "status": execution.status}


async def _process_pending(limit: int = None) -> dict:
    from app.config import get_settings
    from db.worker_session import worker_session_factory
    from workflow.engine import create_engine_for

    batch_size = limit or get_settings().WORKER_BATCH_SIZE
    statuses: dict[str, str] = {}
    errors = 0

    async with worker_session_factory() as session_factory:
        engine = create_engine_for(session_factory)
        for execution_id in await engine.store.list_pending(limit=batch_size):
            try:
                execution = await engine.advance(execution_id)
                statuses[execution_id] = execution.status if execution else "not_found"
            except Exception as e:
                errors += 1
                logger.error(f"Execution {execution_id} raised while advancing: {e}", exc_info=True)

    return {"processed": len(statuses), "errors": errors, "statuses": statuses}
