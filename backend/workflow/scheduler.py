"""Workflow scheduler: the periodic pass that makes time move for executions.

One ``run_once`` call:

1. fires due cron schedules (one execution per schedule per due time)
2. releases waiting executions whose ``resume_at`` has passed (waiting -> pending)
3. evaluates time-based triggers such as ``contract.expiring``
4. puts running executions with a stale heartbeat back to pending

Every step is idempotent: running two passes for the same ``now``, or two
schedulers at once, creates no duplicate executions. Errors on one item are
logged and reported, and never abort the rest of the pass.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from croniter import croniter

from app.config import get_settings
from core.exceptions import NotFoundError, ValidationError
from core.utils import utcnow_naive
from db.models.schedule import WorkflowSchedule
from workflow.store import ExecutionStore
from workflow.triggers import BaseTimeTrigger, ContractExpiringTrigger

logger = structlog.get_logger(__name__)

_RETRY_NEXT_RUN = timedelta(seconds=60)

CRON_DESCRIPTIONS = {
    "* * * * *": "Every minute",
    "0 * * * *": "Every hour",
    "0 0 * * *": "Every day at midnight",
    "0 9 * * *": "Every day at 9:00",
    "0 9 * * 1": "Every Monday at 9:00",
    "0 9 * * 1-5": "Weekdays at 9:00",
    "0 0 1 * *": "First day of every month",
    "0 0 * * 0": "Every Sunday at midnight",
}


def describe_cron_expression(expression: str) -> str:
    """Human-readable label for common expressions; anything else is returned as-is."""
    return CRON_DESCRIPTIONS.get(" ".join(expression.split()), expression)


def validate_cron_expression(expression: str, tz: str = "UTC") -> None:
    """Raise ValidationError for a malformed expression or an unknown timezone."""
    if not expression or not croniter.is_valid(expression):
        raise ValidationError(f"Invalid cron expression: '{expression}'")
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: '{tz}'")


def compute_next_run(cron_expression: str, tz: str, after: datetime) -> datetime:
    """Next occurrence strictly after ``after`` (naive UTC), evaluated in ``tz``.

    If the expression can no longer be evaluated, the schedule is retried a
    minute later instead of being lost.
    """
    try:
        tz_obj = ZoneInfo(tz or "UTC")
        local_after = after.replace(tzinfo=timezone.utc).astimezone(tz_obj)
        next_local = croniter(cron_expression, local_after).get_next(datetime)
        return next_local.astimezone(timezone.utc).replace(tzinfo=None)
    except (ValueError, KeyError, ZoneInfoNotFoundError) as e:
        logger.warning(
            "Failed to compute next run, retrying in 60s",
            cron_expression=cron_expression, timezone=tz, error=str(e),
        )
        return after + _RETRY_NEXT_RUN


@dataclass
class SchedulerReport:
    """What one scheduler pass did."""

    started_at: datetime
    schedules_fired: int = 0
    schedules_skipped: int = 0
    resumed: int = 0
    triggered: int = 0
    recovered: int = 0
    execution_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "schedules_fired": self.schedules_fired,
            "schedules_skipped": self.schedules_skipped,
            "resumed": self.resumed,
            "triggered": self.triggered,
            "recovered": self.recovered,
            "execution_ids": self.execution_ids,
            "errors": self.errors,
        }


def stale_window_seconds(settings) -> int:
    """Age after which a running claim counts as abandoned.

    A worker still inside ``advance`` is killed by the Celery task time
    limit before its heartbeat can get this old, so a live claim is never
    recovered.
    """
    return max(
        settings.EXECUTION_STALE_AFTER_SECONDS,
        settings.WORKER_TASK_TIME_LIMIT + settings.SCHEDULER_INTERVAL_SECONDS,
    )


class WorkflowScheduler:
    """Periodic pass over schedules, waiting executions and time triggers."""

    def __init__(
        self,
        store: ExecutionStore,
        clock: Callable[[], datetime] = utcnow_naive,
        time_triggers: Optional[list[BaseTimeTrigger]] = None,
        stale_after_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.clock = clock
        if time_triggers is None:
            time_triggers = [ContractExpiringTrigger(notice_days=settings.CONTRACT_EXPIRY_NOTICE_DAYS)]
        self.time_triggers = time_triggers
        self.stale_after = timedelta(
            seconds=stale_after_seconds or stale_window_seconds(settings)
        )

    async def run_once(self, now: Optional[datetime] = None) -> SchedulerReport:
        now = now or self.clock()
        report = SchedulerReport(started_at=now)

        await self.process_due_schedules(now, report)
        await self.resume_waiting(now, report)
        await self.run_time_triggers(now, report)
        await self.recover_stale(now, report)

        logger.info("Scheduler pass finished", **{k: v for k, v in report.to_dict().items() if k != "execution_ids"})
        return report

    # ─── Passes ───────────────────────────────────────────────

    async def process_due_schedules(self, now: datetime, report: SchedulerReport) -> None:
        for schedule in await self.store.due_schedules(now):
            try:
                workflow = await self.store.get_workflow(schedule.workflow_id)
                if workflow is None or not workflow.is_active:
                    report.schedules_skipped += 1
                    logger.warning(
                        "Skipping schedule of missing or inactive workflow",
                        schedule_id=schedule.id, workflow_id=schedule.workflow_id,
                    )
                    continue

                next_run = compute_next_run(schedule.cron_expression, schedule.timezone, now)
                execution = await self.store.fire_schedule(schedule, workflow, now, next_run)
                if execution is None:
                    # another pass fired this occurrence first
                    report.schedules_skipped += 1
                    continue

                report.schedules_fired += 1
                report.execution_ids.append(execution.id)
                logger.info(
                    "Schedule fired",
                    schedule_id=schedule.id, workflow_id=workflow.id,
                    execution_id=execution.id, next_run=next_run.isoformat(),
                )
            except Exception as e:
                report.errors.append(f"Schedule {schedule.id}: {e}")
                logger.error("Schedule processing failed", schedule_id=schedule.id, error=str(e), exc_info=True)

    async def resume_waiting(self, now: datetime, report: SchedulerReport) -> None:
        for execution_id in await self.store.find_due_waiting(now):
            try:
                if await self.store.release_waiting(execution_id, now):
                    report.resumed += 1
                    report.execution_ids.append(execution_id)
                    logger.info("Execution resumed", execution_id=execution_id)
            except Exception as e:
                report.errors.append(f"Execution {execution_id}: {e}")
                logger.error("Resume failed", execution_id=execution_id, error=str(e), exc_info=True)

    async def run_time_triggers(self, now: datetime, report: SchedulerReport) -> None:
        for trigger in self.time_triggers:
            try:
                result = await trigger.fire(self.store, now)
            except Exception as e:
                report.errors.append(f"Trigger {trigger.event}: {e}")
                logger.error("Time trigger failed", trigger_event=trigger.event, error=str(e), exc_info=True)
                continue
            report.triggered += result.fired
            report.execution_ids.extend(result.execution_ids)
            report.errors.extend(result.errors)

    async def recover_stale(self, now: datetime, report: SchedulerReport) -> None:
        try:
            recovered = await self.store.recover_stale(now - self.stale_after)
        except Exception as e:
            report.errors.append(f"Stale recovery: {e}")
            logger.error("Stale recovery failed", error=str(e), exc_info=True)
            return
        for execution_id in recovered:
            logger.warning("Recovered stale execution", execution_id=execution_id)
        report.recovered += len(recovered)
        report.execution_ids.extend(recovered)

    # ─── Schedule management ──────────────────────────────────

    async def schedule_workflow(
        self,
        workflow_id: str,
        cron_expression: str,
        timezone: str = "UTC",
        enabled: bool = True,
    ) -> WorkflowSchedule:
        """Create or replace the cron schedule of a workflow."""
        validate_cron_expression(cron_expression, timezone)
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")

        next_run = compute_next_run(cron_expression, timezone, self.clock()) if enabled else None
        schedule = await self.store.upsert_schedule(
            workflow_id, cron_expression, timezone, enabled, next_run
        )
        logger.info(
            "Workflow scheduled",
            workflow_id=workflow_id, cron_expression=cron_expression,
            description=describe_cron_expression(cron_expression),
            next_run=next_run.isoformat() if next_run else None,
        )
        return schedule

    async def disable_schedule(self, schedule_id: str) -> None:
        if not await self.store.set_schedule_enabled(schedule_id, False):
            raise NotFoundError(f"Schedule {schedule_id} not found")
        logger.info("Schedule disabled", schedule_id=schedule_id)


def create_scheduler_for(session_factory, **kwargs) -> WorkflowScheduler:
    return WorkflowScheduler(ExecutionStore(session_factory), **kwargs)
