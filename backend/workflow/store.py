"""Execution store: persistence for executions, logs, schedules and triggers.

Every status transition is a conditional UPDATE (``... WHERE status = :expected``)
and reports whether it applied, so concurrent workers, overlapping scheduler
passes and operator cancellation never overwrite each other. Each public
method runs in its own session and commits before returning.

``claim()`` hands out a fresh ``claim_id``. Every write that advances a
running execution is guarded on that token as well as on the status, so a
worker whose claim was recovered as stale and re-claimed elsewhere can no
longer write progress, logs or a final status.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import ExecutionStatus, TriggerType
from db.models.execution import WorkflowExecution
from db.models.execution_log import WorkflowLog
from db.models.schedule import WorkflowSchedule
from db.models.trigger_firing import TriggerFiring
from db.models.workflow import Workflow
from workflow.context import ExecutionContext

logger = structlog.get_logger(__name__)

_OPEN_STATUSES = (
    ExecutionStatus.PENDING.value,
    ExecutionStatus.RUNNING.value,
    ExecutionStatus.WAITING.value,
)


class ExecutionStore:
    """Async persistence contract used by the engine and the scheduler."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ─── Reads ────────────────────────────────────────────────

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        async with self.session_factory() as session:
            return await session.get(WorkflowExecution, execution_id)

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        async with self.session_factory() as session:
            return await session.get(Workflow, workflow_id)

    async def holds_claim(self, execution_id: str, claim_id: str) -> bool:
        """True while the execution is running under ``claim_id``."""
        async with self.session_factory() as session:
            row = (await session.execute(
                select(WorkflowExecution.status, WorkflowExecution.claim_id)
                .where(WorkflowExecution.id == execution_id)
            )).one_or_none()
        return row is not None and row.status == ExecutionStatus.RUNNING.value and row.claim_id == claim_id

    async def list_logs(self, execution_id: str, limit: int = 500, offset: int = 0) -> list[WorkflowLog]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkflowLog)
                .where(WorkflowLog.execution_id == execution_id)
                .order_by(WorkflowLog.sequence, WorkflowLog.timestamp)
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_pending(self, limit: int = 25) -> list[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkflowExecution.id)
                .where(WorkflowExecution.status == ExecutionStatus.PENDING.value)
                .order_by(WorkflowExecution.created_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    # ─── Creation ─────────────────────────────────────────────

    @staticmethod
    def _new_execution(
        workflow: Workflow,
        trigger_data: Optional[dict],
        trigger_type: str,
        metadata: Optional[dict] = None,
    ) -> WorkflowExecution:
        execution_id = str(uuid4())
        definition = workflow.definition or {}
        context = ExecutionContext(
            workflow_id=workflow.id,
            execution_id=execution_id,
            trigger_data=dict(trigger_data or {}),
            variables=dict(definition.get("variables") or {}),
            metadata={"trigger_type": trigger_type, **(metadata or {})},
        )
        return WorkflowExecution(
            id=execution_id,
            workflow_id=workflow.id,
            status=ExecutionStatus.PENDING.value,
            trigger_type=trigger_type,
            context=context.to_dict(),
        )

    async def create_execution(
        self,
        workflow: Workflow,
        trigger_data: Optional[dict] = None,
        trigger_type: str = TriggerType.MANUAL.value,
        metadata: Optional[dict] = None,
    ) -> WorkflowExecution:
        """Insert a pending execution seeded with the workflow's default variables."""
        execution = self._new_execution(workflow, trigger_data, trigger_type, metadata)
        async with self.session_factory() as session:
            session.add(execution)
            await session.commit()
        return execution

    # ─── Conditional transitions ──────────────────────────────

    async def _transition(
        self, execution_id: str, expected: tuple, values: dict, claim_id: Optional[str] = None
    ) -> bool:
        conditions = [
            WorkflowExecution.id == execution_id,
            WorkflowExecution.status.in_(expected),
        ]
        if claim_id is not None:
            conditions.append(WorkflowExecution.claim_id == claim_id)
        async with self.session_factory() as session:
            result = await session.execute(
                update(WorkflowExecution)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1

    async def claim(self, execution_id: str, now: datetime) -> Optional[str]:
        """pending -> running. Exactly one caller wins and gets the claim token."""
        claim_id = str(uuid4())
        claimed = await self._transition(
            execution_id,
            (ExecutionStatus.PENDING.value,),
            {
                "status": ExecutionStatus.RUNNING.value,
                "claim_id": claim_id,
                "started_at": func.coalesce(WorkflowExecution.started_at, now),
                "heartbeat_at": now,
                "resume_at": None,
            },
        )
        return claim_id if claimed else None

    async def save_progress(
        self,
        execution_id: str,
        claim_id: str,
        current_node_id: Optional[str],
        context: ExecutionContext,
        now: datetime,
    ) -> bool:
        return await self._transition(
            execution_id,
            (ExecutionStatus.RUNNING.value,),
            {"current_node_id": current_node_id, "context": context.to_dict(), "heartbeat_at": now},
            claim_id=claim_id,
        )

    async def suspend(
        self,
        execution_id: str,
        claim_id: str,
        current_node_id: str,
        context: ExecutionContext,
        resume_at: datetime,
        now: datetime,
    ) -> bool:
        """running -> waiting with a resume time."""
        return await self._transition(
            execution_id,
            (ExecutionStatus.RUNNING.value,),
            {
                "status": ExecutionStatus.WAITING.value,
                "claim_id": None,
                "current_node_id": current_node_id,
                "context": context.to_dict(),
                "resume_at": resume_at,
                "heartbeat_at": now,
            },
            claim_id=claim_id,
        )

    async def complete(self, execution_id: str, claim_id: str, context: ExecutionContext, now: datetime) -> bool:
        return await self._transition(
            execution_id,
            (ExecutionStatus.RUNNING.value,),
            {
                "status": ExecutionStatus.COMPLETED.value,
                "claim_id": None,
                "context": context.to_dict(),
                "current_node_id": None,
                "resume_at": None,
                "completed_at": now,
                "heartbeat_at": now,
            },
            claim_id=claim_id,
        )

    async def fail(
        self,
        execution_id: str,
        claim_id: str,
        error: str,
        now: datetime,
        context: Optional[ExecutionContext] = None,
    ) -> bool:
        values: dict[str, Any] = {
            "status": ExecutionStatus.FAILED.value,
            "claim_id": None,
            "error": error,
            "resume_at": None,
            "completed_at": now,
            "heartbeat_at": now,
        }
        if context is not None:
            values["context"] = context.to_dict()
        return await self._transition(execution_id, (ExecutionStatus.RUNNING.value,), values, claim_id=claim_id)

    async def cancel(self, execution_id: str, reason: str, now: datetime) -> bool:
        """Operator cancellation: any non-terminal status -> failed."""
        return await self._transition(
            execution_id,
            _OPEN_STATUSES,
            {
                "status": ExecutionStatus.FAILED.value,
                "error": f"Cancelled: {reason}",
                "resume_at": None,
                "completed_at": now,
            },
        )

    async def release_waiting(self, execution_id: str, now: datetime) -> bool:
        """waiting -> pending once resume_at has passed."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(WorkflowExecution)
                .where(
                    WorkflowExecution.id == execution_id,
                    WorkflowExecution.status == ExecutionStatus.WAITING.value,
                    WorkflowExecution.resume_at <= now,
                )
                .values(status=ExecutionStatus.PENDING.value)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1

    async def find_due_waiting(self, now: datetime, limit: int = 500) -> list[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkflowExecution.id)
                .where(
                    WorkflowExecution.status == ExecutionStatus.WAITING.value,
                    WorkflowExecution.resume_at <= now,
                )
                .order_by(WorkflowExecution.resume_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def recover_stale(self, cutoff: datetime, limit: int = 100) -> list[str]:
        """running executions whose last heartbeat predates ``cutoff`` -> pending."""
        async with self.session_factory() as session:
            stale_ids = list((await session.execute(
                select(WorkflowExecution.id)
                .where(
                    WorkflowExecution.status == ExecutionStatus.RUNNING.value,
                    WorkflowExecution.heartbeat_at < cutoff,
                )
                .limit(limit)
            )).scalars().all())

            recovered = []
            for execution_id in stale_ids:
                result = await session.execute(
                    update(WorkflowExecution)
                    .where(
                        WorkflowExecution.id == execution_id,
                        WorkflowExecution.status == ExecutionStatus.RUNNING.value,
                        WorkflowExecution.heartbeat_at < cutoff,
                    )
                    .values(status=ExecutionStatus.PENDING.value, claim_id=None)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    recovered.append(execution_id)
            await session.commit()
        return recovered

    # ─── Logs ─────────────────────────────────────────────────

    async def append_log(
        self,
        execution_id: str,
        node_id: str,
        node_type: str,
        attempt_number: int,
        status: str,
        timestamp: datetime,
        output: Any = None,
        error: Optional[str] = None,
        duration_ms: int = 0,
        retry_delay_ms: Optional[int] = None,
        claim_id: Optional[str] = None,
    ) -> Optional[WorkflowLog]:
        """Insert one immutable log row.

        With ``claim_id`` the row is written only while the execution still
        carries that claim (cancellation keeps it, stale recovery and a new
        claim replace it), and the heartbeat is refreshed in the same
        transaction. Returns None when the claim is gone.
        """
        async with self.session_factory() as session:
            if claim_id is not None:
                touched = await session.execute(
                    update(WorkflowExecution)
                    .where(WorkflowExecution.id == execution_id, WorkflowExecution.claim_id == claim_id)
                    .values(heartbeat_at=timestamp)
                    .execution_options(synchronize_session=False)
                )
                if touched.rowcount != 1:
                    await session.rollback()
                    return None
            last = (await session.execute(
                select(func.max(WorkflowLog.sequence)).where(WorkflowLog.execution_id == execution_id)
            )).scalar_one_or_none()
            entry = WorkflowLog(
                execution_id=execution_id,
                node_id=node_id,
                node_type=node_type,
                sequence=(last or 0) + 1,
                attempt_number=attempt_number,
                status=status,
                output=output,
                error=error,
                duration_ms=duration_ms,
                retry_delay_ms=retry_delay_ms,
                timestamp=timestamp,
            )
            session.add(entry)
            await session.commit()
        return entry

    # ─── Schedules ────────────────────────────────────────────

    async def due_schedules(self, now: datetime) -> list[WorkflowSchedule]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkflowSchedule)
                .where(WorkflowSchedule.enabled == True)  # noqa: E712
                .where(or_(WorkflowSchedule.next_run == None, WorkflowSchedule.next_run <= now))  # noqa: E711
                .order_by(WorkflowSchedule.next_run)
            )
            return list(result.scalars().all())

    async def fire_schedule(
        self,
        schedule: WorkflowSchedule,
        workflow: Workflow,
        now: datetime,
        next_run: datetime,
    ) -> Optional[WorkflowExecution]:
        """Advance the schedule and create its execution in one transaction.

        The schedule update is guarded on the ``next_run`` value read by the
        caller; a concurrent pass that already fired it makes this a no-op.
        """
        guard = (
            WorkflowSchedule.next_run == None  # noqa: E711
            if schedule.next_run is None
            else WorkflowSchedule.next_run == schedule.next_run
        )
        execution = self._new_execution(
            workflow,
            trigger_data={"event": "schedule", "schedule_id": schedule.id},
            trigger_type=TriggerType.SCHEDULE.value,
            metadata={"triggered_by": "schedule", "schedule_id": schedule.id},
        )
        async with self.session_factory() as session:
            result = await session.execute(
                update(WorkflowSchedule)
                .where(WorkflowSchedule.id == schedule.id, WorkflowSchedule.enabled == True, guard)  # noqa: E712
                .values(last_run=now, next_run=next_run)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None
            session.add(execution)
            await session.commit()
        return execution

    async def get_schedule(self, schedule_id: str) -> Optional[WorkflowSchedule]:
        async with self.session_factory() as session:
            return await session.get(WorkflowSchedule, schedule_id)

    async def upsert_schedule(
        self,
        workflow_id: str,
        cron_expression: str,
        timezone: str,
        enabled: bool,
        next_run: Optional[datetime],
    ) -> WorkflowSchedule:
        """Create or replace the single schedule of a workflow."""
        async with self.session_factory() as session:
            schedule = (await session.execute(
                select(WorkflowSchedule).where(WorkflowSchedule.workflow_id == workflow_id)
            )).scalar_one_or_none()
            if schedule is None:
                schedule = WorkflowSchedule(workflow_id=workflow_id)
                session.add(schedule)
            schedule.cron_expression = cron_expression
            schedule.timezone = timezone
            schedule.enabled = enabled
            schedule.next_run = next_run
            await session.commit()
        return schedule

    async def set_schedule_enabled(self, schedule_id: str, enabled: bool) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(WorkflowSchedule)
                .where(WorkflowSchedule.id == schedule_id)
                .values(enabled=enabled)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1

    # ─── Time-based triggers ──────────────────────────────────

    async def workflows_for_event(self, event: str) -> list[Workflow]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Workflow).where(
                    and_(Workflow.trigger_event == event, Workflow.is_active == True)  # noqa: E712
                )
            )
            return list(result.scalars().all())

    async def fired_subjects(self, workflow_id: str, event: str) -> set[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TriggerFiring.subject_id).where(
                    TriggerFiring.workflow_id == workflow_id,
                    TriggerFiring.event == event,
                )
            )
            return set(result.scalars().all())

    async def fire_trigger(
        self,
        workflow: Workflow,
        event: str,
        subject_id: str,
        trigger_data: dict,
        now: datetime,
    ) -> Optional[WorkflowExecution]:
        """Create an execution for ``(workflow, event, subject)`` at most once."""
        execution = self._new_execution(
            workflow,
            trigger_data=trigger_data,
            trigger_type=TriggerType.EVENT.value,
            metadata={"triggered_by": event, "subject_id": subject_id},
        )
        async with self.session_factory() as session:
            session.add(TriggerFiring(
                workflow_id=workflow.id,
                event=event,
                subject_id=subject_id,
                execution_id=execution.id,
                fired_at=now,
            ))
            session.add(execution)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Trigger already fired",
                    workflow_id=workflow.id, trigger_event=event, subject_id=subject_id,
                )
                return None
        return execution
