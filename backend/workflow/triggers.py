"""External time-based triggers evaluated by the scheduler.

A time trigger looks at business data on every scheduler tick and starts
workflows whose ``trigger_event`` matches, at most once per subject
(deduplicated through ``workflow_trigger_firings``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog
from sqlalchemy import select

from core.constants import CONTRACT_EXPIRING_EVENT
from db.models.contract import Contract
from db.models.profile import Profile
from db.models.workflow import Workflow
from workflow.store import ExecutionStore

logger = structlog.get_logger(__name__)


@dataclass
class TriggerRunResult:
    """Outcome of one time-trigger evaluation."""

    event: str
    fired: int = 0
    skipped: int = 0
    execution_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "fired": self.fired,
            "skipped": self.skipped,
            "execution_ids": self.execution_ids,
            "errors": self.errors,
        }


class BaseTimeTrigger(ABC):
    """Abstract base for triggers that fire from data + the current time."""

    event: str

    @abstractmethod
    async def fire(self, store: ExecutionStore, now: datetime) -> TriggerRunResult:
        """Start executions for every due subject not yet fired."""
        ...


def _trigger_config(workflow: Workflow) -> dict:
    for node in (workflow.definition or {}).get("nodes") or []:
        if node.get("type") == "trigger":
            return node.get("config") or {}
    return {}


def _profile_to_dict(profile: Optional[Profile]) -> Optional[dict[str, Any]]:
    if profile is None:
        return None
    first, _, last = (profile.full_name or "").partition(" ")
    return {
        "id": profile.id,
        "full_name": profile.full_name,
        "first_name": first,
        "last_name": last,
        "email": profile.email,
        "role": profile.role,
        "department_id": profile.department_id,
    }


class ContractExpiringTrigger(BaseTimeTrigger):
    """Fires ``contract.expiring`` for active contracts ending within the notice window.

    The window defaults to ``notice_days`` and can be overridden per
    workflow with ``days_before`` on its trigger node.
    """

    event = CONTRACT_EXPIRING_EVENT

    def __init__(self, notice_days: int = 30):
        self.notice_days = notice_days

    async def fire(self, store: ExecutionStore, now: datetime) -> TriggerRunResult:
        result = TriggerRunResult(event=self.event)
        workflows = await store.workflows_for_event(self.event)
        if not workflows:
            return result

        for workflow in workflows:
            try:
                days_before = int(_trigger_config(workflow).get("days_before", self.notice_days))
            except (TypeError, ValueError):
                result.errors.append(f"Workflow {workflow.id}: invalid days_before")
                continue

            contracts = await self._expiring_contracts(store, now, now + timedelta(days=days_before))
            already_fired = await store.fired_subjects(workflow.id, self.event)

            for contract, profile in contracts:
                if contract.id in already_fired:
                    result.skipped += 1
                    continue
                execution = await store.fire_trigger(
                    workflow,
                    event=self.event,
                    subject_id=contract.id,
                    trigger_data=self._trigger_data(contract, profile, now),
                    now=now,
                )
                if execution is None:
                    result.skipped += 1
                    continue
                result.fired += 1
                result.execution_ids.append(execution.id)
                logger.info(
                    "Time trigger fired",
                    trigger_event=self.event,
                    workflow_id=workflow.id,
                    contract_id=contract.id,
                    execution_id=execution.id,
                )
        return result

    @staticmethod
    async def _expiring_contracts(store: ExecutionStore, start: datetime, end: datetime):
        async with store.session_factory() as session:
            rows = await session.execute(
                select(Contract, Profile)
                .outerjoin(Profile, Profile.id == Contract.employee_id)
                .where(
                    Contract.status == "active",
                    Contract.end_date != None,  # noqa: E711
                    Contract.end_date >= start,
                    Contract.end_date <= end,
                )
                .order_by(Contract.end_date)
            )
            return list(rows.all())

    @staticmethod
    def _trigger_data(contract: Contract, profile: Optional[Profile], now: datetime) -> dict:
        return {
            "event": CONTRACT_EXPIRING_EVENT,
            "contract_id": contract.id,
            "employee_id": contract.employee_id,
            "end_date": contract.end_date.isoformat(),
            "days_remaining": max(0, (contract.end_date - now).days),
            "contract": {
                "id": contract.id,
                "title": contract.title,
                "end_date": contract.end_date.isoformat(),
            },
            "employee": _profile_to_dict(profile),
        }
