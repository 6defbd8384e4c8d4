"""Tests for database models: defaults and constraints."""

from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from db.models import TriggerFiring, Workflow, WorkflowExecution, WorkflowSchedule

from conftest import linear_definition


@pytest.mark.integration
class TestWorkflowModel:

    async def test_defaults(self, session_factory):
        async with session_factory() as session:
            wf = Workflow(name="Onboarding", definition=linear_definition({"id": "start", "type": "trigger"}))
            session.add(wf)
            await session.commit()
            await session.refresh(wf)

        assert wf.id is not None
        assert wf.is_active is True
        assert wf.version == 1
        assert wf.description == ""
        assert wf.created_at is not None
        assert wf.created_at.tzinfo is None


@pytest.mark.integration
class TestExecutionModel:

    async def test_defaults(self, session_factory, make_workflow):
        workflow = await make_workflow(linear_definition({"id": "start", "type": "trigger"}))
        async with session_factory() as session:
            execution = WorkflowExecution(workflow_id=workflow.id)
            session.add(execution)
            await session.commit()
            await session.refresh(execution)

        assert execution.status == "pending"
        assert execution.trigger_type == "manual"
        assert execution.context == {}
        assert execution.resume_at is None


@pytest.mark.integration
class TestConstraints:

    async def test_trigger_firing_is_unique_per_subject(self, session_factory, make_workflow):
        workflow = await make_workflow(linear_definition({"id": "start", "type": "trigger"}))
        fired_at = datetime(2026, 1, 5, 8, 30)

        async with session_factory() as session:
            session.add(TriggerFiring(
                workflow_id=workflow.id, event="contract.expiring", subject_id="c-1", fired_at=fired_at,
            ))
            await session.commit()

        async with session_factory() as session:
            session.add(TriggerFiring(
                workflow_id=workflow.id, event="contract.expiring", subject_id="c-1", fired_at=fired_at,
            ))
            with pytest.raises(IntegrityError):
                await session.commit()

    async def test_one_schedule_per_workflow(self, session_factory, make_workflow):
        workflow = await make_workflow(linear_definition({"id": "start", "type": "trigger"}))

        async with session_factory() as session:
            session.add(WorkflowSchedule(workflow_id=workflow.id, cron_expression="0 9 * * *"))
            await session.commit()

        async with session_factory() as session:
            session.add(WorkflowSchedule(workflow_id=workflow.id, cron_expression="0 12 * * *"))
            with pytest.raises(IntegrityError):
                await session.commit()
