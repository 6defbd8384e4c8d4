"""Tests for the workflow execution engine: traversal, suspension, retries, cancellation."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from actions.base_action import ActionResult, BaseAction
from core.exceptions import ConflictError, NotFoundError, TransientActionError, ValidationError
from db.models.task import Task

from conftest import linear_definition


class SendReminderAction(BaseAction):
    action_type = "send_reminder"
    calls: list = []

    async def execute(self, params, context):
        SendReminderAction.calls.append(params)
        return ActionResult.ok({"reminded": params.get("to")})


def flaky_action(failures: int):
    """Action class that raises a transient error ``failures`` times, then succeeds."""
    state = {"calls": 0}

    class FlakyAction(BaseAction):
        action_type = "flaky"

        async def execute(self, params, context):
            state["calls"] += 1
            if state["calls"] <= failures:
                raise TransientActionError(f"HR system timeout (call {state['calls']})")
            return ActionResult.ok({"calls": state["calls"]})

    return FlakyAction, state


def onboarding_definition() -> dict:
    """Trigger -> create_task -> priority check -> [email] / [wait 24h -> reminder]."""
    return {
        "nodes": [
            {"id": "start", "type": "trigger", "next_node_id": "create_task"},
            {
                "id": "create_task", "type": "action", "next_node_id": "check",
                "config": {
                    "action_type": "create_task",
                    "params": {
                        "title": "Onboard {{trigger.employee_name}}",
                        "priority": "{{trigger.priority}}",
                        "assigned_to": "{{trigger.manager_id}}",
                    },
                },
            },
            {
                "id": "check", "type": "condition",
                "config": {"field": "trigger.priority", "operator": "equals", "value": "high"},
                "true_branch": "notify", "false_branch": "pause",
            },
            {
                "id": "notify", "type": "action",
                "config": {
                    "action_type": "send_email",
                    "params": {
                        "to": "{{trigger.manager_email}}",
                        "subject": "Urgent: {{create_task.title}}",
                        "body": "Task {{create_task.task_id}} needs attention.",
                    },
                },
            },
            {"id": "pause", "type": "wait", "next_node_id": "remind", "config": {"duration": "24h"}},
            {
                "id": "remind", "type": "action",
                "config": {"action_type": "send_reminder", "params": {"to": "{{trigger.manager_email}}"}},
            },
        ],
    }


def _trigger(priority: str) -> dict:
    return {
        "employee_name": "Ana Petrova",
        "priority": priority,
        "manager_id": "mgr-1",
        "manager_email": "boss@example.com",
    }


@pytest.fixture(autouse=True)
def _reminder_action(action_registry):
    SendReminderAction.calls = []
    action_registry.register("send_reminder", SendReminderAction)


@pytest.mark.integration
class TestEndToEnd:
    async def test_high_priority_completes_in_one_advance(self, engine, store, make_workflow, mailer, session_factory):
        workflow = await make_workflow(onboarding_definition())
        execution = await engine.start(workflow.id, trigger_data=_trigger("high"))
        assert execution.status == "pending"

        execution = await engine.advance(execution.id)

        assert execution.status == "completed"
        assert execution.completed_at is not None
        logs = await store.list_logs(execution.id)
        assert [log.node_id for log in logs] == ["start", "create_task", "check", "notify"]
        action_logs = [log for log in logs if log.node_type == "action"]
        assert [(log.node_id, log.status) for log in action_logs] == [
            ("create_task", "success"),
            ("notify", "success"),
        ]
        assert [log.sequence for log in logs] == [1, 2, 3, 4]

        assert mailer.sent[0].subject == "Urgent: Onboard Ana Petrova"
        async with session_factory() as session:
            task = (await session.execute(select(Task))).scalar_one()
        assert task.priority == "high"
        assert execution.context["node_outputs"]["create_task"]["task_id"] == task.id
        assert SendReminderAction.calls == []

    async def test_low_priority_waits_then_reminds(self, engine, scheduler, store, make_workflow, clock, mailer):
        workflow = await make_workflow(onboarding_definition())
        execution = await engine.start(workflow.id, trigger_data=_trigger("low"))
        suspended_at = clock()

        execution = await engine.advance(execution.id)

        assert execution.status == "waiting"
        assert execution.current_node_id == "pause"
        assert execution.resume_at == suspended_at + timedelta(hours=24)
        logs = await store.list_logs(execution.id)
        assert [log.node_id for log in logs] == ["start", "create_task", "check", "pause"]
        assert SendReminderAction.calls == []

        # not due yet
        clock.advance(hours=23)
        report = await scheduler.run_once()
        assert report.resumed == 0

        clock.advance(hours=1)
        report = await scheduler.run_once()
        assert report.resumed == 1
        assert (await store.get_execution(execution.id)).status == "pending"

        execution = await engine.advance(execution.id)

        assert execution.status == "completed"
        logs = await store.list_logs(execution.id)
        assert [log.node_id for log in logs] == ["start", "create_task", "check", "pause", "remind"]
        assert logs[-1].status == "success"
        assert logs[-1].output == {"reminded": "boss@example.com"}
        assert SendReminderAction.calls == [{"to": "boss@example.com"}]
        assert mailer.sent == []

    async def test_definition_variables_seed_context(self, engine, make_workflow):
        definition = linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "remind", "type": "action",
             "config": {"action_type": "send_reminder", "params": {"to": "{{variables.hr_inbox}}"}}},
            variables={"hr_inbox": "hr@example.com"},
        )
        workflow = await make_workflow(definition)
        execution = await engine.start(workflow.id)
        execution = await engine.advance(execution.id)
        assert execution.status == "completed"
        assert SendReminderAction.calls == [{"to": "hr@example.com"}]


@pytest.mark.integration
class TestRetries:
    async def test_fail_twice_then_succeed(self, engine, scheduler, store, make_workflow, action_registry, clock):
        action_class, state = flaky_action(failures=2)
        action_registry.register("flaky", action_class)
        workflow = await make_workflow(linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "sync", "type": "action", "config": {"action_type": "flaky"}},
        ))
        execution = await engine.start(workflow.id)

        execution = await engine.advance(execution.id)
        assert execution.status == "waiting"
        assert execution.resume_at == clock() + timedelta(seconds=1)

        clock.advance(seconds=1)
        await scheduler.run_once()
        execution = await engine.advance(execution.id)
        assert execution.status == "waiting"
        assert execution.resume_at == clock() + timedelta(seconds=5)

        clock.advance(seconds=5)
        await scheduler.run_once()
        execution = await engine.advance(execution.id)
        assert execution.status == "completed"

        node_logs = [log for log in await store.list_logs(execution.id) if log.node_id == "sync"]
        assert [log.status for log in node_logs] == ["retrying", "retrying", "success"]
        assert [log.attempt_number for log in node_logs] == [1, 2, 3]
        assert sum(log.retry_delay_ms or 0 for log in node_logs) >= 6000
        assert "HR system timeout" in node_logs[0].error
        assert state["calls"] == 3

    async def test_exhausted_retries_fail_execution(self, engine, scheduler, store, make_workflow, action_registry, clock):
        action_class, _ = flaky_action(failures=10)
        action_registry.register("flaky", action_class)
        workflow = await make_workflow(linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "sync", "type": "action", "config": {"action_type": "flaky"}},
        ))
        execution = await engine.start(workflow.id)

        for delay in (1, 5):
            execution = await engine.advance(execution.id)
            assert execution.status == "waiting"
            clock.advance(seconds=delay)
            await scheduler.run_once()
        execution = await engine.advance(execution.id)

        assert execution.status == "failed"
        assert "call 3" in execution.error
        node_logs = [log for log in await store.list_logs(execution.id) if log.node_id == "sync"]
        assert [log.status for log in node_logs] == ["retrying", "retrying", "failed"]

    async def test_node_retry_override(self, engine, store, make_workflow, action_registry):
        action_class, _ = flaky_action(failures=1)
        action_registry.register("flaky", action_class)
        workflow = await make_workflow(linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "sync", "type": "action", "config": {"action_type": "flaky", "retry": {"policy": "none"}}},
        ))
        execution = await engine.start(workflow.id)
        execution = await engine.advance(execution.id)
        assert execution.status == "failed"

    async def test_config_error_is_not_retried(self, engine, store, make_workflow):
        workflow = await make_workflow(linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "task", "type": "action", "config": {"action_type": "create_task", "params": {}}},
        ))
        execution = await engine.start(workflow.id)
        execution = await engine.advance(execution.id)

        assert execution.status == "failed"
        assert "title" in execution.error
        logs = await store.list_logs(execution.id)
        assert [(log.node_id, log.status, log.attempt_number) for log in logs] == [
            ("start", "success", 1),
            ("task", "failed", 1),
        ]

    async def test_unknown_action_type_fails(self, engine, make_workflow):
        workflow = await make_workflow(linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "x", "type": "action", "config": {"action_type": "teleport"}},
        ))
        execution = await engine.start(workflow.id)
        execution = await engine.advance(execution.id)
        assert execution.status == "failed"
        assert "Unknown action type" in execution.error

    async def test_wait_without_config_fails(self, engine, make_workflow):
        workflow = await make_workflow(linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "pause", "type": "wait", "config": {}},
        ))
        execution = await engine.start(workflow.id)
        execution = await engine.advance(execution.id)
        assert execution.status == "failed"
        assert "duration, until, or until_field" in execution.error


@pytest.mark.integration
class TestTraversal:
    async def test_absent_branch_completes(self, engine, store, make_workflow):
        workflow = await make_workflow({
            "nodes": [
                {"id": "start", "type": "trigger", "next_node_id": "check"},
                {"id": "check", "type": "condition",
                 "config": {"field": "trigger.priority", "value": "high"}, "true_branch": "remind"},
                {"id": "remind", "type": "action", "config": {"action_type": "send_reminder"}},
            ],
        })
        execution = await engine.start(workflow.id, trigger_data={"priority": "low"})
        execution = await engine.advance(execution.id)

        assert execution.status == "completed"
        logs = await store.list_logs(execution.id)
        assert [(log.node_id, log.status) for log in logs] == [("start", "success"), ("check", "success")]
        assert logs[-1].output["branch"] == "false"

    async def test_cycle_is_bounded(self, engine, make_workflow):
        workflow = await make_workflow({
            "nodes": [
                {"id": "start", "type": "trigger", "next_node_id": "a"},
                {"id": "a", "type": "action", "next_node_id": "b", "config": {"action_type": "send_reminder"}},
                {"id": "b", "type": "action", "next_node_id": "a", "config": {"action_type": "send_reminder"}},
            ],
        })
        execution = await engine.start(workflow.id)
        execution = await engine.advance(execution.id)
        assert execution.status == "failed"
        assert "Exceeded" in execution.error

    async def test_until_field_rechecks_same_node(self, engine, scheduler, store, make_workflow, clock):
        workflow = await make_workflow(linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "gate", "type": "wait", "config": {"until_field": "trigger.approved"}},
            {"id": "remind", "type": "action", "config": {"action_type": "send_reminder"}},
        ))
        execution = await engine.start(workflow.id, trigger_data={"approved": False})
        execution = await engine.advance(execution.id)
        assert execution.status == "waiting"
        assert execution.resume_at == clock() + timedelta(hours=1)

        clock.advance(hours=1)
        await scheduler.run_once()
        execution = await engine.advance(execution.id)

        assert execution.status == "waiting"
        gate_logs = [log for log in await store.list_logs(execution.id) if log.node_id == "gate"]
        assert len(gate_logs) == 2
        assert SendReminderAction.calls == []

    async def test_advance_only_claims_pending(self, engine, store, make_workflow, clock):
        workflow = await make_workflow(linear_definition({"id": "start", "type": "trigger"}))
        execution = await engine.start(workflow.id)

        claim_id = await store.claim(execution.id, clock())
        assert claim_id is not None
        assert await store.claim(execution.id, clock()) is None
        assert await store.holds_claim(execution.id, claim_id)

        untouched = await engine.advance(execution.id)
        assert untouched.status == "running"
        assert await store.list_logs(execution.id) == []

    async def test_advance_unknown_execution(self, engine):
        assert await engine.advance("missing") is None


@pytest.mark.integration
class TestStartAndCancel:
    async def test_start_unknown_workflow(self, engine):
        with pytest.raises(NotFoundError):
            await engine.start("missing")

    async def test_start_inactive_workflow(self, engine, make_workflow):
        workflow = await make_workflow(linear_definition({"id": "start", "type": "trigger"}), is_active=False)
        with pytest.raises(ValidationError):
            await engine.start(workflow.id)

    async def test_start_invalid_definition(self, engine, make_workflow):
        workflow = await make_workflow({"nodes": []})
        with pytest.raises(ValidationError):
            await engine.start(workflow.id)

    async def test_cancel_waiting_execution(self, engine, store, make_workflow, clock):
        workflow = await make_workflow(onboarding_definition())
        execution = await engine.start(workflow.id, trigger_data=_trigger("low"))
        await engine.advance(execution.id)

        cancelled = await engine.cancel(execution.id, reason="employee withdrew")

        assert cancelled.status == "failed"
        assert cancelled.error == "Cancelled: employee withdrew"
        assert cancelled.resume_at is None

        with pytest.raises(ConflictError):
            await engine.cancel(execution.id)

        # a late resume never revives it
        clock.advance(days=2)
        assert await store.release_waiting(execution.id, clock()) is False
        assert (await engine.advance(execution.id)).status == "failed"

    async def test_cancel_unknown(self, engine):
        with pytest.raises(NotFoundError):
            await engine.cancel("missing")

    async def test_cancel_while_advancing_stops_before_next_node(self, engine, store, make_workflow, action_registry):
        class WithdrawAction(BaseAction):
            action_type = "withdraw"

            async def execute(self, params, context):
                await engine.cancel(context.execution_id, reason="offer declined")
                return ActionResult.ok({"withdrawn": True})

        action_registry.register("withdraw", WithdrawAction)
        workflow = await make_workflow(linear_definition(
            {"id": "start", "type": "trigger"},
            {"id": "withdraw", "type": "action", "config": {"action_type": "withdraw"}},
            {"id": "remind", "type": "action",
             "config": {"action_type": "send_reminder", "params": {"to": "boss@example.com"}}},
        ))
        execution = await engine.start(workflow.id)

        execution = await engine.advance(execution.id)

        assert execution.status == "failed"
        assert execution.error == "Cancelled: offer declined"
        assert SendReminderAction.calls == []
        logs = await store.list_logs(execution.id)
        assert [(log.node_id, log.status) for log in logs] == [("start", "success"), ("withdraw", "success")]


def _slow_sync_definition() -> dict:
    return linear_definition(
        {"id": "start", "type": "trigger"},
        {"id": "sync", "type": "action", "config": {"action_type": "slow_sync"}},
    )


@pytest.mark.integration
class TestClaimOwnership:
    async def test_long_running_action_keeps_its_claim(self, engine, scheduler, store, make_workflow, action_registry, clock):
        calls = []
        seen = {}

        class SlowSyncAction(BaseAction):
            action_type = "slow_sync"

            async def execute(self, params, context):
                call = len(calls) + 1
                calls.append(call)
                if call == 1:
                    clock.advance(minutes=10)
                    seen["report"] = await scheduler.run_once()
                    seen["second"] = await engine.advance(context.execution_id)
                return ActionResult.ok({"call": call})

        action_registry.register("slow_sync", SlowSyncAction)
        workflow = await make_workflow(_slow_sync_definition())
        execution = await engine.start(workflow.id)

        execution = await engine.advance(execution.id)

        assert seen["report"].recovered == 0
        assert seen["second"].status == "running"
        assert execution.status == "completed"
        assert calls == [1]
        sync_logs = [log for log in await store.list_logs(execution.id) if log.node_id == "sync"]
        assert [(log.attempt_number, log.status) for log in sync_logs] == [(1, "success")]

    async def test_superseded_worker_cannot_write(self, engine, store, make_workflow, action_registry, clock):
        from workflow.scheduler import WorkflowScheduler

        eager_scheduler = WorkflowScheduler(store, clock=clock, stale_after_seconds=60)
        calls = []
        seen = {}

        class SlowSyncAction(BaseAction):
            action_type = "slow_sync"

            async def execute(self, params, context):
                call = len(calls) + 1
                calls.append(call)
                if call == 1:
                    clock.advance(minutes=10)
                    seen["report"] = await eager_scheduler.run_once()
                    seen["second"] = await engine.advance(context.execution_id)
                return ActionResult.ok({"call": call})

        action_registry.register("slow_sync", SlowSyncAction)
        workflow = await make_workflow(_slow_sync_definition())
        execution = await engine.start(workflow.id)

        execution = await engine.advance(execution.id)

        assert seen["report"].recovered == 1
        assert seen["second"].status == "completed"
        assert execution.status == "completed"
        assert execution.context["node_outputs"]["sync"] == {"call": 2}
        sync_logs = [log for log in await store.list_logs(execution.id) if log.node_id == "sync"]
        assert len(sync_logs) == 1
        assert sync_logs[0].output == {"call": 2}

    async def test_guarded_writes_reject_a_replaced_claim(self, engine, store, make_workflow, clock):
        from workflow.context import ExecutionContext

        workflow = await make_workflow(linear_definition({"id": "start", "type": "trigger"}))
        execution = await engine.start(workflow.id)
        context = ExecutionContext.from_dict(execution.context)

        old_claim = await store.claim(execution.id, clock())
        clock.advance(minutes=20)
        assert await store.recover_stale(clock()) == [execution.id]
        new_claim = await store.claim(execution.id, clock())
        assert new_claim is not None and new_claim != old_claim

        assert await store.holds_claim(execution.id, old_claim) is False
        assert await store.save_progress(execution.id, old_claim, "start", context, clock()) is False
        assert await store.suspend(execution.id, old_claim, "start", context, clock(), clock()) is False
        assert await store.complete(execution.id, old_claim, context, clock()) is False
        assert await store.fail(execution.id, old_claim, "late", clock()) is False
        assert await store.append_log(
            execution.id, "start", "trigger", 1, "success", clock(), claim_id=old_claim
        ) is None
        assert await store.list_logs(execution.id) == []

        assert await store.holds_claim(execution.id, new_claim) is True
        assert await store.complete(execution.id, new_claim, context, clock()) is True
