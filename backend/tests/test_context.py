"""Tests for the execution context and template resolution."""

import json
from datetime import datetime, timedelta

import pytest

from core.exceptions import TemplateResolutionError, WorkflowConfigError
from workflow.context import (
    MISSING,
    ExecutionContext,
    lookup,
    parse_duration,
    parse_timestamp,
    resolve,
    resolve_object,
)


def _ctx(**kwargs) -> ExecutionContext:
    return ExecutionContext(workflow_id="wf-1", execution_id="ex-1", **kwargs)


@pytest.mark.unit
class TestResolve:
    def test_trigger_field(self):
        ctx = _ctx(trigger_data={"email": "a@b.com"})
        assert resolve("{{trigger.email}}", ctx) == "a@b.com"

    def test_survives_serialization(self):
        ctx = _ctx(trigger_data={"email": "a@b.com"})
        restored = ExecutionContext.from_dict(json.loads(json.dumps(ctx.to_dict())))
        assert resolve("{{trigger.email}}", restored) == "a@b.com"

    def test_single_placeholder_keeps_type(self):
        ctx = _ctx(trigger_data={"count": 3, "tags": ["a", "b"]})
        assert resolve("{{trigger.count}}", ctx) == 3
        assert resolve("{{ trigger.tags }}", ctx) == ["a", "b"]

    def test_interpolation(self):
        ctx = _ctx(trigger_data={"first": "Ana", "active": True})
        assert resolve("Hi {{trigger.first}}, active={{trigger.active}}", ctx) == "Hi Ana, active=true"

    def test_missing_path(self):
        ctx = _ctx()
        assert resolve("{{trigger.nope}}", ctx) is None
        assert resolve("x{{trigger.nope}}y", ctx) == "xy"

    def test_node_output_by_id_and_root(self):
        ctx = _ctx(node_outputs={"create_task": {"task_id": "t-1"}})
        assert resolve("{{create_task.task_id}}", ctx) == "t-1"
        assert resolve("{{nodes.create_task.task_id}}", ctx) == "t-1"

    def test_bare_name_prefers_variables_then_trigger(self):
        ctx = _ctx(trigger_data={"priority": "low", "team": "ops"}, variables={"priority": "high"})
        assert resolve("{{priority}}", ctx) == "high"
        assert resolve("{{team}}", ctx) == "ops"

    def test_list_index(self):
        ctx = _ctx(trigger_data={"items": [{"name": "laptop"}]})
        assert resolve("{{trigger.items.0.name}}", ctx) == "laptop"
        assert resolve("{{trigger.items.5.name}}", ctx) is None

    def test_non_strings_pass_through(self):
        ctx = _ctx()
        assert resolve(42, ctx) == 42
        assert resolve("plain text", ctx) == "plain text"

    def test_unterminated_placeholder(self):
        with pytest.raises(TemplateResolutionError):
            resolve("Hello {{trigger.name", _ctx())

    def test_malformed_path(self):
        with pytest.raises(TemplateResolutionError):
            resolve("{{ }}", _ctx())
        with pytest.raises(TemplateResolutionError):
            resolve("{{trigger..email}}", _ctx())

    def test_resolve_object(self):
        ctx = _ctx(trigger_data={"id": "e-1", "email": "a@b.com"})
        resolved = resolve_object({"to": ["{{trigger.email}}"], "meta": {"id": "{{trigger.id}}"}, "n": 1}, ctx)
        assert resolved == {"to": ["a@b.com"], "meta": {"id": "e-1"}, "n": 1}

    def test_lookup_returns_missing_sentinel(self):
        ctx = _ctx(trigger_data={"flag": False})
        assert lookup("trigger.flag", ctx) is False
        assert lookup("trigger.other", ctx) is MISSING


@pytest.mark.unit
class TestExecutionContext:
    def test_record_output_with_save_as(self):
        ctx = _ctx()
        ctx.record_output("lookup", {"id": 1}, save_as="employee")
        assert ctx.node_outputs["lookup"] == {"id": 1}
        assert ctx.get_variable("employee") == {"id": 1}

    def test_attempt_counters(self):
        ctx = _ctx()
        assert ctx.record_attempt("send") == 1
        assert ctx.record_attempt("send") == 2
        assert ctx.attempts("send") == 2
        ctx.reset_attempts("send")
        assert ctx.attempts("send") == 0


@pytest.mark.unit
class TestDurationsAndTimestamps:
    @pytest.mark.parametrize("value,expected", [
        ("30s", timedelta(seconds=30)),
        ("15m", timedelta(minutes=15)),
        ("24h", timedelta(hours=24)),
        ("2d", timedelta(days=2)),
        ("1w", timedelta(weeks=1)),
        (90, timedelta(seconds=90)),
        ("45", timedelta(seconds=45)),
    ])
    def test_parse_duration(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["soon", "-5m", -1, True, None])
    def test_parse_duration_rejects(self, value):
        with pytest.raises(WorkflowConfigError):
            parse_duration(value)

    def test_parse_timestamp_converts_to_naive_utc(self):
        assert parse_timestamp("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, 0)
        assert parse_timestamp("2026-03-01T12:00:00+02:00") == datetime(2026, 3, 1, 10, 0)

    def test_parse_timestamp_rejects_garbage(self):
        with pytest.raises(TemplateResolutionError):
            parse_timestamp("next tuesday")
