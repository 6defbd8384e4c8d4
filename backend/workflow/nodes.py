"""Node executors: one per node type.

Each executor takes a node, the execution context and the step's ``now``
and returns a NodeResult. Executors never block and never persist
anything; the engine owns state transitions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from actions.registry import ActionRegistry
from core.constants import NodeType
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
from workflow.definition import Node

_SINGLE_PLACEHOLDER_PREFIX = "{{"
_ACTION_RESERVED_KEYS = {"action_type", "action", "params", "save_as", "retry"}


@dataclass
class NodeResult:
    """Outcome of running one node once."""
    success: bool
    output: Any = None
    error: Optional[str] = None
    next_node_id: Optional[str] = None  # explicit target, beats the default edge
    end_of_path: bool = False  # no successor: the execution completes
    should_wait: bool = False
    wait_until: Optional[datetime] = None
    recheck: bool = False  # on resume, run this node again instead of its successor
    retryable: bool = False
    save_as: Optional[str] = None

    @classmethod
    def failure(cls, error: str, retryable: bool = False) -> "NodeResult":
        return cls(success=False, error=error, retryable=retryable)


class BaseNodeExecutor(ABC):
    node_type: NodeType

    @abstractmethod
    async def execute(self, node: Node, context: ExecutionContext, now: datetime) -> NodeResult:
        ...


# ─── Trigger ──────────────────────────────────────────────────

class TriggerNodeExecutor(BaseNodeExecutor):
    """Entry node. Seeds trigger_data from its config when the run has none."""

    node_type = NodeType.TRIGGER

    async def execute(self, node, context, now):
        if not context.trigger_data and node.config:
            context.trigger_data = dict(node.config)
        return NodeResult(
            success=True,
            output={
                "trigger_type": node.config.get("event") or context.metadata.get("trigger_type") or "manual",
                "triggered_at": now.isoformat(),
            },
        )


# ─── Action ───────────────────────────────────────────────────

class ActionNodeExecutor(BaseNodeExecutor):
    """Resolves params and dispatches to the named action executor.

    Config:
        action_type (or legacy ``action``): registered action name
        params: action parameters; when absent, the remaining config keys are used
        save_as: also store the output as this variable
    """

    node_type = NodeType.ACTION

    def __init__(self, registry: ActionRegistry, **services):
        self.registry = registry
        self.services = services

    async def execute(self, node, context, now):
        config = node.config
        action_type = config.get("action_type") or config.get("action")
        if not action_type:
            raise WorkflowConfigError(f"Action node '{node.id}' has no action_type")

        action = self.registry.create_instance(action_type, **self.services)
        if action is None:
            raise WorkflowConfigError(f"Unknown action type '{action_type}' on node '{node.id}'")

        if "params" in config:
            raw_params = config.get("params") or {}
        else:
            raw_params = {k: v for k, v in config.items() if k not in _ACTION_RESERVED_KEYS}
        params = resolve_object(raw_params, context)

        result = await action.run(params, context)
        return NodeResult(
            success=result.success,
            output=result.output,
            error=result.error,
            retryable=result.retryable,
            save_as=config.get("save_as"),
        )


# ─── Condition ────────────────────────────────────────────────

def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _loose_equals(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    left, right = _to_number(actual), _to_number(expected)
    if left is not None and right is not None:
        return left == right
    if isinstance(actual, bool) or isinstance(expected, bool):
        return str(actual).lower() == str(expected).lower()
    return False


def _compare(actual: Any, expected: Any) -> Optional[int]:
    left, right = _to_number(actual), _to_number(expected)
    if left is not None and right is not None:
        return (left > right) - (left < right)
    if isinstance(actual, str) and isinstance(expected, str):
        return (actual > expected) - (actual < expected)
    return None


def _is_empty(value: Any) -> bool:
    return value is MISSING or value is None or value == "" or value == [] or value == {}


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return expected is not None and str(expected) in actual
    if isinstance(actual, (list, tuple)):
        return any(_loose_equals(item, expected) for item in actual)
    if isinstance(actual, dict):
        return expected in actual
    return False


def _member_of(actual: Any, expected: Any) -> bool:
    if isinstance(expected, str):
        expected = [item.strip() for item in expected.split(",")]
    if not isinstance(expected, (list, tuple)):
        raise WorkflowConfigError("Operators 'in' / 'not_in' need a list value")
    return any(_loose_equals(actual, item) for item in expected)


def _ordered(predicate):
    def check(actual, expected):
        result = _compare(actual, expected)
        return result is not None and predicate(result)
    return check


CONDITION_OPERATORS = {
    "equals": _loose_equals,
    "not_equals": lambda a, e: not _loose_equals(a, e),
    "greater_than": _ordered(lambda r: r > 0),
    "less_than": _ordered(lambda r: r < 0),
    "greater_or_equal": _ordered(lambda r: r >= 0),
    "less_or_equal": _ordered(lambda r: r <= 0),
    "contains": _contains,
    "not_contains": lambda a, e: not _contains(a, e),
    "starts_with": lambda a, e: isinstance(a, str) and a.startswith(str(e)),
    "ends_with": lambda a, e: isinstance(a, str) and a.endswith(str(e)),
    "is_empty": lambda a, e: _is_empty(a),
    "is_not_empty": lambda a, e: not _is_empty(a),
    "is_null": lambda a, e: a is None,
    "is_not_null": lambda a, e: a is not None,
    "in": _member_of,
    "not_in": lambda a, e: not _member_of(a, e),
}

# Operators a field that does not resolve at all can satisfy.
_MISSING_SATISFIES = {"not_equals", "not_contains", "not_in", "is_empty", "is_null"}


def evaluate_condition(actual: Any, operator: str, expected: Any) -> bool:
    """Evaluate ``actual <operator> expected``. Deterministic for equal inputs.

    Raises:
        WorkflowConfigError: unknown operator.
    """
    check = CONDITION_OPERATORS.get(operator)
    if check is None:
        raise WorkflowConfigError(f"Unknown condition operator '{operator}'")
    if actual is MISSING:
        return operator in _MISSING_SATISFIES
    return bool(check(actual, expected))


def resolve_field(field: str, context: ExecutionContext) -> Any:
    """Resolve a condition/wait field; bare paths and ``{{path}}`` keep MISSING."""
    text = field.strip()
    if text.startswith(_SINGLE_PLACEHOLDER_PREFIX) and text.endswith("}}") and text.count("{{") == 1:
        return lookup(text[2:-2], context)
    if "{{" in text:
        return resolve(text, context)
    return lookup(text, context)


class ConditionNodeExecutor(BaseNodeExecutor):
    """Branches on ``field <operator> value``.

    Config:
        field: context path (bare or ``{{...}}``)
        operator: one of CONDITION_OPERATORS
        value: comparison value, may be a template

    An unset branch ends the path and the execution completes.
    """

    node_type = NodeType.CONDITION

    async def execute(self, node, context, now):
        field = node.config.get("field")
        if not field or not isinstance(field, str):
            raise WorkflowConfigError(f"Condition node '{node.id}' has no field")
        operator = node.config.get("operator") or "equals"

        actual = resolve_field(field, context)
        expected = resolve(node.config.get("value"), context)
        outcome = evaluate_condition(actual, operator, expected)

        branch = node.true_branch if outcome else node.false_branch
        return NodeResult(
            success=True,
            output={
                "result": outcome,
                "branch": "true" if outcome else "false",
                "field_value": None if actual is MISSING else actual,
            },
            next_node_id=branch,
            end_of_path=branch is None,
        )


# ─── Wait ─────────────────────────────────────────────────────

class WaitNodeExecutor(BaseNodeExecutor):
    """Suspends the execution until a point in time.

    Config (exactly one is used, checked in this order):
        duration: "30m" | "1h" | "2d" | "1w" | seconds, relative to now
        until: absolute timestamp (may be a template); past values continue
        until_field: context path; truthy continues, otherwise re-check later
    """

    node_type = NodeType.WAIT

    def __init__(self, recheck_seconds: int = 3600):
        self.recheck_interval = timedelta(seconds=recheck_seconds)

    async def execute(self, node, context, now):
        config = node.config

        if config.get("duration") not in (None, ""):
            delay = parse_duration(resolve(config["duration"], context))
            if delay <= timedelta(0):
                return NodeResult(success=True, output={"mode": "duration", "waited": False})
            resume_at = now + delay
            return self._suspend("duration", resume_at)

        if config.get("until") not in (None, ""):
            value = resolve(config["until"], context)
            if value in (None, ""):
                raise TemplateResolutionError(f"Wait node '{node.id}': 'until' resolved to nothing")
            resume_at = parse_timestamp(value)
            if resume_at <= now:
                return NodeResult(
                    success=True,
                    output={"mode": "until", "waited": False, "until": resume_at.isoformat()},
                )
            return self._suspend("until", resume_at)

        if config.get("until_field"):
            value = resolve_field(str(config["until_field"]), context)
            if value is not MISSING and value:
                return NodeResult(success=True, output={"mode": "until_field", "waited": False})
            return self._suspend("until_field", now + self.recheck_interval, recheck=True)

        raise WorkflowConfigError("Wait node requires duration, until, or until_field config")

    @staticmethod
    def _suspend(mode: str, resume_at: datetime, recheck: bool = False) -> NodeResult:
        return NodeResult(
            success=True,
            output={"mode": mode, "waited": True, "resume_at": resume_at.isoformat()},
            should_wait=True,
            wait_until=resume_at,
            recheck=recheck,
        )


def build_node_executors(
    action_registry: ActionRegistry,
    recheck_seconds: int = 3600,
    **services,
) -> dict[NodeType, BaseNodeExecutor]:
    """Node type -> executor map used by the engine."""
    return {
        NodeType.TRIGGER: TriggerNodeExecutor(),
        NodeType.ACTION: ActionNodeExecutor(action_registry, **services),
        NodeType.CONDITION: ConditionNodeExecutor(),
        NodeType.WAIT: WaitNodeExecutor(recheck_seconds=recheck_seconds),
    }
