"""Execution context and template resolution.

Every node config may reference data gathered earlier in the run with
``{{path.to.value}}`` placeholders:

    {{trigger.email}}              -> context.trigger_data["email"]
    {{variables.manager_id}}       -> context.variables["manager_id"]
    {{nodes.create_task.task_id}}  -> context.node_outputs["create_task"]["task_id"]
    {{create_task.task_id}}        -> same, addressed by node id
    {{priority}}                   -> a variable, else a trigger_data field, else metadata
    {{trigger.items.0.name}}       -> numeric segments index lists

A string that is exactly one placeholder resolves to the raw value (type
preserved). Placeholders embedded in text are interpolated; a path that
does not resolve renders as an empty string there and as ``None`` when it
is the whole string. Resolution is pure: no I/O, no mutation.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from core.exceptions import TemplateResolutionError, WorkflowConfigError
from core.utils import to_naive_utc


class _Missing:
    """Sentinel for a path that does not resolve (distinct from None/False/0)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_SEGMENT = re.compile(r"^[^\s{}]+$")
_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhdw]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "": 1,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}

_TRIGGER_ROOTS = ("trigger", "trigger_data")
_NODE_ROOTS = ("nodes", "node_outputs")


# ─── Execution Context ────────────────────────────────────────

@dataclass
class ExecutionContext:
    """State carried through one workflow execution.

    Grows monotonically for the lifetime of the execution and is persisted
    to ``workflow_executions.context`` after every node.
    """

    workflow_id: str
    execution_id: str
    trigger_data: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    node_outputs: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def set_variable(self, key: str, value: Any) -> None:
        self.variables[key] = value

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self.variables.get(key, default)

    def record_output(self, node_id: str, output: Any, save_as: str = None) -> None:
        """Store a node's output, optionally also as a named variable."""
        self.node_outputs[node_id] = output
        if save_as:
            self.variables[save_as] = output

    # Per-node attempt counters live in metadata so they survive suspension.

    def attempts(self, node_id: str) -> int:
        return int(self.metadata.get("attempts", {}).get(node_id, 0))

    def record_attempt(self, node_id: str) -> int:
        counters = self.metadata.setdefault("attempts", {})
        counters[node_id] = int(counters.get(node_id, 0)) + 1
        return counters[node_id]

    def reset_attempts(self, node_id: str) -> None:
        self.metadata.get("attempts", {}).pop(node_id, None)

    def to_dict(self) -> dict:
        """Serialize for the JSON ``context`` column."""
        return {
            "workflow_id": self.workflow_id,
            "execution_id": self.execution_id,
            "trigger_data": self.trigger_data,
            "variables": self.variables,
            "node_outputs": self.node_outputs,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionContext":
        """Restore a context written by ``to_dict``."""
        return cls(
            workflow_id=data["workflow_id"],
            execution_id=data["execution_id"],
            trigger_data=dict(data.get("trigger_data") or {}),
            variables=dict(data.get("variables") or {}),
            node_outputs=dict(data.get("node_outputs") or {}),
            metadata=dict(data.get("metadata") or {}),
        )


# ─── Path lookup ──────────────────────────────────────────────

def split_path(path: str) -> list[str]:
    """Split ``a.b.0.c`` into segments, rejecting malformed paths."""
    path = path.strip()
    if not path:
        raise TemplateResolutionError("Empty template path")
    segments = path.split(".")
    for segment in segments:
        if not segment or not _SEGMENT.match(segment):
            raise TemplateResolutionError(f"Malformed template path: '{path}'")
    return segments


def _walk(current: Any, segments: list[str]) -> Any:
    for segment in segments:
        if isinstance(current, dict):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(segment)
            except ValueError:
                return MISSING
            if not -len(current) <= index < len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def lookup(path: str, context: ExecutionContext) -> Any:
    """Resolve a bare dot path against the context.

    Returns ``MISSING`` when any segment is absent.
    """
    segments = split_path(path)
    head, rest = segments[0], segments[1:]

    if head in _TRIGGER_ROOTS:
        return _walk(context.trigger_data, rest)
    if head == "variables":
        return _walk(context.variables, rest)
    if head in _NODE_ROOTS:
        return _walk(context.node_outputs, rest)
    if head == "metadata":
        return _walk(context.metadata, rest)
    if head == "execution_id":
        return _walk(context.execution_id, rest)
    if head == "workflow_id":
        return _walk(context.workflow_id, rest)

    if head in context.node_outputs:
        return _walk(context.node_outputs[head], rest)
    if head in context.variables:
        return _walk(context.variables[head], rest)

    value = _walk(context.trigger_data, segments)
    if value is MISSING:
        value = _walk(context.metadata, segments)
    return value


# ─── Template resolution ──────────────────────────────────────

def _stringify(value: Any) -> str:
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def is_template(value: Any) -> bool:
    return isinstance(value, str) and "{{" in value


def resolve(expression: Any, context: ExecutionContext) -> Any:
    """Resolve every ``{{...}}`` placeholder in ``expression``.

    Non-strings and strings without placeholders are returned unchanged.

    Raises:
        TemplateResolutionError: a placeholder is unterminated or its path
            cannot be parsed.
    """
    if not is_template(expression):
        return expression

    matches = list(_PLACEHOLDER.finditer(expression))
    leftover = _PLACEHOLDER.sub("", expression)
    if "{{" in leftover:
        raise TemplateResolutionError(f"Unterminated placeholder in '{expression}'")

    if len(matches) == 1 and matches[0].group(0) == expression.strip():
        value = lookup(matches[0].group(1), context)
        return None if value is MISSING else value

    return _PLACEHOLDER.sub(
        lambda m: _stringify(lookup(m.group(1), context)),
        expression,
    )


def resolve_object(template: Any, context: ExecutionContext) -> Any:
    """Recursively resolve every string leaf of a dict/list structure."""
    if isinstance(template, str):
        return resolve(template, context)
    if isinstance(template, dict):
        return {key: resolve_object(value, context) for key, value in template.items()}
    if isinstance(template, (list, tuple)):
        return [resolve_object(item, context) for item in template]
    return template


# ─── Durations and timestamps ─────────────────────────────────

def parse_duration(value: Any) -> timedelta:
    """Parse ``"30s" | "15m" | "1h" | "2d" | "1w"`` or a number of seconds.

    Raises:
        WorkflowConfigError: the value is not a non-negative duration.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise WorkflowConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise WorkflowConfigError(f"Duration must not be negative: {value!r}")
        return timedelta(seconds=value)
    if isinstance(value, str):
        match = _DURATION.match(value)
        if match:
            amount = float(match.group(1))
            return timedelta(seconds=amount * _DURATION_UNITS[match.group(2).lower()])
    raise WorkflowConfigError(
        f"Invalid duration: {value!r} (expected e.g. '30m', '1h', '2d', '1w')"
    )


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string, date or datetime into naive UTC.

    Raises:
        TemplateResolutionError: the value is not a recognizable timestamp.
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            pass
    raise TemplateResolutionError(f"Cannot parse timestamp: {value!r}")
