"""Constants and enums for the workflow engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class NodeType(str, Enum):
    """Node types a workflow graph may contain."""

    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    WAIT = "wait"


class LogStatus(str, Enum):
    """Outcome of a single node attempt, as written to workflow_logs."""

    SUCCESS = "success"
    RETRYING = "retrying"
    FAILED = "failed"


class TriggerType(str, Enum):
    """How an execution entered the system."""

    MANUAL = "manual"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    EVENT = "event"


class TaskStatus(str, Enum):
    """Status of an HR task created by workflows."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


CONTRACT_EXPIRING_EVENT = "contract.expiring"
