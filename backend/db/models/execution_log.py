"""WorkflowLog model: append-only audit trail of node attempts."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import LogStatus
from db.base import BaseModel


class WorkflowLog(BaseModel):
    """One row per node execution attempt. Never updated.

    Attributes:
        id: Unique identifier (UUID string)
        execution_id: Foreign key to WorkflowExecution
        node_id: Node that ran
        node_type: trigger, action, condition, wait
        sequence: Position of this row within the execution (1-based)
        attempt_number: 1-based attempt counter for this node
        status: success, retrying, failed
        output: Node output (success only)
        error: Error message (retrying / failed)
        duration_ms: Wall time spent in the node executor
        retry_delay_ms: Scheduled delay before the next attempt (retrying only)
        timestamp: When the attempt finished
    """

    __tablename__ = "workflow_logs"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    node_id: Mapped[str] = mapped_column(nullable=False)
    node_type: Mapped[str] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(default=0)
    attempt_number: Mapped[int] = mapped_column(default=1)
    status: Mapped[str] = mapped_column(default=LogStatus.SUCCESS.value, index=True)
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(default=0)
    retry_delay_ms: Mapped[Optional[int]] = mapped_column(nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    execution: Mapped["WorkflowExecution"] = relationship(
        "WorkflowExecution", back_populates="logs", lazy="noload"
    )
