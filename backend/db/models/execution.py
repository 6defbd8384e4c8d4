"""Workflow execution model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionStatus, TriggerType
from db.base import BaseModel


class WorkflowExecution(BaseModel):
    """One run of a workflow.

    Status transitions: pending -> running -> (waiting -> pending -> running)*
    -> completed | failed. Only the worker holding the ``running`` claim
    mutates ``context``; a ``waiting`` row always has ``resume_at`` set.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        status: pending, running, waiting, completed, failed
        trigger_type: manual, schedule, webhook, event
        current_node_id: Node to run (or that suspended) on the next advance
        context: Serialized ExecutionContext
        resume_at: When a waiting execution becomes eligible again (naive UTC)
        error: Last error, set when the execution fails
        started_at: First claim timestamp
        completed_at: Terminal transition timestamp
        heartbeat_at: Last progress write by the claiming worker
        claim_id: Token of the worker holding the running claim; writes that
            advance the execution are guarded on it
    """

    __tablename__ = "workflow_executions"
    __table_args__ = (
        Index("ix_workflow_executions_status_resume_at", "status", "resume_at"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.PENDING.value, index=True
    )
    trigger_type: Mapped[str] = mapped_column(default=TriggerType.MANUAL.value)
    current_node_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    resume_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    heartbeat_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    claim_id: Mapped[Optional[str]] = mapped_column(nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="executions", lazy="noload"
    )
    logs: Mapped[list["WorkflowLog"]] = relationship(
        "WorkflowLog",
        back_populates="execution",
        cascade="all, delete-orphan",
        lazy="noload",
    )
