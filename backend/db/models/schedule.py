"""Cron schedule model for workflows."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowSchedule(BaseModel):
    """Cron schedule that periodically starts a workflow.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow (one schedule per workflow)
        cron_expression: Five-field cron expression
        timezone: IANA timezone the cron expression is evaluated in
        enabled: Whether the scheduler fires this schedule
        last_run: Last fire time (naive UTC)
        next_run: Next fire time (naive UTC); NULL means "due now"
    """

    __tablename__ = "workflow_schedules"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    cron_expression: Mapped[str] = mapped_column(nullable=False)
    timezone: Mapped[str] = mapped_column(nullable=False, default="UTC")
    enabled: Mapped[bool] = mapped_column(default=True, index=True)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_run: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="schedules", lazy="noload"
    )
