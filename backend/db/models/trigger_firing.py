"""Dedupe ledger for time-based triggers."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class TriggerFiring(BaseModel):
    """Records that ``event`` already started ``workflow_id`` for ``subject_id``.

    The unique constraint makes a concurrent second firing fail at insert
    time instead of creating a duplicate execution.
    """

    __tablename__ = "workflow_trigger_firings"
    __table_args__ = (
        UniqueConstraint("workflow_id", "event", "subject_id", name="uq_trigger_firing"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event: Mapped[str] = mapped_column(nullable=False)
    subject_id: Mapped[str] = mapped_column(nullable=False)
    execution_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    fired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
