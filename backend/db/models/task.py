"""HR task model (created and updated by workflow actions)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import TaskPriority, TaskStatus
from db.base import BaseModel


class Task(BaseModel):
    """A to-do item assigned to a user, optionally linked to a case."""

    __tablename__ = "tasks"

    title: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    case_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    priority: Mapped[str] = mapped_column(default=TaskPriority.MEDIUM.value)
    status: Mapped[str] = mapped_column(default=TaskStatus.OPEN.value, index=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_by_workflow: Mapped[Optional[str]] = mapped_column(nullable=True)
