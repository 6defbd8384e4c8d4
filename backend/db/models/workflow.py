"""Workflow definition model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class Workflow(BaseModel):
    """A published workflow definition.

    Attributes:
        id: Unique identifier (UUID string)
        name: Workflow name
        description: Workflow description
        definition: JSON graph ``{"nodes": [...], "edges": [...], "variables": {...}}``
        trigger_event: Event name that starts this workflow from external
            time-based triggers (e.g. ``contract.expiring``)
        version: Definition version number
        is_active: Whether new executions may be started
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    definition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    trigger_event: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    version: Mapped[int] = mapped_column(default=1)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)

    # Relationships use "noload"; queries that need related rows select them explicitly.
    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )
    schedules: Mapped[list["WorkflowSchedule"]] = relationship(
        "WorkflowSchedule",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )
