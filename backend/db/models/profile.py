"""User profile model (read by bulk notifications and email lookups)."""

from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class Profile(BaseModel):
    """Directory entry for an application user."""

    __tablename__ = "profiles"

    full_name: Mapped[str] = mapped_column(nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    role: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    department_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(default=True)
