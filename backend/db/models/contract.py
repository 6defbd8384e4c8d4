"""Employment contract model (source of the contract-expiring trigger)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class Contract(BaseModel):
    """An employee's contract with an end date."""

    __tablename__ = "contracts"

    employee_id: Mapped[str] = mapped_column(nullable=False, index=True)
    title: Mapped[str] = mapped_column(nullable=False, default="")
    status: Mapped[str] = mapped_column(default="active", index=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
