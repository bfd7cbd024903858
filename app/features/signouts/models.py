"""
Sign-out rows.

A sign-out event is not a table of its own: it is the set of `signouts` rows
sharing one `signout_id`, one row per person. Every header column is
written identically on all rows of an event and updated together.
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import String, Text, ForeignKey, DateTime, CheckConstraint, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base


class SignoutStatus(str, Enum):
    OUT = "OUT"
    IN = "IN"


class SignoutEntry(Base):
    """One person within a sign-out event."""
    __tablename__ = "signouts"
    __table_args__ = (
        CheckConstraint("status IN ('OUT', 'IN')", name="ck_signouts_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Human-readable event id shared by every person of the event
    signout_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    # Person
    soldier_rank: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    soldier_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    soldier_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    soldier_dod_id: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Event header
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    sign_out_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    signed_out_by_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    signed_out_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(3), nullable=False, default=SignoutStatus.OUT.value, index=True)
    sign_in_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_in_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    signed_in_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SignoutEntry(id={self.id}, signout_id={self.signout_id!r}, "
            f"soldier={self.soldier_last_name!r}, status={self.status})>"
        )
