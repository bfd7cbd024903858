"""
User model with ULID primary keys.
"""
from datetime import datetime
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class User(Base, TimestampMixin):
    """
    Staff member who can authorize sign-outs and sign personnel back in.

    Uses ULID instead of auto-incrementing integers for better distributed systems support.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    # Display information
    rank: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # bcrypt hashes; the PIN re-proves identity on every mutation
    password_hash: Mapped[str] = mapped_column(String(100), nullable=False)
    pin_hash: Mapped[str] = mapped_column(String(100), nullable=False)

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def display_name(self) -> str:
        return f"{self.rank} {self.full_name}".strip()

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username!r})>"
