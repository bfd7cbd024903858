"""
Permission catalog and per-user grants.

- `permissions` is the data-driven catalog of named capabilities
- `user_permissions` holds at most one grant per (user, permission)
"""
from sqlalchemy import String, ForeignKey, Table, Column, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.utils import utcnow


# ============================================================================
# Association Table
# ============================================================================

# The composite primary key is the uniqueness guarantee for grants
user_permissions = Table(
    "user_permissions",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("granted_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("granted_by_id", String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    A named capability such as "create_signout" or "manage_users".
    """
    __tablename__ = "permissions"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r})>"
