import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicedesk.models.base import Base, TimestampMixin, UTCDateTime, utc_now

if TYPE_CHECKING:
    from servicedesk.models.user import User


class Department(TimestampMixin, Base):
    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    is_it_department: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())

    # Relationships
    memberships: Mapped[list["DepartmentMembership"]] = relationship(
        "DepartmentMembership", back_populates="department", lazy="raise"
    )


class DepartmentMembership(TimestampMixin, Base):
    """A user's place in a department. ``is_lead`` grants supervisory scope."""

    __tablename__ = "department_memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "department_id", name="uq_department_memberships_user_department"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("departments.id"), nullable=False
    )
    is_lead: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="department_memberships")
    department: Mapped["Department"] = relationship("Department", back_populates="memberships")
