from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Enum, String, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicedesk.models.base import Base, TimestampMixin, UserRole

if TYPE_CHECKING:
    from servicedesk.models.department import DepartmentMembership


class User(TimestampMixin, Base):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, name="userrole"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())

    # Relationships
    department_memberships: Mapped[list["DepartmentMembership"]] = relationship(
        "DepartmentMembership", back_populates="user", lazy="raise"
    )
