import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicedesk.models.base import (
    Base,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    TimestampMixin,
    UTCDateTime,
)


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_status", "status"),
        Index("ix_tickets_category", "category"),
        Index("ix_tickets_assigned_to_id", "assigned_to_id"),
        Index("ix_tickets_created_at", "created_at"),
    )

    code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[TicketCategory] = mapped_column(
        Enum(TicketCategory, name="ticketcategory"), nullable=False
    )
    priority: Mapped[TicketPriority] = mapped_column(
        Enum(TicketPriority, name="ticketpriority"),
        default=TicketPriority.medium,
        server_default="medium",
        nullable=False,
    )
    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus, name="ticketstatus"),
        default=TicketStatus.ouvert,
        server_default="ouvert",
        nullable=False,
    )
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    # The responsible ("lead") assignee; delays are attributed to this user.
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    estimated_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actual_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    validated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    validated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    assignees: Mapped[list["TicketAssignee"]] = relationship(
        "TicketAssignee",
        back_populates="ticket",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TicketAssignee.created_at",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def assignee_ids(self) -> list[uuid.UUID]:
        return [a.user_id for a in self.assignees]

    @property
    def responsible_id(self) -> uuid.UUID:
        return self.assigned_to_id or self.created_by_id

    @property
    def is_closed(self) -> bool:
        return self.status == TicketStatus.cloture


class TicketAssignee(TimestampMixin, Base):
    __tablename__ = "ticket_assignees"
    __table_args__ = (
        UniqueConstraint("ticket_id", "user_id", name="uq_ticket_assignees_ticket_user"),
    )

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    is_lead: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())

    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="assignees")
