import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Enum, ForeignKey, Index, Integer, String, Text, Uuid, true
from sqlalchemy.orm import Mapped, mapped_column

from servicedesk.models.base import (
    Base,
    SlaStatus,
    SlaUnit,
    TicketCategory,
    TicketPriority,
    TimestampMixin,
    UTCDateTime,
)

UNIT_MINUTES = {
    SlaUnit.minutes: 1,
    SlaUnit.hours: 60,
    SlaUnit.days: 1440,
}


class SlaDefinition(TimestampMixin, Base):
    __tablename__ = "sla_definitions"
    __table_args__ = (
        Index("ix_sla_definitions_category_priority", "ticket_category", "priority"),
    )

    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", server_default="")
    ticket_category: Mapped[TicketCategory] = mapped_column(
        Enum(TicketCategory, name="ticketcategory"), nullable=False
    )
    # None applies to every priority of the category.
    priority: Mapped[Optional[TicketPriority]] = mapped_column(
        Enum(TicketPriority, name="ticketpriority"), nullable=True
    )
    target_time: Mapped[int] = mapped_column(Integer, nullable=False)
    unit: Mapped[SlaUnit] = mapped_column(
        Enum(SlaUnit, name="slaunit"), default=SlaUnit.minutes, server_default="minutes", nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    @property
    def target_minutes(self) -> int:
        return self.target_time * UNIT_MINUTES[self.unit]


class TicketSla(TimestampMixin, Base):
    """Cached SLA verdict for a ticket. Always recomputable from the ticket and its definition."""

    __tablename__ = "ticket_sla"
    __table_args__ = (
        Index("ix_ticket_sla_status", "status"),
        Index("ix_ticket_sla_sla_id", "sla_id"),
    )

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    sla_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("sla_definitions.id"), nullable=False)
    target_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    target_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    elapsed_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[SlaStatus] = mapped_column(
        Enum(SlaStatus, name="slastatus"), default=SlaStatus.on_time, server_default="on_time", nullable=False
    )
    violated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    evaluated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
