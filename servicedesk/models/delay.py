import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Enum, ForeignKey, Index, Integer, Numeric, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from servicedesk.models.base import (
    Base,
    DelayStatus,
    JustificationStatus,
    TimestampMixin,
    UTCDateTime,
    utc_now,
)


class Delay(TimestampMixin, Base):
    """Overage of actual over estimated time on a ticket. Never destroyed once justified."""

    __tablename__ = "delays"
    __table_args__ = (
        Index("ix_delays_ticket_id", "ticket_id"),
        Index("ix_delays_user_id", "user_id"),
        Index("ix_delays_status", "status"),
    )

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    estimated_time: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_time: Mapped[int] = mapped_column(Integer, nullable=False)
    delay_time: Mapped[int] = mapped_column(Integer, nullable=False)
    delay_percentage: Mapped[float] = mapped_column(Numeric(6, 2, asdecimal=False), nullable=False)
    status: Mapped[DelayStatus] = mapped_column(
        Enum(DelayStatus, name="delaystatus"),
        default=DelayStatus.unjustified,
        server_default="unjustified",
        nullable=False,
    )
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)


class DelayJustification(TimestampMixin, Base):
    __tablename__ = "delay_justifications"
    __table_args__ = (
        Index("ix_delay_justifications_user_id", "user_id"),
        Index("ix_delay_justifications_status", "status"),
    )

    delay_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("delays.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    justification: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[JustificationStatus] = mapped_column(
        Enum(JustificationStatus, name="justificationstatus"),
        default=JustificationStatus.pending,
        server_default="pending",
        nullable=False,
    )
    validated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    validated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    validation_comment: Mapped[str] = mapped_column(Text, default="", server_default="")
