import datetime as dt
import uuid
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, Text, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column

from servicedesk.models.base import Base, TimestampMixin, UTCDateTime


class TimeEntry(TimestampMixin, Base):
    __tablename__ = "time_entries"
    __table_args__ = (
        Index("ix_time_entries_ticket_id", "ticket_id"),
        Index("ix_time_entries_user_id", "user_id"),
        Index("ix_time_entries_date", "date"),
    )

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    time_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", server_default="")
    validated: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    validated_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    validated_at: Mapped[Optional[dt.datetime]] = mapped_column(UTCDateTime, nullable=True)
