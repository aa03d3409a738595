import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, TypeDecorator, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC.

    Backends without a native timestamptz (SQLite) return naive values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), onupdate=utc_now
    )


class UserRole(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    agent = "agent"


class TicketStatus(str, enum.Enum):
    ouvert = "ouvert"
    en_cours = "en_cours"
    en_attente = "en_attente"
    resolu = "resolu"
    cloture = "cloture"


class TicketCategory(str, enum.Enum):
    incident = "incident"
    demande = "demande"
    changement = "changement"
    developpement = "developpement"


class TicketPriority(str, enum.Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class SlaUnit(str, enum.Enum):
    minutes = "minutes"
    hours = "hours"
    days = "days"


class SlaStatus(str, enum.Enum):
    on_time = "on_time"
    at_risk = "at_risk"
    violated = "violated"


class DelayStatus(str, enum.Enum):
    unjustified = "unjustified"
    pending = "pending"
    justified = "justified"
    rejected = "rejected"


class JustificationStatus(str, enum.Enum):
    pending = "pending"
    validated = "validated"
    rejected = "rejected"
