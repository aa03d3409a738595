import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.models.ticket_history import TicketHistory


async def log_action(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    actor_id: uuid.UUID | None,
    action: str,
    field_changed: str | None = None,
    old_value: str | None = None,
    new_value: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> TicketHistory:
    """Append a history entry for a ticket action.

    Flushed immediately so entries of one request keep their insertion order.
    """
    entry = TicketHistory(
        ticket_id=ticket_id,
        actor_id=actor_id,
        action=action,
        field_changed=field_changed,
        old_value=old_value,
        new_value=new_value,
    )
    if metadata is not None:
        entry.metadata_ = metadata
    db.add(entry)
    await db.flush()
    return entry


async def get_history(db: AsyncSession, ticket_id: uuid.UUID) -> list[TicketHistory]:
    """All history entries for a ticket, oldest first."""
    result = await db.execute(
        select(TicketHistory)
        .where(TicketHistory.ticket_id == ticket_id)
        .order_by(TicketHistory.created_at.asc())
    )
    return list(result.scalars().all())
