import uuid

import nh3
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser
from servicedesk.clock import Clock
from servicedesk.exceptions import (
    ForbiddenError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from servicedesk.models.base import UserRole
from servicedesk.models.ticket import Ticket
from servicedesk.models.time_entry import TimeEntry
from servicedesk.schemas.time_entry import TimeEntryCreate, TimeEntryUpdate
from servicedesk.services import delay_service, scope_service, ticket_service


def _require_positive(time_spent: int) -> None:
    if time_spent <= 0:
        raise InvalidInputError("time_spent must be a positive number of minutes", code="invalid_time_spent")


def _require_editable(entry: TimeEntry, current_user: CurrentUser) -> None:
    if entry.validated:
        raise InvalidTransitionError("Validated time entries cannot be modified")
    if entry.user_id != current_user.user.id and current_user.user.role != UserRole.admin:
        raise ForbiddenError("You can only modify your own time entries")


async def sum_time_spent(db: AsyncSession, ticket_id: uuid.UUID) -> int:
    """Actual time of a ticket: every entry counts, validated or not."""
    result = await db.execute(
        select(func.coalesce(func.sum(TimeEntry.time_spent), 0)).where(TimeEntry.ticket_id == ticket_id)
    )
    return int(result.scalar() or 0)


async def _resync(db: AsyncSession, ticket: Ticket, clock: Clock) -> None:
    """Recompute actual_time and re-run delay detection. Caller holds the ticket lock."""
    await db.flush()
    total = await sum_time_spent(db, ticket.id)
    ticket.actual_time = total if total > 0 else None
    await db.flush()
    await delay_service.detect_delay(db, ticket, clock)


async def get_time_entry(db: AsyncSession, entry_id: uuid.UUID) -> TimeEntry:
    result = await db.execute(select(TimeEntry).where(TimeEntry.id == entry_id))
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFoundError("Time entry not found")
    return entry


async def _lock_entry(db: AsyncSession, entry_id: uuid.UUID) -> tuple[TimeEntry, Ticket]:
    """Lock the entry's ticket, then reload the entry so its validation state is current."""
    entry = await get_time_entry(db, entry_id)
    ticket = await ticket_service.lock_ticket(db, entry.ticket_id)
    result = await db.execute(
        select(TimeEntry).where(TimeEntry.id == entry_id).execution_options(populate_existing=True)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFoundError("Time entry not found")
    return entry, ticket


async def list_time_entries(
    db: AsyncSession,
    ticket_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    validated: bool | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[TimeEntry], int]:
    conditions = []
    if ticket_id is not None:
        conditions.append(TimeEntry.ticket_id == ticket_id)
    if user_id is not None:
        conditions.append(TimeEntry.user_id == user_id)
    if validated is not None:
        conditions.append(TimeEntry.validated == validated)

    query = select(TimeEntry).where(*conditions).order_by(TimeEntry.date.desc(), TimeEntry.created_at.desc())
    count_query = select(func.count()).select_from(TimeEntry).where(*conditions)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return list(result.scalars().all()), total


async def create_time_entry(
    db: AsyncSession,
    current_user: CurrentUser,
    data: TimeEntryCreate,
    clock: Clock,
) -> TimeEntry:
    _require_positive(data.time_spent)
    ticket = await ticket_service.lock_ticket(db, data.ticket_id)
    if ticket.is_closed:
        raise InvalidTransitionError("Cannot log time on a closed ticket")

    now = clock.now()
    entry = TimeEntry(
        ticket_id=ticket.id,
        user_id=current_user.user.id,
        time_spent=data.time_spent,
        date=data.date or now.date(),
        description=nh3.clean(data.description),
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    await _resync(db, ticket, clock)
    return entry


async def update_time_entry(
    db: AsyncSession,
    current_user: CurrentUser,
    entry_id: uuid.UUID,
    data: TimeEntryUpdate,
    clock: Clock,
) -> TimeEntry:
    entry, ticket = await _lock_entry(db, entry_id)
    _require_editable(entry, current_user)

    update_fields = data.model_dump(exclude_unset=True)
    if update_fields.get("time_spent") is not None:
        _require_positive(update_fields["time_spent"])
        entry.time_spent = update_fields["time_spent"]
    if update_fields.get("date") is not None:
        entry.date = update_fields["date"]
    if update_fields.get("description") is not None:
        entry.description = nh3.clean(update_fields["description"])
    entry.updated_at = clock.now()

    if "time_spent" in update_fields:
        await _resync(db, ticket, clock)
    else:
        await db.flush()
    return entry


async def delete_time_entry(
    db: AsyncSession,
    current_user: CurrentUser,
    entry_id: uuid.UUID,
    clock: Clock,
) -> None:
    entry, ticket = await _lock_entry(db, entry_id)
    _require_editable(entry, current_user)

    await db.delete(entry)
    await _resync(db, ticket, clock)


async def validate_time_entry(
    db: AsyncSession,
    current_user: CurrentUser,
    entry_id: uuid.UUID,
    validated: bool,
    clock: Clock,
) -> TimeEntry:
    """Mark an entry validated (or not). An audit control only: actual_time is unchanged."""
    if not scope_service.has_permission(current_user.user, scope_service.TIME_ENTRIES_VALIDATE):
        raise ForbiddenError("You are not allowed to validate time entries")

    entry, _ = await _lock_entry(db, entry_id)
    if validated:
        entry.validated = True
        entry.validated_by_id = current_user.user.id
        entry.validated_at = clock.now()
    else:
        entry.validated = False
        entry.validated_by_id = None
        entry.validated_at = None
    await db.flush()
    return entry


async def get_time_comparison(db: AsyncSession, ticket_id: uuid.UUID) -> dict:
    """Estimated against actual time for a ticket."""
    ticket = await ticket_service.get_ticket(db, ticket_id)
    actual = await sum_time_spent(db, ticket.id)
    estimated = ticket.estimated_time

    difference = None
    percentage = None
    if estimated is not None:
        difference = actual - estimated
        if estimated > 0:
            percentage = round(actual / estimated * 100, 2)

    return {
        "ticket_id": ticket.id,
        "estimated_time": estimated,
        "actual_time": actual,
        "difference": difference,
        "percentage": percentage,
        "is_over": difference is not None and difference > 0,
    }
