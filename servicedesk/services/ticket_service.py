import logging
import uuid

import nh3
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser
from servicedesk.clock import Clock
from servicedesk.exceptions import (
    ForbiddenError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from servicedesk.models.base import TicketStatus
from servicedesk.models.ticket import Ticket, TicketAssignee
from servicedesk.models.ticket_history import TicketHistory
from servicedesk.models.time_entry import TimeEntry
from servicedesk.schemas.ticket import TicketAssign, TicketCreate
from servicedesk.services import (
    delay_service,
    history_service,
    notification_service,
    scope_service,
    sla_service,
)

logger = logging.getLogger(__name__)

CODE_ATTEMPTS = 3

ALLOWED_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.ouvert: frozenset({TicketStatus.en_cours, TicketStatus.en_attente, TicketStatus.cloture}),
    TicketStatus.en_cours: frozenset({TicketStatus.en_attente, TicketStatus.resolu, TicketStatus.cloture}),
    TicketStatus.en_attente: frozenset({TicketStatus.en_cours, TicketStatus.resolu, TicketStatus.cloture}),
    TicketStatus.resolu: frozenset({TicketStatus.en_cours, TicketStatus.en_attente, TicketStatus.cloture}),
    TicketStatus.cloture: frozenset(),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _next_ticket_code(db: AsyncSession, year: int) -> str:
    """Next code of the form TKT-YYYY-NNNN, numbered per year."""
    prefix = f"TKT-{year}-"
    result = await db.execute(
        select(Ticket.code)
        .where(Ticket.code.like(f"{prefix}%"))
        .order_by(func.length(Ticket.code).desc(), Ticket.code.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    highest = int(last[len(prefix):]) if last else 0
    return f"{prefix}{highest + 1:04d}"


async def _insert_with_code(db: AsyncSession, ticket: Ticket, year: int) -> None:
    """Insert a new ticket under the next free code.

    Two concurrent creates can compute the same code; the loser retries
    with a fresh one inside a SAVEPOINT.
    """
    for attempt in range(1, CODE_ATTEMPTS + 1):
        ticket.code = await _next_ticket_code(db, year)
        try:
            async with db.begin_nested():
                db.add(ticket)
                await db.flush()
            return
        except IntegrityError:
            if attempt == CODE_ATTEMPTS:
                raise
            logger.info("Ticket code %s already taken, retrying", ticket.code)


def parse_status(value: str) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in TicketStatus)
        raise InvalidInputError(
            f"Unknown status '{value}'. Expected one of: {allowed}",
            code="invalid_status",
        )


def can_transition(current: TicketStatus, target: TicketStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


async def get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> Ticket:
    result = await db.execute(select(Ticket).where(Ticket.id == ticket_id))
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return ticket


async def lock_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> Ticket:
    """Load a ticket under a row lock. Every read-modify-write of a ticket's
    status, times or delay goes through here."""
    result = await db.execute(
        select(Ticket)
        .where(Ticket.id == ticket_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return ticket


async def _set_assignees(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket: Ticket,
    user_ids: list[uuid.UUID],
    lead_id: uuid.UUID | None,
) -> None:
    user_ids = list(dict.fromkeys(user_ids))
    await scope_service.get_users(db, user_ids)
    if not await scope_service.can_assign(db, current_user.user, user_ids):
        raise ForbiddenError("Assigning users outside your departments requires tickets.assign_cross_department")

    lead_id = lead_id or user_ids[0]
    existing = {a.user_id: a for a in ticket.assignees}
    assignees = []
    for user_id in user_ids:
        assignee = existing.get(user_id) or TicketAssignee(user_id=user_id)
        assignee.is_lead = user_id == lead_id
        assignees.append(assignee)
    ticket.assignees = assignees
    ticket.assigned_to_id = lead_id


async def _on_closed(db: AsyncSession, ticket: Ticket, clock: Clock) -> None:
    await sla_service.refresh_ticket_sla(db, ticket, clock)
    await delay_service.detect_delay(db, ticket, clock)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

async def create_ticket(
    db: AsyncSession,
    current_user: CurrentUser,
    data: TicketCreate,
    clock: Clock,
) -> Ticket:
    """Create a ticket, attach its SLA and record the creation."""
    now = clock.now()
    ticket = Ticket(
        title=data.title,
        description=nh3.clean(data.description),
        category=data.category,
        priority=data.priority,
        status=TicketStatus.ouvert,
        created_by_id=current_user.user.id,
        estimated_time=data.estimated_time,
        created_at=now,
        updated_at=now,
    )
    if data.assignee_ids:
        await _set_assignees(db, current_user, ticket, data.assignee_ids, data.lead_id)
    else:
        ticket.assignees = []
    # An estimate given up front means work has started.
    if data.estimated_time is not None:
        ticket.status = TicketStatus.en_cours

    await _insert_with_code(db, ticket, now.year)

    await history_service.log_action(
        db,
        ticket_id=ticket.id,
        actor_id=current_user.user.id,
        action="created",
        new_value=ticket.status.value,
        metadata={"code": ticket.code, "category": ticket.category.value, "priority": ticket.priority.value},
    )
    await sla_service.apply_sla(db, ticket, clock)

    for user_id in ticket.assignee_ids:
        if user_id == current_user.user.id:
            continue
        await notification_service.notify(
            db,
            user_id=user_id,
            type="ticket_assigned",
            title=f"Ticket {ticket.code} assigned to you",
            message=ticket.title,
            link_url=f"/tickets/{ticket.id}",
            metadata={"ticket_id": str(ticket.id)},
        )

    logger.info("Ticket %s created by %s", ticket.code, current_user.user.username)
    return ticket


async def list_tickets(
    db: AsyncSession,
    filters: dict,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Ticket], int]:
    """List tickets with filtering and pagination, newest first."""
    conditions = []
    if filters.get("status") is not None:
        conditions.append(Ticket.status.in_([parse_status(s.strip()) for s in filters["status"].split(",")]))
    if filters.get("category") is not None:
        conditions.append(Ticket.category == filters["category"])
    if filters.get("priority") is not None:
        conditions.append(Ticket.priority == filters["priority"])
    if filters.get("assigned_to_id") is not None:
        conditions.append(Ticket.assigned_to_id == filters["assigned_to_id"])
    if filters.get("created_by_id") is not None:
        conditions.append(Ticket.created_by_id == filters["created_by_id"])

    query = select(Ticket).where(*conditions).order_by(Ticket.created_at.desc(), Ticket.code.desc())
    count_query = select(func.count()).select_from(Ticket).where(*conditions)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return list(result.scalars().all()), total


async def get_history(db: AsyncSession, ticket_id: uuid.UUID) -> list[TicketHistory]:
    await get_ticket(db, ticket_id)
    return await history_service.get_history(db, ticket_id)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def change_status(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    new_status: str,
    clock: Clock,
    expect_change: bool = False,
) -> Ticket:
    """Move a ticket along the status graph.

    Re-applying the current status is a no-op unless ``expect_change``.
    Entering ``cloture`` stamps ``closed_at`` once, freezes the SLA verdict
    and runs delay detection.
    """
    target = parse_status(new_status)
    ticket = await lock_ticket(db, ticket_id)
    current = ticket.status

    if target == current:
        if expect_change:
            raise InvalidTransitionError(f"Ticket is already {current.value}")
        return ticket
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Cannot move a ticket from {current.value} to {target.value}")

    now = clock.now()
    ticket.status = target
    if target == TicketStatus.cloture and ticket.closed_at is None:
        ticket.closed_at = now
    await db.flush()

    await history_service.log_action(
        db,
        ticket_id=ticket.id,
        actor_id=current_user.user.id,
        action="status_changed",
        field_changed="status",
        old_value=current.value,
        new_value=target.value,
    )

    if target == TicketStatus.cloture:
        await _on_closed(db, ticket, clock)
    elif target == TicketStatus.en_attente:
        await notification_service.notify(
            db,
            user_id=ticket.created_by_id,
            type="ticket_pending_validation",
            title=f"Ticket {ticket.code} awaiting your input",
            message=f"{current_user.user.full_name} moved the ticket to en_attente.",
            link_url=f"/tickets/{ticket.id}",
            metadata={"ticket_id": str(ticket.id)},
        )
    elif current == TicketStatus.resolu:
        await notification_service.notify(
            db,
            user_id=ticket.responsible_id,
            type="ticket_invalidated",
            title=f"Resolution of {ticket.code} invalidated",
            message=f"The ticket was moved back to {target.value}.",
            link_url=f"/tickets/{ticket.id}",
            metadata={"ticket_id": str(ticket.id)},
        )

    logger.info("Ticket %s: %s -> %s", ticket.code, current.value, target.value)
    return ticket


async def validate_ticket(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    clock: Clock,
) -> Ticket:
    """Validate a resolved ticket: record the validator, close it and
    validate its time entries."""
    if not scope_service.has_permission(current_user.user, scope_service.TICKETS_VALIDATE):
        raise ForbiddenError("You are not allowed to validate tickets")

    ticket = await lock_ticket(db, ticket_id)
    if ticket.status != TicketStatus.resolu:
        raise InvalidTransitionError(
            f"Only resolved tickets can be validated (current status: {ticket.status.value})"
        )

    now = clock.now()
    ticket.status = TicketStatus.cloture
    ticket.validated_by_id = current_user.user.id
    ticket.validated_at = now
    if ticket.closed_at is None:
        ticket.closed_at = now

    await db.execute(
        update(TimeEntry)
        .where(TimeEntry.ticket_id == ticket.id, TimeEntry.validated == False)
        .values(validated=True, validated_by_id=current_user.user.id, validated_at=now, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()

    await history_service.log_action(
        db,
        ticket_id=ticket.id,
        actor_id=current_user.user.id,
        action="validated",
        field_changed="status",
        old_value=TicketStatus.resolu.value,
        new_value=TicketStatus.cloture.value,
    )
    await _on_closed(db, ticket, clock)
    await notification_service.notify(
        db,
        user_id=ticket.created_by_id,
        type="ticket_validated",
        title=f"Ticket {ticket.code} validated",
        message=f"{current_user.user.full_name} validated and closed the ticket.",
        link_url=f"/tickets/{ticket.id}",
        metadata={"ticket_id": str(ticket.id)},
    )

    logger.info("Ticket %s validated by %s", ticket.code, current_user.user.username)
    return ticket


async def assign_ticket(
    db: AsyncSession,
    current_user: CurrentUser,
    ticket_id: uuid.UUID,
    data: TicketAssign,
    clock: Clock,
) -> Ticket:
    """Replace the assignee set and optionally set the estimate.

    An estimate newly set on an ``ouvert`` ticket moves it to ``en_cours``.
    """
    ticket = await lock_ticket(db, ticket_id)
    if ticket.is_closed:
        raise InvalidTransitionError("Closed tickets cannot be reassigned")

    previous_assignees = set(ticket.assignee_ids)
    previous_lead = ticket.assigned_to_id
    previous_estimate = ticket.estimated_time

    await _set_assignees(db, current_user, ticket, data.user_ids, data.lead_id)

    estimate_changed = data.estimated_time is not None and data.estimated_time != previous_estimate
    if estimate_changed:
        ticket.estimated_time = data.estimated_time
    auto_advanced = (
        ticket.status == TicketStatus.ouvert
        and previous_estimate is None
        and data.estimated_time is not None
    )
    if auto_advanced:
        ticket.status = TicketStatus.en_cours
    await db.flush()

    await history_service.log_action(
        db,
        ticket_id=ticket.id,
        actor_id=current_user.user.id,
        action="assigned",
        field_changed="assigned_to_id",
        old_value=str(previous_lead) if previous_lead else None,
        new_value=str(ticket.assigned_to_id),
        metadata={"assignee_ids": [str(u) for u in ticket.assignee_ids]},
    )
    if estimate_changed:
        await history_service.log_action(
            db,
            ticket_id=ticket.id,
            actor_id=current_user.user.id,
            action="estimated_time_changed",
            field_changed="estimated_time",
            old_value=str(previous_estimate) if previous_estimate is not None else None,
            new_value=str(ticket.estimated_time),
        )
        await delay_service.detect_delay(db, ticket, clock)
    if auto_advanced:
        await history_service.log_action(
            db,
            ticket_id=ticket.id,
            actor_id=current_user.user.id,
            action="status_changed",
            field_changed="status",
            old_value=TicketStatus.ouvert.value,
            new_value=TicketStatus.en_cours.value,
            metadata={"reason": "estimate_set"},
        )

    for user_id in set(ticket.assignee_ids) - previous_assignees:
        if user_id == current_user.user.id:
            continue
        await notification_service.notify(
            db,
            user_id=user_id,
            type="ticket_assigned",
            title=f"Ticket {ticket.code} assigned to you",
            message=ticket.title,
            link_url=f"/tickets/{ticket.id}",
            metadata={"ticket_id": str(ticket.id)},
        )
    return ticket
