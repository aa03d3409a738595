import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser
from servicedesk.clock import Clock
from servicedesk.config import settings
from servicedesk.exceptions import ConflictError, NotFoundError
from servicedesk.models.base import SlaStatus, TicketCategory, TicketPriority
from servicedesk.models.sla import SlaDefinition, TicketSla
from servicedesk.models.ticket import Ticket
from servicedesk.schemas.sla import SlaDefinitionCreate, SlaDefinitionUpdate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure resolution and evaluation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SlaEvaluation:
    target_time: datetime
    elapsed_time: int
    remaining_time: int
    status: SlaStatus
    violated_at: datetime | None


def resolve_definition(
    definitions: Iterable[SlaDefinition],
    category: TicketCategory,
    priority: TicketPriority,
) -> SlaDefinition | None:
    """Pick the SLA that applies to a (category, priority) pair.

    Only active definitions of the category are considered. A definition
    naming the priority beats a category-wide one (priority is None).
    Returns None when nothing matches.
    """
    category_wide = None
    for definition in definitions:
        if not definition.is_active or definition.ticket_category != category:
            continue
        if definition.priority == priority:
            return definition
        if definition.priority is None and category_wide is None:
            category_wide = definition
    return category_wide


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def evaluate(
    created_at: datetime,
    closed_at: datetime | None,
    target_minutes: int,
    now: datetime,
    risk_ratio: float | None = None,
    previous_status: SlaStatus | None = None,
    previous_violated_at: datetime | None = None,
) -> SlaEvaluation:
    """Compute the SLA verdict for a ticket at ``now``.

    The effective time is ``min(now, closed_at)`` so a closed ticket keeps
    the verdict it had when it closed. ``violated`` is strict
    (effective > target) and never regresses once recorded. ``at_risk``
    applies to open tickets whose remaining time is within ``risk_ratio``
    of the total target.
    """
    if risk_ratio is None:
        risk_ratio = settings.sla_risk_window_ratio

    target_time = created_at + timedelta(minutes=target_minutes)
    effective = now if closed_at is None else min(now, closed_at)
    remaining = target_time - effective

    if effective > target_time or previous_status == SlaStatus.violated:
        status = SlaStatus.violated
    elif closed_at is None and remaining <= timedelta(minutes=target_minutes * risk_ratio):
        status = SlaStatus.at_risk
    else:
        status = SlaStatus.on_time

    violated_at = previous_violated_at
    if status == SlaStatus.violated and violated_at is None:
        violated_at = target_time

    return SlaEvaluation(
        target_time=target_time,
        elapsed_time=_minutes(effective - created_at),
        remaining_time=_minutes(remaining),
        status=status,
        violated_at=violated_at,
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

async def _ensure_unique_active(
    db: AsyncSession,
    category: TicketCategory,
    priority: TicketPriority | None,
    exclude_id: uuid.UUID | None = None,
) -> None:
    query = select(SlaDefinition.id).where(
        SlaDefinition.is_active == True,
        SlaDefinition.ticket_category == category,
    )
    if priority is None:
        query = query.where(SlaDefinition.priority.is_(None))
    else:
        query = query.where(SlaDefinition.priority == priority)
    if exclude_id is not None:
        query = query.where(SlaDefinition.id != exclude_id)

    result = await db.execute(query.limit(1))
    if result.scalar_one_or_none() is not None:
        scope = priority.value if priority is not None else "all priorities"
        raise ConflictError(
            f"An active SLA already exists for {category.value} ({scope})",
            code="sla_conflict",
        )


async def create_definition(
    db: AsyncSession,
    current_user: CurrentUser,
    data: SlaDefinitionCreate,
) -> SlaDefinition:
    if data.is_active:
        await _ensure_unique_active(db, data.ticket_category, data.priority)

    definition = SlaDefinition(
        name=data.name,
        description=data.description,
        ticket_category=data.ticket_category,
        priority=data.priority,
        target_time=data.target_time,
        unit=data.unit,
        is_active=data.is_active,
        created_by_id=current_user.user.id,
    )
    db.add(definition)
    await db.flush()
    logger.info(
        "SLA %s created for %s/%s: %d %s",
        definition.name,
        definition.ticket_category.value,
        definition.priority.value if definition.priority else "*",
        definition.target_time,
        definition.unit.value,
    )
    return definition


async def get_definition(db: AsyncSession, sla_id: uuid.UUID) -> SlaDefinition:
    result = await db.execute(select(SlaDefinition).where(SlaDefinition.id == sla_id))
    definition = result.scalar_one_or_none()
    if definition is None:
        raise NotFoundError("SLA not found")
    return definition


async def list_definitions(
    db: AsyncSession,
    category: TicketCategory | None = None,
    active_only: bool = False,
) -> list[SlaDefinition]:
    query = select(SlaDefinition)
    if category is not None:
        query = query.where(SlaDefinition.ticket_category == category)
    if active_only:
        query = query.where(SlaDefinition.is_active == True)
    query = query.order_by(SlaDefinition.created_at.asc(), SlaDefinition.name.asc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def update_definition(
    db: AsyncSession,
    sla_id: uuid.UUID,
    data: SlaDefinitionUpdate,
) -> SlaDefinition:
    """Partial update. Existing ticket SLA rows keep the target they were given."""
    definition = await get_definition(db, sla_id)
    update_fields = data.model_dump(exclude_unset=True)

    category = update_fields.get("ticket_category", definition.ticket_category)
    priority = update_fields.get("priority", definition.priority)
    is_active = update_fields.get("is_active", definition.is_active)
    if is_active:
        await _ensure_unique_active(db, category, priority, exclude_id=definition.id)

    for field, value in update_fields.items():
        setattr(definition, field, value)

    await db.flush()
    return definition


async def delete_definition(db: AsyncSession, sla_id: uuid.UUID) -> None:
    """Delete an SLA, or only deactivate it while tickets still reference it."""
    definition = await get_definition(db, sla_id)
    in_use = await db.execute(select(exists().where(TicketSla.sla_id == definition.id)))
    if in_use.scalar():
        definition.is_active = False
        logger.info("SLA %s is referenced by tickets; deactivated instead of deleted", definition.id)
    else:
        await db.delete(definition)
    await db.flush()


# ---------------------------------------------------------------------------
# Per-ticket cache
# ---------------------------------------------------------------------------

def _store(row: TicketSla, evaluation: SlaEvaluation, now: datetime) -> None:
    row.target_time = evaluation.target_time
    row.elapsed_time = evaluation.elapsed_time
    row.remaining_time = evaluation.remaining_time
    row.status = evaluation.status
    row.violated_at = evaluation.violated_at
    row.evaluated_at = now


async def get_ticket_sla(db: AsyncSession, ticket_id: uuid.UUID) -> TicketSla | None:
    result = await db.execute(select(TicketSla).where(TicketSla.ticket_id == ticket_id))
    return result.scalar_one_or_none()


async def apply_sla(db: AsyncSession, ticket: Ticket, clock: Clock) -> TicketSla | None:
    """Attach the catalog's applicable SLA to a ticket. None when no SLA applies."""
    definitions = await list_definitions(db, category=ticket.category, active_only=True)
    definition = resolve_definition(definitions, ticket.category, ticket.priority)
    if definition is None:
        logger.debug("No SLA applies to ticket %s (%s/%s)", ticket.code, ticket.category.value, ticket.priority.value)
        return None

    now = clock.now()
    evaluation = evaluate(ticket.created_at, ticket.closed_at, definition.target_minutes, now)
    row = TicketSla(
        ticket_id=ticket.id,
        sla_id=definition.id,
        target_minutes=definition.target_minutes,
    )
    _store(row, evaluation, now)
    db.add(row)
    await db.flush()
    return row


async def refresh_ticket_sla(db: AsyncSession, ticket: Ticket, clock: Clock) -> TicketSla | None:
    """Re-evaluate and persist a ticket's cached verdict.

    A ticket with no cached row gets one from the current catalog.
    """
    row = await get_ticket_sla(db, ticket.id)
    if row is None:
        return await apply_sla(db, ticket, clock)

    now = clock.now()
    previous = row.status
    evaluation = evaluate(
        ticket.created_at,
        ticket.closed_at,
        row.target_minutes,
        now,
        previous_status=row.status,
        previous_violated_at=row.violated_at,
    )
    _store(row, evaluation, now)
    if previous != SlaStatus.violated and evaluation.status == SlaStatus.violated:
        logger.warning(
            "SLA violated for ticket %s (target: %s, elapsed: %d min)",
            ticket.code,
            evaluation.target_time.isoformat(),
            evaluation.elapsed_time,
        )
    await db.flush()
    return row


async def get_ticket_sla_status(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    clock: Clock,
) -> TicketSla | None:
    result = await db.execute(select(Ticket).where(Ticket.id == ticket_id))
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return await refresh_ticket_sla(db, ticket, clock)
