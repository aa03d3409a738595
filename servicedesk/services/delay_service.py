import logging
import uuid
from typing import NamedTuple

import nh3
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser
from servicedesk.clock import Clock
from servicedesk.config import settings
from servicedesk.exceptions import (
    AlreadyJustifiedError,
    AlreadyResolvedError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from servicedesk.models.base import DelayStatus, JustificationStatus
from servicedesk.models.delay import Delay, DelayJustification
from servicedesk.models.ticket import Ticket
from servicedesk.services import notification_service, scope_service

logger = logging.getLogger(__name__)

# Delays still open to detection updates; a justified delay is a closed record.
_OPEN_DELAY_STATUSES = (DelayStatus.unjustified, DelayStatus.pending, DelayStatus.rejected)


class DelayComputation(NamedTuple):
    delay_time: int
    delay_percentage: float


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def compute_delay(
    estimated_time: int | None,
    actual_time: int | None,
    cap: float | None = None,
) -> DelayComputation | None:
    """Overage of actual over estimated time, or None when there is none.

    The percentage is rounded to two decimals and capped. A zero estimate
    has no meaningful ratio and reports the cap.
    """
    if cap is None:
        cap = settings.delay_percentage_cap
    if estimated_time is None or actual_time is None or actual_time <= estimated_time:
        return None

    delay_time = actual_time - estimated_time
    if estimated_time == 0:
        return DelayComputation(delay_time, cap)
    percentage = round(delay_time / estimated_time * 100, 2)
    return DelayComputation(delay_time, min(percentage, cap))


async def _latest_delay(db: AsyncSession, ticket_id: uuid.UUID) -> Delay | None:
    result = await db.execute(
        select(Delay)
        .where(Delay.ticket_id == ticket_id)
        .order_by(Delay.detected_at.desc(), Delay.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def detect_delay(db: AsyncSession, ticket: Ticket, clock: Clock) -> Delay | None:
    """Create, update or clear the ticket's delay record from its current times.

    Callers hold the ticket row lock. The latest open delay is updated in
    place. A justified delay is never touched; further growth of the actual
    time past it opens a new delay. When the overage disappears, an
    unjustified delay is removed and any other delay is kept as history.
    """
    computed = compute_delay(ticket.estimated_time, ticket.actual_time)
    latest = await _latest_delay(db, ticket.id)

    if computed is None:
        if latest is not None and latest.status == DelayStatus.unjustified:
            logger.info("Overage cleared on ticket %s; removing unjustified delay %s", ticket.code, latest.id)
            await db.delete(latest)
            await db.flush()
        return None

    if latest is not None and latest.status in _OPEN_DELAY_STATUSES:
        latest.estimated_time = ticket.estimated_time
        latest.actual_time = ticket.actual_time
        latest.delay_time = computed.delay_time
        latest.delay_percentage = computed.delay_percentage
        if latest.status == DelayStatus.unjustified:
            latest.user_id = ticket.responsible_id
        await db.flush()
        return latest

    if latest is not None and ticket.actual_time <= latest.actual_time:
        return latest

    delay = Delay(
        ticket_id=ticket.id,
        user_id=ticket.responsible_id,
        estimated_time=ticket.estimated_time,
        actual_time=ticket.actual_time,
        delay_time=computed.delay_time,
        delay_percentage=computed.delay_percentage,
        status=DelayStatus.unjustified,
        detected_at=clock.now(),
    )
    db.add(delay)
    await db.flush()
    logger.info(
        "Delay detected on ticket %s: %d min over estimate (%.2f%%)",
        ticket.code,
        computed.delay_time,
        computed.delay_percentage,
    )

    await notification_service.notify(
        db,
        user_id=delay.user_id,
        type="delay_detected",
        title=f"Delay on ticket {ticket.code}",
        message=(
            f"Time spent ({ticket.actual_time} min) exceeds the estimate "
            f"({ticket.estimated_time} min) by {computed.delay_time} min. Please justify it."
        ),
        link_url=f"/delays/{delay.id}",
        metadata={"ticket_id": str(ticket.id), "delay_id": str(delay.id)},
    )
    return delay


async def sync_delays(
    db: AsyncSession,
    clock: Clock,
    ticket_ids: list[uuid.UUID] | None = None,
) -> int:
    """Re-run detection over tickets with an estimate or an unjustified delay.

    Returns the number of tickets that currently carry a delay.
    """
    has_unjustified = select(Delay.ticket_id).where(Delay.status == DelayStatus.unjustified)
    query = (
        select(Ticket)
        .where(or_(Ticket.estimated_time.isnot(None), Ticket.id.in_(has_unjustified)))
        .order_by(Ticket.id)
        .with_for_update()
    )
    if ticket_ids is not None:
        query = query.where(Ticket.id.in_(ticket_ids))

    result = await db.execute(query)
    delayed = 0
    for ticket in result.scalars().all():
        if await detect_delay(db, ticket, clock) is not None:
            delayed += 1
    return delayed


# ---------------------------------------------------------------------------
# Delay queries
# ---------------------------------------------------------------------------

async def get_delay(db: AsyncSession, delay_id: uuid.UUID) -> Delay:
    result = await db.execute(select(Delay).where(Delay.id == delay_id))
    delay = result.scalar_one_or_none()
    if delay is None:
        raise NotFoundError("Delay not found")
    return delay


async def _lock_delay(db: AsyncSession, delay_id: uuid.UUID) -> Delay:
    result = await db.execute(
        select(Delay)
        .where(Delay.id == delay_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    delay = result.scalar_one_or_none()
    if delay is None:
        raise NotFoundError("Delay not found")
    return delay


async def get_delay_by_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> Delay:
    """The ticket's most recent delay."""
    delay = await _latest_delay(db, ticket_id)
    if delay is None:
        raise NotFoundError("No delay recorded for this ticket")
    return delay


async def list_delays(
    db: AsyncSession,
    current_user: CurrentUser,
    status: DelayStatus | None = None,
    user_id: uuid.UUID | None = None,
    ticket_id: uuid.UUID | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Delay], int]:
    """List delays. Users without ``delays.view_all`` only see their own."""
    if not scope_service.has_permission(current_user.user, scope_service.DELAYS_VIEW_ALL):
        user_id = current_user.user.id

    conditions = []
    if status is not None:
        conditions.append(Delay.status == status)
    if user_id is not None:
        conditions.append(Delay.user_id == user_id)
    if ticket_id is not None:
        conditions.append(Delay.ticket_id == ticket_id)

    query = select(Delay).where(*conditions).order_by(Delay.detected_at.desc())
    count_query = select(func.count()).select_from(Delay).where(*conditions)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return list(result.scalars().all()), total


async def get_status_stats(db: AsyncSession, user_id: uuid.UUID | None = None) -> dict[str, int]:
    """Delay count per status, every status present, plus ``total``."""
    query = select(Delay.status, func.count()).group_by(Delay.status)
    if user_id is not None:
        query = query.where(Delay.user_id == user_id)
    result = await db.execute(query)

    stats = {s.value: 0 for s in DelayStatus}
    for status, count in result.all():
        stats[status.value] = count
    stats["total"] = sum(stats.values())
    return stats


# ---------------------------------------------------------------------------
# Justification workflow
# ---------------------------------------------------------------------------

def _clean_text(text: str) -> str:
    cleaned = nh3.clean(text).strip()
    if not cleaned:
        raise InvalidInputError("Justification text cannot be empty")
    return cleaned


async def get_justification(db: AsyncSession, justification_id: uuid.UUID) -> DelayJustification:
    result = await db.execute(
        select(DelayJustification).where(DelayJustification.id == justification_id)
    )
    justification = result.scalar_one_or_none()
    if justification is None:
        raise NotFoundError("Justification not found")
    return justification


async def _lock_justification(db: AsyncSession, justification_id: uuid.UUID) -> DelayJustification:
    """Reload a justification under a row lock. Callers lock its delay first."""
    result = await db.execute(
        select(DelayJustification)
        .where(DelayJustification.id == justification_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    justification = result.scalar_one_or_none()
    if justification is None:
        raise NotFoundError("Justification not found")
    return justification


async def get_justification_by_delay(db: AsyncSession, delay_id: uuid.UUID) -> DelayJustification:
    result = await db.execute(
        select(DelayJustification).where(DelayJustification.delay_id == delay_id)
    )
    justification = result.scalar_one_or_none()
    if justification is None:
        raise NotFoundError("No justification for this delay")
    return justification


async def list_justifications(
    db: AsyncSession,
    status: JustificationStatus | None = None,
    user_id: uuid.UUID | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[DelayJustification], int]:
    conditions = []
    if status is not None:
        conditions.append(DelayJustification.status == status)
    if user_id is not None:
        conditions.append(DelayJustification.user_id == user_id)

    query = select(DelayJustification).where(*conditions).order_by(DelayJustification.created_at.desc())
    count_query = select(func.count()).select_from(DelayJustification).where(*conditions)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return list(result.scalars().all()), total


async def create_justification(
    db: AsyncSession,
    current_user: CurrentUser,
    delay_id: uuid.UUID,
    text: str,
) -> DelayJustification:
    """Submit, or resubmit after rejection, the justification for a delay."""
    delay = await _lock_delay(db, delay_id)
    if delay.status == DelayStatus.justified:
        raise AlreadyJustifiedError("This delay has already been justified")
    if delay.user_id != current_user.user.id:
        raise ForbiddenError("Only the user responsible for the delay can justify it")

    cleaned = _clean_text(text)

    result = await db.execute(
        select(DelayJustification)
        .where(DelayJustification.delay_id == delay.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    justification = result.scalar_one_or_none()
    if justification is None:
        justification = DelayJustification(
            delay_id=delay.id,
            user_id=current_user.user.id,
            justification=cleaned,
            status=JustificationStatus.pending,
        )
        db.add(justification)
    else:
        justification.user_id = current_user.user.id
        justification.justification = cleaned
        justification.status = JustificationStatus.pending
        justification.validated_by_id = None
        justification.validated_at = None
        justification.validation_comment = ""

    delay.status = DelayStatus.pending
    await db.flush()

    for validator in await scope_service.list_delay_validators(db, delay):
        await notification_service.notify(
            db,
            user_id=validator.id,
            type="justification_submitted",
            title="Delay justification to review",
            message=f"{current_user.user.full_name} submitted a justification for a {delay.delay_time} min delay.",
            link_url=f"/delays/{delay.id}",
            metadata={"delay_id": str(delay.id), "justification_id": str(justification.id)},
        )
    return justification


async def update_justification(
    db: AsyncSession,
    current_user: CurrentUser,
    justification_id: uuid.UUID,
    text: str,
) -> DelayJustification:
    justification = await get_justification(db, justification_id)
    await _lock_delay(db, justification.delay_id)
    justification = await _lock_justification(db, justification.id)
    if justification.user_id != current_user.user.id:
        raise ForbiddenError("Only the author can edit this justification")
    if justification.status != JustificationStatus.pending:
        raise AlreadyResolvedError("Only pending justifications can be edited")

    justification.justification = _clean_text(text)
    await db.flush()
    return justification


async def delete_justification(
    db: AsyncSession,
    current_user: CurrentUser,
    delay_id: uuid.UUID,
) -> None:
    """Withdraw a pending justification; the delay becomes unjustified again."""
    delay = await _lock_delay(db, delay_id)
    justification = await get_justification_by_delay(db, delay.id)
    justification = await _lock_justification(db, justification.id)
    if justification.user_id != current_user.user.id:
        raise ForbiddenError("Only the author can delete this justification")
    if justification.status != JustificationStatus.pending:
        raise AlreadyResolvedError("Only pending justifications can be deleted")

    await db.delete(justification)
    delay.status = DelayStatus.unjustified
    await db.flush()


async def validate_justification(
    db: AsyncSession,
    current_user: CurrentUser,
    justification_id: uuid.UUID,
    validated: bool,
    comment: str,
    clock: Clock,
) -> DelayJustification:
    """Approve or reject a pending justification and settle its delay."""
    justification = await get_justification(db, justification_id)
    delay = await _lock_delay(db, justification.delay_id)
    justification = await _lock_justification(db, justification.id)
    if justification.status != JustificationStatus.pending:
        raise AlreadyResolvedError("This justification has already been processed")

    if not await scope_service.can_validate_delay(db, current_user.user, delay):
        raise ForbiddenError("You are not allowed to validate this delay")

    if validated:
        justification.status = JustificationStatus.validated
        delay.status = DelayStatus.justified
    else:
        justification.status = JustificationStatus.rejected
        delay.status = DelayStatus.rejected
    justification.validated_by_id = current_user.user.id
    justification.validated_at = clock.now()
    justification.validation_comment = nh3.clean(comment) if comment else ""
    await db.flush()

    logger.info(
        "Justification %s %s by %s",
        justification.id,
        justification.status.value,
        current_user.user.username,
    )

    outcome = "approved" if validated else "rejected"
    await notification_service.notify(
        db,
        user_id=delay.user_id,
        type=f"justification_{outcome}",
        title=f"Justification {outcome}",
        message=(
            f"Your justification was {outcome}."
            + (f" Comment: {justification.validation_comment}" if justification.validation_comment else "")
        ),
        link_url=f"/delays/{delay.id}",
        metadata={"delay_id": str(delay.id), "justification_id": str(justification.id)},
    )
    return justification


async def reject_justification(
    db: AsyncSession,
    current_user: CurrentUser,
    delay_id: uuid.UUID,
    comment: str,
    clock: Clock,
) -> DelayJustification:
    justification = await get_justification_by_delay(db, delay_id)
    return await validate_justification(
        db, current_user, justification.id, validated=False, comment=comment, clock=clock
    )
