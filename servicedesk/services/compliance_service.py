"""Read-side SLA and delay rollups.

Nothing here writes. Cached ticket SLA rows are re-evaluated in memory
against the clock and tickets not yet attached are resolved against the
catalog, so two calls at the same instant return the same report.
"""

import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.clock import Clock
from servicedesk.exceptions import InvalidInputError
from servicedesk.models.base import DelayStatus, SlaStatus, TicketCategory
from servicedesk.models.delay import Delay
from servicedesk.models.sla import TicketSla
from servicedesk.models.ticket import Ticket
from servicedesk.models.user import User
from servicedesk.services import sla_service

PERIODS = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "quarter": timedelta(days=91),
    "year": timedelta(days=365),
}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_window(
    now: datetime,
    period: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> tuple[datetime | None, datetime]:
    """Turn a named period or explicit bounds into (start, end). No bounds means all time."""
    date_from = _as_utc(date_from)
    date_to = _as_utc(date_to)
    end = date_to or now
    if date_from is not None:
        start = date_from
    elif period is not None:
        if period not in PERIODS:
            raise InvalidInputError(
                f"Unknown period '{period}'. Expected one of: {', '.join(PERIODS)}",
                code="invalid_period",
            )
        start = end - PERIODS[period]
    else:
        start = None
    if start is not None and start > end:
        raise InvalidInputError("date_from must be before date_to", code="invalid_period")
    return start, end


def _rate(compliant: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(compliant / total * 100, 2)


async def _evaluated_rows(
    db: AsyncSession,
    now: datetime,
    start: datetime | None,
    end: datetime,
    sla_id: uuid.UUID | None = None,
) -> list[tuple[Ticket, uuid.UUID, int, sla_service.SlaEvaluation]]:
    """Tickets created in the window with their SLA verdict at ``now``.

    Tickets with no cached row yet are matched against the active catalog
    in memory, the way their next evaluation would attach them. Tickets no
    SLA applies to are left out.
    """
    query = (
        select(Ticket, TicketSla)
        .outerjoin(TicketSla, TicketSla.ticket_id == Ticket.id)
        .where(Ticket.created_at <= end)
        .order_by(Ticket.created_at)
    )
    if start is not None:
        query = query.where(Ticket.created_at >= start)

    result = await db.execute(query)
    catalog = await sla_service.list_definitions(db, active_only=True)

    rows = []
    for ticket, ticket_sla in result.all():
        if ticket_sla is not None:
            governing_id = ticket_sla.sla_id
            target_minutes = ticket_sla.target_minutes
            previous_status = ticket_sla.status
            previous_violated_at = ticket_sla.violated_at
        else:
            definition = sla_service.resolve_definition(catalog, ticket.category, ticket.priority)
            if definition is None:
                continue
            governing_id = definition.id
            target_minutes = definition.target_minutes
            previous_status = previous_violated_at = None
        if sla_id is not None and governing_id != sla_id:
            continue

        evaluation = sla_service.evaluate(
            ticket.created_at,
            ticket.closed_at,
            target_minutes,
            now,
            previous_status=previous_status,
            previous_violated_at=previous_violated_at,
        )
        rows.append((ticket, governing_id, target_minutes, evaluation))
    return rows


def _breakdown(counts: dict[str, list[int]]) -> list[dict]:
    return [
        {
            "key": key,
            "total_tickets": total,
            "compliant": total - violations,
            "violations": violations,
            "compliance_rate": _rate(total - violations, total),
        }
        for key, (total, violations) in sorted(counts.items())
    ]


async def _delay_stats(db: AsyncSession, start: datetime | None, end: datetime) -> dict[str, int]:
    query = select(Delay.status, func.count()).where(Delay.detected_at <= end).group_by(Delay.status)
    if start is not None:
        query = query.where(Delay.detected_at >= start)
    result = await db.execute(query)

    stats = {s.value: 0 for s in DelayStatus}
    for status, count in result.all():
        stats[status.value] = count
    stats["total"] = sum(stats.values())
    return stats


async def get_compliance_report(
    db: AsyncSession,
    clock: Clock,
    period: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> dict:
    """Compliance over tickets created in the window.

    A ticket is compliant unless its verdict is ``violated``; at-risk tickets
    are compliant and also counted separately.
    """
    now = clock.now()
    start, end = resolve_window(now, period, date_from, date_to)
    rows = await _evaluated_rows(db, now, start, end)

    by_category: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    by_priority: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    violations = 0
    at_risk = 0
    for ticket, _, _, evaluation in rows:
        violated = evaluation.status == SlaStatus.violated
        violations += violated
        at_risk += evaluation.status == SlaStatus.at_risk
        for bucket, key in ((by_category, ticket.category.value), (by_priority, ticket.priority.value)):
            bucket[key][0] += 1
            bucket[key][1] += violated

    total = len(rows)
    return {
        "period": period,
        "date_from": start,
        "date_to": end,
        "total_tickets": total,
        "compliant": total - violations,
        "at_risk": at_risk,
        "violations": violations,
        "compliance_rate": _rate(total - violations, total),
        "by_category": _breakdown(by_category),
        "by_priority": _breakdown(by_priority),
        "delay_stats": await _delay_stats(db, start, end),
        "generated_at": now,
    }


async def get_sla_compliance(db: AsyncSession, sla_id: uuid.UUID, clock: Clock) -> dict:
    """Compliance of every ticket governed by one SLA definition."""
    definition = await sla_service.get_definition(db, sla_id)
    now = clock.now()
    rows = await _evaluated_rows(db, now, None, now, sla_id=definition.id)

    violations = sum(1 for *_, e in rows if e.status == SlaStatus.violated)
    at_risk = sum(1 for *_, e in rows if e.status == SlaStatus.at_risk)
    total = len(rows)
    return {
        "sla_id": definition.id,
        "name": definition.name,
        "total_tickets": total,
        "compliant": total - violations,
        "at_risk": at_risk,
        "violations": violations,
        "compliance_rate": _rate(total - violations, total),
    }


async def list_violations(
    db: AsyncSession,
    clock: Clock,
    period: str = "month",
    category: TicketCategory | None = None,
) -> list[dict]:
    """Violations whose deadline fell inside the period, most recent first."""
    now = clock.now()
    start, _ = resolve_window(now, period)
    rows = await _evaluated_rows(db, now, None, now)

    definitions = {d.id: d for d in await sla_service.list_definitions(db)}
    violations = []
    for ticket, governing_id, target_minutes, evaluation in rows:
        if evaluation.status != SlaStatus.violated:
            continue
        if evaluation.violated_at < start:
            continue
        if category is not None and ticket.category != category:
            continue
        definition = definitions.get(governing_id)
        violations.append({
            "ticket_id": ticket.id,
            "ticket_code": ticket.code,
            "title": ticket.title,
            "category": ticket.category,
            "priority": ticket.priority,
            "ticket_status": ticket.status.value,
            "sla_id": governing_id,
            "sla_name": definition.name if definition else "",
            "target_time": evaluation.target_time,
            "violated_at": evaluation.violated_at,
            "overdue_minutes": evaluation.elapsed_time - target_minutes,
        })
    violations.sort(key=lambda v: v["violated_at"], reverse=True)
    return violations


async def get_delay_rankings(
    db: AsyncSession,
    clock: Clock,
    limit: int = 10,
    period: str | None = None,
) -> list[dict]:
    """Users ranked by total delay minutes, then by number of delays."""
    start, end = resolve_window(clock.now(), period)
    total_delay = func.sum(Delay.delay_time)
    delay_count = func.count(Delay.id)
    query = (
        select(
            User.id,
            User.username,
            User.full_name,
            delay_count,
            total_delay,
            func.avg(Delay.delay_percentage),
        )
        .join(User, User.id == Delay.user_id)
        .where(Delay.detected_at <= end)
        .group_by(User.id, User.username, User.full_name)
        .order_by(total_delay.desc(), delay_count.desc(), User.username)
        .limit(limit)
    )
    if start is not None:
        query = query.where(Delay.detected_at >= start)

    result = await db.execute(query)
    return [
        {
            "user_id": user_id,
            "username": username,
            "full_name": full_name,
            "delay_count": count,
            "total_delay_time": int(total or 0),
            "average_percentage": round(float(avg or 0), 2),
        }
        for user_id, username, full_name, count, total, avg in result.all()
    ]
