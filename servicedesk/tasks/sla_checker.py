import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from servicedesk.clock import Clock, system_clock
from servicedesk.config import settings
from servicedesk.database import async_session
from servicedesk.models.base import SlaStatus
from servicedesk.models.ticket import Ticket
from servicedesk.services import delay_service, sla_service

logger = logging.getLogger(__name__)


async def run_sla_sweep(
    db: AsyncSession,
    clock: Clock,
    batch_size: int | None = None,
) -> dict[str, int]:
    """Re-evaluate every ticket's SLA verdict and delay record.

    Tickets are walked in id order and each batch commits on its own, so an
    interrupted sweep loses at most one batch and the next run redoes it. A
    failing batch is rolled back, logged and skipped.
    """
    batch_size = batch_size or settings.sla_sweep_batch_size
    totals = {"processed": 0, "violated": 0, "at_risk": 0, "delays_synced": 0}
    last_id = None

    while True:
        query = select(Ticket.id).order_by(Ticket.id).limit(batch_size)
        if last_id is not None:
            query = query.where(Ticket.id > last_id)
        ticket_ids = list((await db.execute(query)).scalars().all())
        if not ticket_ids:
            break

        try:
            result = await db.execute(
                select(Ticket)
                .where(Ticket.id.in_(ticket_ids))
                .order_by(Ticket.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            for ticket in result.scalars().all():
                row = await sla_service.refresh_ticket_sla(db, ticket, clock)
                if row is None:
                    continue
                if row.status == SlaStatus.violated:
                    totals["violated"] += 1
                elif row.status == SlaStatus.at_risk:
                    totals["at_risk"] += 1
            totals["delays_synced"] += await delay_service.sync_delays(db, clock, ticket_ids=ticket_ids)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("SLA sweep batch starting after %s failed", last_id)

        totals["processed"] += len(ticket_ids)
        last_id = ticket_ids[-1]

    logger.info(
        "SLA sweep complete: %d tickets, %d violated, %d at risk, %d delayed",
        totals["processed"],
        totals["violated"],
        totals["at_risk"],
        totals["delays_synced"],
    )
    return totals


async def check_sla_breaches(
    session_factory: async_sessionmaker[AsyncSession] = async_session,
    clock: Clock = system_clock,
):
    """Runs the sweep every ``sla_check_interval_seconds`` until cancelled."""
    while True:
        try:
            async with session_factory() as db:
                await run_sla_sweep(db, clock)
        except Exception:
            logger.exception("SLA check failed")
        await asyncio.sleep(settings.sla_check_interval_seconds)
