from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser, get_current_user
from servicedesk.clock import Clock, get_clock
from servicedesk.database import get_db
from servicedesk.schemas.dashboard import DelayRanking
from servicedesk.schemas.sla import ComplianceReport
from servicedesk.services import compliance_service

router = APIRouter()


@router.get("/compliance", response_model=ComplianceReport)
async def get_compliance(
    period: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """SLA compliance and delay histogram over tickets created in the window."""
    return await compliance_service.get_compliance_report(
        db, clock, period=period, date_from=date_from, date_to=date_to
    )


@router.get("/delay-rankings", response_model=list[DelayRanking])
async def get_delay_rankings(
    limit: int = Query(10, ge=1, le=100),
    period: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Users ranked by accumulated delay."""
    return await compliance_service.get_delay_rankings(db, clock, limit=limit, period=period)
