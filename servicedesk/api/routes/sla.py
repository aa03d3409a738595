import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser, get_current_user, require_role
from servicedesk.clock import Clock, get_clock
from servicedesk.database import get_db
from servicedesk.models.base import TicketCategory, UserRole
from servicedesk.schemas.sla import (
    ComplianceReport,
    SlaComplianceResponse,
    SlaDefinitionCreate,
    SlaDefinitionResponse,
    SlaDefinitionUpdate,
    SlaViolationResponse,
    SweepResult,
    TicketSlaResponse,
)
from servicedesk.services import compliance_service, sla_service
from servicedesk.tasks.sla_checker import run_sla_sweep

router = APIRouter()


# ---------------------------------------------------------------------------
# Reports and ticket status, registered before the {sla_id} routes
# ---------------------------------------------------------------------------


@router.get("/tickets/{ticket_id}/status", response_model=TicketSlaResponse | None)
async def get_ticket_sla_status(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Current SLA verdict for a ticket, re-evaluated now. Null when no SLA applies."""
    row = await sla_service.get_ticket_sla_status(db, ticket_id, clock)
    await db.commit()
    return row


@router.get("/violations", response_model=list[SlaViolationResponse])
async def list_violations(
    period: str = Query("month"),
    category: TicketCategory | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    return await compliance_service.list_violations(db, clock, period=period, category=category)


@router.get("/compliance-report", response_model=ComplianceReport)
async def get_compliance_report(
    period: str | None = Query("month"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    return await compliance_service.get_compliance_report(db, clock, period=period)


@router.post("/recalculate", response_model=SweepResult)
async def recalculate(
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
    clock: Clock = Depends(get_clock),
    db: AsyncSession = Depends(get_db),
):
    """Run the SLA and delay sweep now. Admin only."""
    return await run_sla_sweep(db, clock)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[SlaDefinitionResponse])
async def list_definitions(
    category: TicketCategory | None = Query(None),
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await sla_service.list_definitions(db, category=category, active_only=active_only)


@router.post("/", response_model=SlaDefinitionResponse, status_code=status.HTTP_201_CREATED)
async def create_definition(
    data: SlaDefinitionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
):
    """Create an SLA definition. Admin only."""
    definition = await sla_service.create_definition(db, current_user, data)
    await db.commit()
    return definition


@router.get("/{sla_id}", response_model=SlaDefinitionResponse)
async def get_definition(
    sla_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await sla_service.get_definition(db, sla_id)


@router.patch("/{sla_id}", response_model=SlaDefinitionResponse)
async def update_definition(
    sla_id: uuid.UUID,
    data: SlaDefinitionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
):
    """Update an SLA definition. Admin only."""
    definition = await sla_service.update_definition(db, sla_id, data)
    await db.commit()
    return definition


@router.delete("/{sla_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_definition(
    sla_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.admin)),
):
    """Delete an SLA definition, or deactivate it while tickets use it. Admin only."""
    await sla_service.delete_definition(db, sla_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{sla_id}/compliance", response_model=SlaComplianceResponse)
async def get_sla_compliance(
    sla_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    return await compliance_service.get_sla_compliance(db, sla_id, clock)
