import math
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser, get_current_user
from servicedesk.clock import Clock, get_clock
from servicedesk.database import get_db
from servicedesk.models.base import TicketCategory, TicketPriority
from servicedesk.schemas.common import PaginatedResponse
from servicedesk.schemas.delay import DelayResponse
from servicedesk.schemas.ticket import (
    TicketAssign,
    TicketCreate,
    TicketHistoryResponse,
    TicketListResponse,
    TicketResponse,
    TicketStatusChange,
    TimeComparisonResponse,
)
from servicedesk.services import delay_service, ticket_service, time_entry_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Ticket CRUD
# ---------------------------------------------------------------------------


@router.post("/", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    data: TicketCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Create a new ticket."""
    ticket = await ticket_service.create_ticket(db, current_user, data, clock)
    await db.commit()
    return TicketResponse.model_validate(ticket)


@router.get("/", response_model=PaginatedResponse[TicketListResponse])
async def list_tickets(
    status_filter: str | None = Query(None, alias="status"),
    category: TicketCategory | None = Query(None),
    priority: TicketPriority | None = Query(None),
    assigned_to_id: uuid.UUID | None = Query(None),
    created_by_id: uuid.UUID | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List tickets with filtering and pagination. ``status`` accepts a comma-separated list."""
    filters = {
        "status": status_filter,
        "category": category,
        "priority": priority,
        "assigned_to_id": assigned_to_id,
        "created_by_id": created_by_id,
    }
    tickets, total = await ticket_service.list_tickets(db, filters=filters, page=page, page_size=page_size)
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=[TicketListResponse.model_validate(t) for t in tickets],
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id)
    return TicketResponse.model_validate(ticket)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/{ticket_id}/status", response_model=TicketResponse)
async def change_status(
    ticket_id: uuid.UUID,
    data: TicketStatusChange,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Move a ticket to a new status."""
    ticket = await ticket_service.change_status(
        db, current_user, ticket_id, data.status, clock, expect_change=data.expect_change
    )
    await db.commit()
    return TicketResponse.model_validate(ticket)


@router.post("/{ticket_id}/validate", response_model=TicketResponse)
async def validate_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Validate a resolved ticket, closing it."""
    ticket = await ticket_service.validate_ticket(db, current_user, ticket_id, clock)
    await db.commit()
    return TicketResponse.model_validate(ticket)


@router.post("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: uuid.UUID,
    data: TicketAssign,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Replace the ticket's assignees and optionally set its estimate."""
    ticket = await ticket_service.assign_ticket(db, current_user, ticket_id, data, clock)
    await db.commit()
    return TicketResponse.model_validate(ticket)


@router.get("/{ticket_id}/history", response_model=list[TicketHistoryResponse])
async def get_history(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    entries = await ticket_service.get_history(db, ticket_id)
    return [TicketHistoryResponse.model_validate(e) for e in entries]


# ---------------------------------------------------------------------------
# Time and delay views
# ---------------------------------------------------------------------------


@router.get("/{ticket_id}/time-comparison", response_model=TimeComparisonResponse)
async def get_time_comparison(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Estimated against actual time."""
    return await time_entry_service.get_time_comparison(db, ticket_id)


@router.get("/{ticket_id}/delay", response_model=DelayResponse)
async def get_ticket_delay(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """The ticket's most recent delay."""
    await ticket_service.get_ticket(db, ticket_id)
    return await delay_service.get_delay_by_ticket(db, ticket_id)
