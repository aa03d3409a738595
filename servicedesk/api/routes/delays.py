import math
import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser, get_current_user
from servicedesk.clock import Clock, get_clock
from servicedesk.database import get_db
from servicedesk.models.base import DelayStatus, JustificationStatus
from servicedesk.schemas.common import PaginatedResponse
from servicedesk.schemas.delay import (
    DelayReject,
    DelayResponse,
    JustificationCreate,
    JustificationResponse,
    JustificationUpdate,
    JustificationValidate,
)
from servicedesk.schemas.sla import DelayStats
from servicedesk.services import delay_service, scope_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Justifications by id, registered before the {delay_id} routes
# ---------------------------------------------------------------------------


@router.get("/justifications", response_model=PaginatedResponse[JustificationResponse])
async def list_justifications(
    status_filter: JustificationStatus | None = Query(None, alias="status"),
    user_id: uuid.UUID | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List justifications. Users who cannot validate delays only see their own."""
    if not scope_service.has_permission(current_user.user, scope_service.DELAYS_VALIDATE):
        user_id = current_user.user.id
    items, total = await delay_service.list_justifications(
        db, status=status_filter, user_id=user_id, page=page, page_size=page_size
    )
    return PaginatedResponse(
        items=[JustificationResponse.model_validate(j) for j in items],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


@router.patch("/justifications/{justification_id}", response_model=JustificationResponse)
async def update_justification(
    justification_id: uuid.UUID,
    data: JustificationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Edit a pending justification. Author only."""
    justification = await delay_service.update_justification(
        db, current_user, justification_id, data.justification
    )
    await db.commit()
    return JustificationResponse.model_validate(justification)


@router.post("/justifications/{justification_id}/validate", response_model=JustificationResponse)
async def validate_justification(
    justification_id: uuid.UUID,
    data: JustificationValidate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Approve or reject a pending justification."""
    justification = await delay_service.validate_justification(
        db, current_user, justification_id, data.validated, data.comment, clock
    )
    await db.commit()
    return JustificationResponse.model_validate(justification)


# ---------------------------------------------------------------------------
# Delays
# ---------------------------------------------------------------------------


@router.get("/", response_model=PaginatedResponse[DelayResponse])
async def list_delays(
    status_filter: DelayStatus | None = Query(None, alias="status"),
    user_id: uuid.UUID | None = Query(None),
    ticket_id: uuid.UUID | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    delays, total = await delay_service.list_delays(
        db,
        current_user,
        status=status_filter,
        user_id=user_id,
        ticket_id=ticket_id,
        page=page,
        page_size=page_size,
    )
    return PaginatedResponse(
        items=[DelayResponse.model_validate(d) for d in delays],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/stats", response_model=DelayStats)
async def get_status_stats(
    user_id: uuid.UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Delay count per status."""
    if not scope_service.has_permission(current_user.user, scope_service.DELAYS_VIEW_ALL):
        user_id = current_user.user.id
    return await delay_service.get_status_stats(db, user_id=user_id)


@router.get("/{delay_id}", response_model=DelayResponse)
async def get_delay(
    delay_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await delay_service.get_delay(db, delay_id)


@router.post(
    "/{delay_id}/justifications",
    response_model=JustificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_justification(
    delay_id: uuid.UUID,
    data: JustificationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Submit, or resubmit after a rejection, the justification for a delay."""
    justification = await delay_service.create_justification(db, current_user, delay_id, data.justification)
    await db.commit()
    return JustificationResponse.model_validate(justification)


@router.get("/{delay_id}/justification", response_model=JustificationResponse)
async def get_justification(
    delay_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await delay_service.get_justification_by_delay(db, delay_id)


@router.delete("/{delay_id}/justification", status_code=status.HTTP_204_NO_CONTENT)
async def delete_justification(
    delay_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Withdraw a pending justification. Author only."""
    await delay_service.delete_justification(db, current_user, delay_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{delay_id}/reject", response_model=JustificationResponse)
async def reject_delay_justification(
    delay_id: uuid.UUID,
    data: DelayReject,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Reject the pending justification of a delay."""
    justification = await delay_service.reject_justification(db, current_user, delay_id, data.comment, clock)
    await db.commit()
    return JustificationResponse.model_validate(justification)
