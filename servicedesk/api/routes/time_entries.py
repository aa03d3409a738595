import math
import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser, get_current_user
from servicedesk.clock import Clock, get_clock
from servicedesk.database import get_db
from servicedesk.schemas.common import PaginatedResponse
from servicedesk.schemas.time_entry import (
    TimeEntryCreate,
    TimeEntryResponse,
    TimeEntryUpdate,
    TimeEntryValidate,
)
from servicedesk.services import time_entry_service

router = APIRouter()


@router.post("/", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_time_entry(
    data: TimeEntryCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Log time on a ticket."""
    entry = await time_entry_service.create_time_entry(db, current_user, data, clock)
    await db.commit()
    return TimeEntryResponse.model_validate(entry)


@router.get("/", response_model=PaginatedResponse[TimeEntryResponse])
async def list_time_entries(
    ticket_id: uuid.UUID | None = Query(None),
    user_id: uuid.UUID | None = Query(None),
    validated: bool | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    entries, total = await time_entry_service.list_time_entries(
        db, ticket_id=ticket_id, user_id=user_id, validated=validated, page=page, page_size=page_size
    )
    return PaginatedResponse(
        items=[TimeEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{entry_id}", response_model=TimeEntryResponse)
async def get_time_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await time_entry_service.get_time_entry(db, entry_id)


@router.patch("/{entry_id}", response_model=TimeEntryResponse)
async def update_time_entry(
    entry_id: uuid.UUID,
    data: TimeEntryUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    entry = await time_entry_service.update_time_entry(db, current_user, entry_id, data, clock)
    await db.commit()
    return TimeEntryResponse.model_validate(entry)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_time_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    await time_entry_service.delete_time_entry(db, current_user, entry_id, clock)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{entry_id}/validate", response_model=TimeEntryResponse)
async def validate_time_entry(
    entry_id: uuid.UUID,
    data: TimeEntryValidate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Mark a time entry validated or unvalidated."""
    entry = await time_entry_service.validate_time_entry(db, current_user, entry_id, data.validated, clock)
    await db.commit()
    return TimeEntryResponse.model_validate(entry)
