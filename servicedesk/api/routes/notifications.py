import math
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.dependencies import CurrentUser, get_current_user
from servicedesk.database import get_db
from servicedesk.schemas.common import PaginatedResponse
from servicedesk.schemas.notification import NotificationResponse
from servicedesk.services import notification_service

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List the current user's notifications, newest first."""
    items, total = await notification_service.list_notifications(
        db, current_user.user.id, unread_only=unread_only, page=page, page_size=page_size
    )
    return PaginatedResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    notification = await notification_service.mark_read(db, current_user.user.id, notification_id)
    await db.commit()
    return NotificationResponse.model_validate(notification)
