import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.exceptions import NotFoundError
from servicedesk.models.notification import Notification

logger = logging.getLogger(__name__)


async def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: str,
    title: str,
    message: str,
    link_url: str = "",
    metadata: dict[str, Any] | None = None,
) -> None:
    """Record a notification for a user. Best-effort: failures are logged, never raised.

    The insert runs inside a SAVEPOINT so a failing notification cannot
    poison the caller's transaction.
    """
    try:
        async with db.begin_nested():
            notification = Notification(
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                link_url=link_url,
            )
            if metadata is not None:
                notification.metadata_ = metadata
            db.add(notification)
    except SQLAlchemyError:
        logger.exception("Failed to record %s notification for user %s", type, user_id)


async def list_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    unread_only: bool = False,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Notification], int]:
    query = select(Notification).where(Notification.user_id == user_id)
    count_query = select(func.count()).select_from(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)
        count_query = count_query.where(Notification.is_read == False)

    query = query.order_by(Notification.created_at.desc()).offset((page - 1) * page_size).limit(page_size)

    total = (await db.execute(count_query)).scalar() or 0
    items = list((await db.execute(query)).scalars().all())
    return items, total


async def mark_read(db: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFoundError("Notification not found")
    notification.is_read = True
    await db.flush()
    return notification
