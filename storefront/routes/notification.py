# storefront/routes/notification.py
from fastapi import APIRouter, Depends, HTTPException, status
import asyncpg
from typing import List
from storefront.core.database import get_db_connection
from storefront.core.security import get_current_buyer
from storefront.core.utils import fetch_notifications
from storefront.models.notification import NotificationResponse
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/", response_model=List[NotificationResponse])
async def list_notifications(
    skip: int = 0,
    limit: int = 100,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        return await fetch_notifications(conn, buyer_id, skip, limit)
    except Exception as e:
        logger.error(f"Error fetching notifications for buyer {buyer_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch notifications",
        )

@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    conn: asyncpg.Connection = Depends(get_db_connection),
    buyer_id: str = Depends(get_current_buyer),
):
    try:
        row = await conn.fetchrow(
            """
            UPDATE notifications SET is_read = TRUE
            WHERE id = $1 AND buyer_id = $2
            RETURNING *
            """,
            notification_id,
            buyer_id,
        )
        if row is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Notification not found",
            )
        return dict(row)
    except Exception as e:
        logger.error(f"Error marking notification {notification_id} as read: {e}")
        if isinstance(e, HTTPException):
            raise
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update notification",
        )
