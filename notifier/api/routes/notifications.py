"""API endpoints for reading and managing a user's in-app notifications."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.api.deps import get_database
from notifier.notify.service import NotificationNotFoundError, NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    """Response model for a notification."""
    id: int
    user_id: int
    type: str
    title: str
    message: str
    promotion_id: Optional[int]
    store_id: Optional[int]
    product_id: Optional[int]
    read: bool
    read_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    user_id: int
    unread: int


class MarkAllReadResponse(BaseModel):
    user_id: int
    updated: int


@router.get("/users/{user_id}", response_model=List[NotificationResponse])
async def list_notifications(
    user_id: int,
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=200),
    read: Optional[bool] = None,
    db: AsyncSession = Depends(get_database),
):
    """List a user's notifications, newest first."""
    service = NotificationService(db)
    return await service.get_user_notifications(user_id, skip=skip, take=take, read=read)


@router.get("/users/{user_id}/unread-count", response_model=UnreadCountResponse)
async def unread_count(user_id: int, db: AsyncSession = Depends(get_database)):
    service = NotificationService(db)
    return UnreadCountResponse(user_id=user_id, unread=await service.get_unread_count(user_id))


@router.patch("/users/{user_id}/mark-all-read", response_model=MarkAllReadResponse)
async def mark_all_read(user_id: int, db: AsyncSession = Depends(get_database)):
    service = NotificationService(db)
    updated = await service.mark_all_as_read(user_id)
    await db.commit()
    return MarkAllReadResponse(user_id=user_id, updated=updated)


@router.patch("/users/{user_id}/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    user_id: int,
    notification_id: int,
    db: AsyncSession = Depends(get_database),
):
    """Mark one notification as read."""
    service = NotificationService(db)
    try:
        notification = await service.mark_as_read(notification_id, user_id)
    except NotificationNotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return notification


@router.delete("/users/{user_id}/{notification_id}")
async def delete_notification(
    user_id: int,
    notification_id: int,
    db: AsyncSession = Depends(get_database),
):
    service = NotificationService(db)
    try:
        await service.delete_notification(notification_id, user_id)
    except NotificationNotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    logger.info(f"Deleted notification {notification_id} for user {user_id}")
    return {"message": "Notification deleted", "id": notification_id}
