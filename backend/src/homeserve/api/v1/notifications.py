"""Notifications API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from homeserve.api.dependencies import get_database
from homeserve.auth.middleware import require_auth
from homeserve.auth.models import UserAccount
from homeserve.notifications.models import NotificationType
from homeserve.notifications.service import NotificationService
from homeserve.storage.db import Database

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: NotificationType
    href: str | None = None
    read: bool
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user: UserAccount = Depends(require_auth),
    database: Database = Depends(get_database),
):
    """List current user's notifications, newest first."""
    return NotificationService(database).list_for_user(user.id, unread_only=unread_only, limit=limit)


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    user: UserAccount = Depends(require_auth),
    database: Database = Depends(get_database),
):
    """Mark a notification as read."""
    if not NotificationService(database).mark_read(user.id, notification_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return {"success": True}
