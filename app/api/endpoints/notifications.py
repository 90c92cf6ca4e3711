# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Notification polling endpoints.

Offline recipients never get a live push; they read their notifications
here on next login. The caller identity is passed as `user_id` by the
authenticating gateway in front of this service.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from app.api.dependencies import get_db
from app.services.notification.dispatcher import (
    DEFAULT_LIST_LIMIT,
    NotificationService,
)

router = APIRouter()
notification_service = NotificationService()


@router.get("")
def list_notifications(
    user_id: int = Query(..., description="Recipient user ID"),
    unread_only: bool = Query(False, description="Only unread notifications"),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=200, description="Page size"),
    skip: int = Query(0, ge=0, description="Offset from the newest"),
    db: Session = Depends(get_db),
):
    """List a user's notifications, newest first."""
    if unread_only:
        items = notification_service.get_unread_notifications(db, user_id, limit)
    else:
        items = notification_service.get_user_notifications(db, user_id, limit, skip)
    return {"total": len(items), "items": items}


@router.get("/unread-count")
def get_unread_count(
    user_id: int = Query(..., description="Recipient user ID"),
    db: Session = Depends(get_db),
):
    return {"count": notification_service.get_unread_count(db, user_id)}


@router.post("/read-all")
def mark_all_read(
    user_id: int = Query(..., description="Recipient user ID"),
    db: Session = Depends(get_db),
):
    return {"count": notification_service.mark_all_as_read(db, user_id)}


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: int = Path(..., description="Notification ID"),
    user_id: int = Query(..., description="Recipient user ID"),
    db: Session = Depends(get_db),
):
    """Mark one notification read. Marking it again is a no-op."""
    return notification_service.mark_as_read(db, notification_id, user_id)
