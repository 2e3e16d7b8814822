from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from smarthouse.rowstore import Workbook, get_workbook
from smarthouse.schemas import Notification, PushSubscriptionRequest
from smarthouse.security import ADMIN_UID, SessionIdentity, require_session
from smarthouse.errors import ApiError
from smarthouse.services.notifications import (
    clear_all_notifications,
    delete_notification,
    filter_notifications,
    list_notifications,
    set_notification_read,
)
from smarthouse.services.push_notifications import get_push_public_config, update_coordinator_subscription

router = APIRouter(tags=["notifications"])


@router.get("/api/notifications", response_model=list[Notification])
def read_notifications(
    selected_date: date | None = Query(default=None),
    employee_name: str | None = Query(default=None, max_length=255),
    coordinator_id: str | None = Query(default=None),
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> list[Notification]:
    notifications = list_notifications(book, recipient_id=identity.uid, is_admin=identity.is_admin)
    return filter_notifications(
        notifications,
        selected_date=selected_date,
        employee_name=employee_name,
        coordinator_id=coordinator_id if identity.is_admin else None,
    )


@router.post("/api/notifications/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
def mark_notification_read(
    notification_id: str,
    is_read: bool = Query(default=True),
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> None:
    set_notification_read(book, notification_id, is_read)


@router.delete("/api/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_notification(
    notification_id: str,
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> None:
    delete_notification(book, notification_id)


@router.delete("/api/notifications")
def clear_notifications(
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> dict[str, int]:
    removed = clear_all_notifications(book, recipient_id=None if identity.is_admin else identity.uid)
    return {"removed": removed}


@router.get("/api/push/config")
def push_config() -> dict[str, Any]:
    return get_push_public_config()


@router.put("/api/push/subscription", status_code=status.HTTP_204_NO_CONTENT)
def save_push_subscription(
    payload: PushSubscriptionRequest,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> None:
    if identity.uid == ADMIN_UID:
        raise ApiError(
            status_code=409,
            code="PUSH_NOT_AVAILABLE",
            message="The environment admin account has no coordinator record.",
        )
    update_coordinator_subscription(book, identity.uid, payload.subscription)
