from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from uuid import uuid4

from smarthouse.audit import log_audit
from smarthouse.errors import NotFoundError
from smarthouse.rowstore import Workbook, Worksheet
from smarthouse.schemas import (
    HousingSettings,
    Notification,
    NotificationChange,
    NotificationType,
    ResidentBase,
    ResidentKind,
)
from smarthouse.services.push_notifications import send_push_notification
from smarthouse.services.serialization import (
    NOTIFICATION_COLUMNS,
    headers_for,
    notification_from_row,
    notification_to_row,
)
from smarthouse.services.sheets import SHEET_NOTIFICATIONS, find_row, get_settings
from smarthouse.settings import get_app_timezone

logger = logging.getLogger("smarthouse.notifications")

NOTIFICATION_HEADERS = headers_for(NOTIFICATION_COLUMNS)

ACTION_ADDED = "Dodał"
ACTION_UPDATED = "Zaktualizował dane"
ACTION_DELETED = "Trwale usunął"
ACTION_AUTO_DISMISSED = "Automatycznie zwolnił"

_ENTITY_NOUNS: dict[ResidentKind, str] = {
    ResidentKind.EMPLOYEE: "pracownika",
    ResidentKind.NON_EMPLOYEE: "mieszkańca (NZ)",
    ResidentKind.BOK: "mieszkańca BOK",
}

_SYSTEM_ACTORS = {"system": "System", "admin": "Admin"}


def notifications_sheet(book: Workbook) -> Worksheet:
    return book.get_sheet(SHEET_NOTIFICATIONS, NOTIFICATION_HEADERS)


def resolve_actor_name(settings: HousingSettings, actor_id: str) -> str:
    coordinator = settings.find_coordinator(actor_id)
    if coordinator is not None:
        return coordinator.name
    return _SYSTEM_ACTORS.get(actor_id, actor_id)


def build_message(action: str, entity: ResidentBase) -> str:
    return f"{action} {_ENTITY_NOUNS[entity.kind]} {entity.full_name}."


def create_notification(
    book: Workbook,
    *,
    actor_id: str,
    action: str,
    entity: ResidentBase,
    changes: Sequence[NotificationChange] = (),
    type: NotificationType = NotificationType.INFO,
    settings: HousingSettings | None = None,
) -> Notification | None:
    """Side-channel write; failures are logged and never reach the caller."""
    try:
        housing = settings if settings is not None else get_settings(book)
        actor_name = resolve_actor_name(housing, actor_id)
        notification = Notification(
            id=f"notif-{uuid4().hex[:12]}",
            message=build_message(action, entity),
            entity_id=entity.id,
            entity_first_name=entity.first_name,
            entity_last_name=entity.last_name,
            actor_name=actor_name,
            recipient_id=entity.coordinator_id,
            created_at=datetime.now(timezone.utc),
            is_read=False,
            type=type,
            changes=list(changes),
        )
        notifications_sheet(book).add_row(notification_to_row(notification))
    except Exception:
        book.db.rollback()
        logger.exception(
            "notification_write_failed",
            extra={"actor_id": actor_id, "action": action, "entity_id": entity.id},
        )
        return None

    log_audit(
        book,
        actor_id=actor_id,
        actor_name=actor_name,
        action=action,
        entity_type=entity.kind.value,
        entity_id=entity.id,
        details={"changes": [change.model_dump() for change in notification.changes]},
    )

    if notification.recipient_id:
        try:
            send_push_notification(
                book,
                housing,
                notification.recipient_id,
                title=f"{actor_name}: {action}",
                body=notification.message,
                data={"notification_id": notification.id, "entity_id": entity.id},
            )
        except Exception:
            logger.exception(
                "notification_push_failed",
                extra={"notification_id": notification.id, "recipient_id": notification.recipient_id},
            )
    return notification


def list_notifications(
    book: Workbook,
    *,
    recipient_id: str | None = None,
    is_admin: bool = False,
) -> list[Notification]:
    notifications: list[Notification] = []
    for row in notifications_sheet(book).get_rows():
        notification = notification_from_row(row.to_dict())
        if notification is None:
            continue
        if not is_admin and notification.recipient_id != recipient_id:
            continue
        notifications.append(notification)
    notifications.sort(key=lambda item: item.created_at, reverse=True)
    return notifications


def set_notification_read(book: Workbook, notification_id: str, is_read: bool = True) -> None:
    row = find_row(notifications_sheet(book), notification_id)
    if row is None:
        raise NotFoundError("Notification not found.")
    row.set("isRead", is_read)
    row.save()


def delete_notification(book: Workbook, notification_id: str) -> None:
    row = find_row(notifications_sheet(book), notification_id)
    if row is None:
        raise NotFoundError("Notification not found.")
    row.delete()


def clear_all_notifications(book: Workbook, *, recipient_id: str | None = None) -> int:
    sheet = notifications_sheet(book)
    if recipient_id is None:
        return sheet.clear_rows()
    removed = 0
    for row in sheet.get_rows():
        if row.get("recipientId") == recipient_id:
            row.delete()
            removed += 1
    return removed


def _local_day(value: datetime) -> date:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(get_app_timezone()).date()


def filter_notifications(
    notifications: Iterable[Notification],
    *,
    selected_date: date | None = None,
    employee_name: str | None = None,
    coordinator_id: str | None = None,
) -> list[Notification]:
    needle = (employee_name or "").strip().casefold()
    matched: list[Notification] = []
    for notification in notifications:
        if selected_date is not None and _local_day(notification.created_at) != selected_date:
            continue
        if coordinator_id and notification.recipient_id != coordinator_id:
            continue
        if needle:
            first_last = f"{notification.entity_first_name} {notification.entity_last_name}".casefold()
            last_first = f"{notification.entity_last_name} {notification.entity_first_name}".casefold()
            if needle not in first_last and needle not in last_first:
                continue
        matched.append(notification)
    return matched
