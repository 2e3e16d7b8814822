from __future__ import annotations

import json
import logging
from typing import Any

from pywebpush import WebPushException, webpush

from smarthouse.errors import ApiError, NotFoundError
from smarthouse.rowstore import Workbook
from smarthouse.schemas import HousingSettings
from smarthouse.services.sheets import COORDINATOR_HEADERS, SHEET_COORDINATORS, find_row
from smarthouse.settings import get_settings, is_push_enabled

logger = logging.getLogger("smarthouse.push")


def get_push_public_config() -> dict[str, Any]:
    settings = get_settings()
    enabled = is_push_enabled()
    return {
        "enabled": enabled,
        "vapid_public_key": settings.push_vapid_public_key if enabled else None,
    }


def _parse_subscription_payload(subscription: dict[str, Any]) -> dict[str, Any]:
    endpoint = str(subscription.get("endpoint") or "").strip()
    keys = subscription.get("keys")
    if not isinstance(keys, dict):
        raise ApiError(
            status_code=422,
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Subscription keys are missing.",
        )

    p256dh = str(keys.get("p256dh") or "").strip()
    auth = str(keys.get("auth") or "").strip()
    if not endpoint or not p256dh or not auth:
        raise ApiError(
            status_code=422,
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Subscription payload is incomplete.",
        )
    return {"endpoint": endpoint, "keys": {"p256dh": p256dh, "auth": auth}}


def notify(token: str, payload: dict[str, Any]) -> tuple[bool, str | None, int | None]:
    """Deliver ``{title, body, data}`` to one stored subscription token.

    Returns ``(ok, error_text, http_status)``; delivery errors are reported, not raised.
    """
    settings = get_settings()
    try:
        subscription_info = _parse_subscription_payload(json.loads(token))
    except (ValueError, TypeError, ApiError) as exc:
        return False, f"invalid subscription token: {exc}", None

    try:
        webpush(
            subscription_info=subscription_info,
            data=json.dumps(payload, ensure_ascii=False),
            vapid_private_key=settings.push_vapid_private_key,
            vapid_claims={"sub": settings.push_vapid_subject},
            ttl=60,
        )
        return True, None, None
    except WebPushException as exc:
        status_code: int | None = None
        if exc.response is not None:
            status_code = exc.response.status_code
        return False, str(exc), status_code


def update_coordinator_subscription(
    book: Workbook,
    coordinator_id: str,
    subscription: dict[str, Any] | str | None,
) -> None:
    if isinstance(subscription, dict):
        token = json.dumps(_parse_subscription_payload(subscription))
    else:
        token = subscription or ""

    sheet = book.get_sheet(SHEET_COORDINATORS, COORDINATOR_HEADERS)
    row = find_row(sheet, coordinator_id, column="uid")
    if row is None:
        raise NotFoundError("Coordinator not found.")
    row.set("pushSubscription", token)
    row.save()
    logger.info(
        "push_subscription_updated",
        extra={"coordinator_id": coordinator_id, "subscribed": bool(token)},
    )


def send_push_notification(
    book: Workbook,
    settings: HousingSettings,
    coordinator_id: str,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
) -> bool:
    coordinator = settings.find_coordinator(coordinator_id)
    if coordinator is None or not coordinator.push_subscription:
        logger.info("push_skipped_no_subscription", extra={"coordinator_id": coordinator_id})
        return False
    if not is_push_enabled():
        logger.info("push_skipped_not_configured", extra={"coordinator_id": coordinator_id})
        return False

    ok, error_text, status_code = notify(
        coordinator.push_subscription,
        {"title": title, "body": body, "data": data or {}},
    )
    if ok:
        logger.info("push_sent", extra={"coordinator_id": coordinator_id})
        return True

    logger.warning(
        "push_send_failed",
        extra={
            "coordinator_id": coordinator_id,
            "status_code": status_code,
            "error": error_text,
        },
    )
    if status_code in {404, 410}:
        # Endpoint is gone for good; drop it so we stop retrying.
        update_coordinator_subscription(book, coordinator_id, None)
    return False
