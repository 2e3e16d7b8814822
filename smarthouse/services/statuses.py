"""Date-driven dismissal of residents.

Employees and non-employees are dismissed once their ``checkOutDate`` has
passed.  BOK residents are dismissed only by ``dismissDate``; a past
``checkOutDate`` on a BOK row leaves it active.  The two rules are kept
separate on purpose and live in :data:`DISMISSAL_POLICIES`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from smarthouse.rowstore import Workbook
from smarthouse.schemas import (
    HousingSettings,
    NotificationChange,
    NotificationType,
    ResidentBase,
    ResidentKind,
    ResidentStatus,
    StatusCheckResult,
)
from smarthouse.services.dates import parse_lenient_date, today_in_app_tz
from smarthouse.services.notifications import ACTION_AUTO_DISMISSED, create_notification
from smarthouse.services.serialization import from_row
from smarthouse.services.sheets import get_settings, resident_sheet

logger = logging.getLogger("smarthouse.statuses")


@dataclass(frozen=True, slots=True)
class DismissalPolicy:
    kind: ResidentKind
    trigger_column: str

    def should_dismiss(self, trigger_value: str, today: date) -> bool:
        trigger_date = parse_lenient_date(trigger_value)
        if trigger_date is None:
            return False
        return trigger_date < today


DISMISSAL_POLICIES: tuple[DismissalPolicy, ...] = (
    DismissalPolicy(kind=ResidentKind.EMPLOYEE, trigger_column="checkOutDate"),
    DismissalPolicy(kind=ResidentKind.NON_EMPLOYEE, trigger_column="checkOutDate"),
    DismissalPolicy(kind=ResidentKind.BOK, trigger_column="dismissDate"),
)


def policy_for(kind: ResidentKind) -> DismissalPolicy:
    for policy in DISMISSAL_POLICIES:
        if policy.kind == kind:
            return policy
    raise KeyError(kind)


def _apply_policy(book: Workbook, policy: DismissalPolicy, today: date) -> tuple[int, list[ResidentBase]]:
    count = 0
    dismissed: list[ResidentBase] = []
    sheet = resident_sheet(book, policy.kind)
    for row in sheet.get_rows():
        if row.get("status").strip().lower() == ResidentStatus.DISMISSED.value:
            continue
        if not policy.should_dismiss(row.get(policy.trigger_column), today):
            continue

        row.set("status", ResidentStatus.DISMISSED.value)
        row.save()
        count += 1
        resident = from_row(policy.kind, row.to_dict())
        if resident is not None:
            dismissed.append(resident)
        else:
            logger.warning(
                "status_dismissed_row_unreadable",
                extra={"sheet": sheet.title, "row_number": row.row_number},
            )
    return count, dismissed


def check_and_update_statuses(
    book: Workbook,
    actor_id: str,
    *,
    today: date | None = None,
    settings: HousingSettings | None = None,
) -> StatusCheckResult:
    current_day = today or today_in_app_tz()
    updated = 0
    dismissed: list[ResidentBase] = []

    for policy in DISMISSAL_POLICIES:
        count, transitioned = _apply_policy(book, policy, current_day)
        updated += count
        dismissed.extend(transitioned)

    logger.info(
        "status_check_complete",
        extra={"actor_id": actor_id, "updated": updated, "today": current_day.isoformat()},
    )

    if dismissed:
        housing = settings if settings is not None else get_settings(book)
        for resident in dismissed:
            create_notification(
                book,
                actor_id=actor_id,
                action=ACTION_AUTO_DISMISSED,
                entity=resident,
                changes=[NotificationChange(field="status", old_value="active", new_value="dismissed")],
                type=NotificationType.WARNING,
                settings=housing,
            )

    return StatusCheckResult(updated=updated)
