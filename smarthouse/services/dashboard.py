from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, timedelta
from typing import Any

from smarthouse.schemas import DashboardStats, HousingSettings, ResidentBase
from smarthouse.services.occupancy import compute_occupancy, count_active_addresses_in_use


def upcoming_checkouts(
    residents: Iterable[ResidentBase],
    today: date,
    days: int,
) -> list[dict[str, Any]]:
    horizon = today + timedelta(days=days)
    due = [
        resident
        for resident in residents
        if resident.is_active and resident.check_out_date is not None and today <= resident.check_out_date <= horizon
    ]
    due.sort(key=lambda resident: (resident.check_out_date, resident.full_name))
    return [
        {
            "id": resident.id,
            "kind": resident.kind.value,
            "full_name": resident.full_name,
            "coordinator_id": resident.coordinator_id,
            "address": resident.address,
            "room_number": resident.room_number,
            "check_out_date": resident.check_out_date,
        }
        for resident in due
    ]


def build_dashboard(
    settings: HousingSettings,
    employees: Sequence[ResidentBase],
    non_employees: Sequence[ResidentBase],
    bok_residents: Sequence[ResidentBase],
    *,
    today: date,
    upcoming_days: int,
    coordinator_id: str | None = None,
) -> DashboardStats:
    occupancy = compute_occupancy(settings, employees, non_employees, coordinator_id, bok_residents)
    everyone = [*employees, *non_employees, *bok_residents]
    return DashboardStats(
        active_employees=sum(1 for item in employees if item.is_active),
        active_non_employees=sum(1 for item in non_employees if item.is_active),
        active_bok_residents=sum(1 for item in bok_residents if item.is_active),
        addresses_in_use=count_active_addresses_in_use(settings, everyone),
        capacity=sum(address.capacity for address in occupancy),
        occupied=sum(address.occupied for address in occupancy),
        available=sum(address.available for address in occupancy),
        upcoming_checkouts=upcoming_checkouts(everyone, today, upcoming_days),
    )
