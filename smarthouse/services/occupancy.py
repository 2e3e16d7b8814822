from __future__ import annotations

import re
import unicodedata
from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Any

from smarthouse.schemas import (
    Address,
    AddressOccupancy,
    HousingSettings,
    LocalitySummary,
    ResidentBase,
    Room,
    RoomOccupancy,
)

_OWN_APARTMENT_PREFIXES = ("własne", "wlasne")
_OWN_APARTMENT_MARKERS = ("własne mieszkanie", "wlasne mieszkanie")
_DIGITS_RE = re.compile(r"(\d+)")
# Letters NFD does not decompose into base + combining mark.
_POLISH_FOLD = str.maketrans({"ł": "l", "Ł": "l"})


def is_own_apartment(name: str | None) -> bool:
    normalized = (name or "").strip().lower()
    if not normalized:
        return False
    if normalized.startswith(_OWN_APARTMENT_PREFIXES):
        return True
    return any(marker in normalized for marker in _OWN_APARTMENT_MARKERS)


def _letters_key(chunk: str) -> tuple[tuple[str, int], ...]:
    keys: list[tuple[str, int]] = []
    for char in chunk.casefold():
        decomposed = unicodedata.normalize("NFD", char.translate(_POLISH_FOLD))
        base = "".join(item for item in decomposed if not unicodedata.combining(item)) or char
        keys.append((base, 0 if base == char else 1))
    return tuple(keys)


def collation_key(value: str) -> tuple[tuple[int, Any, str], ...]:
    """Natural, case-insensitive sort key: ``"Pokój 2"`` before ``"Pokój 10"``.

    Each accented letter sorts right after its base letter (``l`` < ``ł`` < ``m``),
    which matches Polish collation for address and room names.
    """
    parts: list[tuple[int, Any, str]] = []
    for chunk in _DIGITS_RE.split(value.strip()):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk), chunk))
            continue
        parts.append((1, _letters_key(chunk), chunk))
    return tuple(parts)


def is_room_active(room: Room, address: Address) -> bool:
    return not room.is_locked and room.is_active and address.is_active


def active_rooms(address: Address) -> list[Room]:
    return [room for room in address.rooms if is_room_active(room, address)]


def total_active_capacity(address: Address) -> int:
    return sum(room.capacity for room in active_rooms(address))


def _occupancy_counts(residents: Iterable[ResidentBase]) -> Counter[tuple[str, str]]:
    counts: Counter[tuple[str, str]] = Counter()
    for resident in residents:
        if not resident.is_active:
            continue
        counts[(resident.address.strip(), resident.room_number.strip())] += 1
    return counts


def compute_occupancy(
    settings: HousingSettings,
    employees: Sequence[ResidentBase],
    non_employees: Sequence[ResidentBase],
    coordinator_id: str | None = None,
    bok_residents: Sequence[ResidentBase] = (),
) -> list[AddressOccupancy]:
    counts = _occupancy_counts([*employees, *non_employees, *bok_residents])

    result: list[AddressOccupancy] = []
    for address in settings.addresses:
        if coordinator_id and coordinator_id not in address.coordinator_ids:
            continue
        if is_own_apartment(address.name):
            continue

        rooms: list[RoomOccupancy] = []
        for room in address.rooms:
            occupied = counts.get((address.name.strip(), room.name.strip()), 0)
            rooms.append(
                RoomOccupancy(
                    room_id=room.id,
                    room_name=room.name,
                    capacity=room.capacity,
                    occupied=occupied,
                    available=max(0, room.capacity - occupied),
                    is_active=is_room_active(room, address),
                )
            )
        rooms.sort(key=lambda item: collation_key(item.room_name))

        counted = [room for room in rooms if room.is_active]
        result.append(
            AddressOccupancy(
                address_id=address.id,
                address_name=address.name,
                locality=address.locality,
                is_active=address.is_active,
                rooms=rooms,
                capacity=sum(room.capacity for room in counted),
                occupied=sum(room.occupied for room in counted),
                available=sum(room.available for room in counted),
            )
        )

    result.sort(key=lambda item: (collation_key(item.locality), collation_key(item.address_name)))
    return result


def summarize_by_locality(addresses: Iterable[AddressOccupancy]) -> list[LocalitySummary]:
    summaries: dict[str, LocalitySummary] = {}
    for address in addresses:
        summary = summaries.setdefault(address.locality, LocalitySummary(locality=address.locality))
        for room in address.rooms:
            if not room.is_active:
                continue
            summary.capacity += room.capacity
            summary.occupied += room.occupied
            summary.available += room.available
    return sorted(summaries.values(), key=lambda item: collation_key(item.locality))


def count_active_addresses_in_use(
    settings: HousingSettings,
    residents: Iterable[ResidentBase],
) -> int:
    """Active, non own-apartment addresses with at least one active resident."""
    in_use = {resident.address.strip() for resident in residents if resident.is_active and resident.address}
    return sum(
        1
        for address in settings.addresses
        if address.is_active and not is_own_apartment(address.name) and address.name.strip() in in_use
    )
