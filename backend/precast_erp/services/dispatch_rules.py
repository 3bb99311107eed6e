"""Dispatch order invariants: statuses, locations, order numbers."""

from __future__ import annotations

import re
import secrets
from typing import Iterable, Sequence

STATUS_DISPATCHED = "Dispatched"
STATUS_IN_TRANSIT = "In Transit"
STATUS_ACCEPTED = "Accepted"
STATUS_RECEIVED = "Received"

LOCATION_STOCKYARD = "Stockyard"
LOCATION_TRUCK = "Truck"
LOCATION_ERECTION_SITE = "Received in Erection Site"

REMARKS_DISPATCHED = "Element dispatched from stockyard"
REMARKS_IN_TRANSIT = "Items loaded in truck by {actor}"
REMARKS_RECEIVED = "Order received at erection site by {actor}"
REMARKS_ELEMENT_RECEIVED = "Element {element_id} received at erection site by {actor}"

ORDER_NUMBER_PREFIX = "ORD"
_ORDER_NUMBER_PATTERN = re.compile(r"^ORD\d{1,6}$")

_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    STATUS_DISPATCHED: {STATUS_IN_TRANSIT, STATUS_ACCEPTED},
    STATUS_IN_TRANSIT: {STATUS_ACCEPTED},
    STATUS_ACCEPTED: set(),
    STATUS_RECEIVED: set(),
}


def validate_dispatch_transition(*, current_status: str | None, next_status: str) -> str:
    """Dispatch orders only move forward; repeating a status is rejected too."""
    current = current_status or STATUS_DISPATCHED
    if current not in _ALLOWED_TRANSITIONS:
        raise ValueError(f"Unknown dispatch status: {current}")
    if next_status not in _ALLOWED_TRANSITIONS[current]:
        raise ValueError(f"Invalid dispatch status transition: {current} -> {next_status}")
    return next_status


def generate_order_number() -> str:
    return f"{ORDER_NUMBER_PREFIX}{secrets.randbelow(1_000_000)}"


def is_valid_order_number(value: str) -> bool:
    return bool(_ORDER_NUMBER_PATTERN.match(value or ""))


def unavailable_element_ids(*, requested: Sequence[int], reserved: Iterable[int]) -> list[int]:
    """Requested ids the reservation did not transition, sorted, without duplicates."""
    reserved_set = set(reserved)
    return sorted({element_id for element_id in requested if element_id not in reserved_set})


def dedupe_preserving_order(values: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    result: list[int] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def latest_detail_by_order(details: Iterable[object]) -> dict[int, object]:
    """Pick the most recently updated details row per dispatch order."""
    latest: dict[int, object] = {}
    for detail in details:
        order_id = detail.dispatch_order_id
        current = latest.get(order_id)
        if current is None or _detail_sort_key(detail) > _detail_sort_key(current):
            latest[order_id] = detail
    return latest


def _detail_sort_key(detail: object) -> tuple:
    updated_at = getattr(detail, "updated_at", None)
    return (updated_at is not None, updated_at or 0, detail.id)
