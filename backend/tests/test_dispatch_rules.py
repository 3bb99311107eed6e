from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from precast_erp.services.dispatch_rules import (
    STATUS_ACCEPTED,
    STATUS_DISPATCHED,
    STATUS_IN_TRANSIT,
    dedupe_preserving_order,
    generate_order_number,
    is_valid_order_number,
    latest_detail_by_order,
    unavailable_element_ids,
    validate_dispatch_transition,
)


def test_dispatched_order_can_go_in_transit_or_straight_to_accepted() -> None:
    assert validate_dispatch_transition(current_status=STATUS_DISPATCHED, next_status=STATUS_IN_TRANSIT) == STATUS_IN_TRANSIT
    assert validate_dispatch_transition(current_status=STATUS_DISPATCHED, next_status=STATUS_ACCEPTED) == STATUS_ACCEPTED
    assert validate_dispatch_transition(current_status=STATUS_IN_TRANSIT, next_status=STATUS_ACCEPTED) == STATUS_ACCEPTED


def test_missing_status_is_treated_as_dispatched() -> None:
    assert validate_dispatch_transition(current_status=None, next_status=STATUS_IN_TRANSIT) == STATUS_IN_TRANSIT


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (STATUS_IN_TRANSIT, STATUS_IN_TRANSIT),
        (STATUS_IN_TRANSIT, STATUS_DISPATCHED),
        (STATUS_ACCEPTED, STATUS_ACCEPTED),
        (STATUS_ACCEPTED, STATUS_IN_TRANSIT),
    ],
)
def test_dispatch_status_never_moves_backwards_or_repeats(current: str, target: str) -> None:
    with pytest.raises(ValueError, match="Invalid dispatch status transition"):
        validate_dispatch_transition(current_status=current, next_status=target)


def test_generated_order_numbers_match_format() -> None:
    for _ in range(50):
        assert is_valid_order_number(generate_order_number())


@pytest.mark.parametrize("value", ["ORD", "ORD1234567", "ord12", "ORD12a", ""])
def test_malformed_order_numbers_are_rejected(value: str) -> None:
    assert not is_valid_order_number(value)


def test_unavailable_ids_are_sorted_and_unique() -> None:
    assert unavailable_element_ids(requested=[104, 101, 102, 104], reserved=[101]) == [102, 104]


def test_everything_reserved_means_nothing_unavailable() -> None:
    assert unavailable_element_ids(requested=[101, 102], reserved=[102, 101]) == []


def test_dedupe_keeps_first_occurrence_order() -> None:
    assert dedupe_preserving_order([3, 1, 3, 2, 1]) == [3, 1, 2]


def test_latest_detail_prefers_most_recent_update() -> None:
    early = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
    late = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    details = [
        SimpleNamespace(id=1, dispatch_order_id=10, updated_at=late),
        SimpleNamespace(id=2, dispatch_order_id=10, updated_at=early),
        SimpleNamespace(id=3, dispatch_order_id=11, updated_at=None),
    ]

    latest = latest_detail_by_order(details)

    assert latest[10].id == 1
    assert latest[11].id == 3
