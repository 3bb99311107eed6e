from __future__ import annotations

from types import SimpleNamespace

import pytest

from precast_erp.services.erection_rules import ensure_reject_comments, flatten_raise_request, split_known_ids


def _line(element_type_id: int, quantity: int):
    return SimpleNamespace(element_type_id=element_type_id, quantity=quantity)


def test_flatten_orders_by_floor_then_input_order() -> None:
    triples = flatten_raise_request({12: [_line(3, 2)], 4: [_line(9, 1), _line(2, 0)]})

    assert triples == [(4, 9, 1), (4, 2, 0), (12, 3, 2)]


def test_flatten_rejects_negative_quantity() -> None:
    with pytest.raises(ValueError, match="must not be negative"):
        flatten_raise_request({1: [_line(3, -1)]})


def test_rejection_without_comment_fails_whole_batch() -> None:
    decisions = [
        SimpleNamespace(element_id=100, approved=True, comments=None),
        SimpleNamespace(element_id=101, approved=False, comments="  "),
    ]

    with pytest.raises(ValueError, match="Comments are required when rejecting an item"):
        ensure_reject_comments(decisions)


def test_approvals_do_not_need_comments() -> None:
    ensure_reject_comments(
        [
            SimpleNamespace(element_id=100, approved=True, comments=None),
            SimpleNamespace(element_id=101, approved=False, comments="cracked edge"),
        ]
    )


def test_split_known_ids_keeps_request_order() -> None:
    found, missing = split_known_ids(requested=[5, 9, 1, 7], known={1, 5})

    assert found == [5, 1]
    assert missing == [9, 7]
