"""Erection request invariants."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

LOG_PENDING = "Pending"
LOG_APPROVED = "Approved"
LOG_REJECTED = "Rejected"
LOG_RECEIVED = "Received"
LOG_ERECTED = "Erected"

INITIAL_REQUEST_COMMENT = "Initial erection request"
APPROVED_COMMENT = "Approved"


def flatten_raise_request(
    request: Mapping[int, Sequence[object]],
) -> list[tuple[int, int, int]]:
    """Turn `floor_id -> [{element_type_id, quantity}]` into ordered triples."""
    triples: list[tuple[int, int, int]] = []
    for floor_id in sorted(request):
        for line in request[floor_id]:
            if line.quantity < 0:
                raise ValueError("Quantity must not be negative")
            triples.append((int(floor_id), int(line.element_type_id), int(line.quantity)))
    return triples


def ensure_reject_comments(decisions: Iterable[object]) -> None:
    """Every rejection must explain itself; one blank comment fails the batch."""
    for decision in decisions:
        if decision.approved:
            continue
        if not (decision.comments or "").strip():
            raise ValueError("Comments are required when rejecting an item")


def split_known_ids(*, requested: Iterable[int], known: Iterable[int]) -> tuple[list[int], list[int]]:
    """Partition requested ids into (known, missing), keeping request order."""
    known_set = set(known)
    found: list[int] = []
    missing: list[int] = []
    for element_id in requested:
        (found if element_id in known_set else missing).append(element_id)
    return found, missing
