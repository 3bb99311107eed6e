"""Tower/floor label resolution over the precast hierarchy."""

from __future__ import annotations

UNKNOWN_TOWER = "Unknown Tower"
UNKNOWN_FLOOR = "Unknown Floor"
UNKNOWN_FLOOR_ID = -1


def location_labels(
    *,
    floor_id: int | None,
    floor_name: str | None,
    tower_name: str | None,
) -> dict[str, object]:
    return {
        "floor_id": floor_id if floor_id is not None else UNKNOWN_FLOOR_ID,
        "floor_name": floor_name or UNKNOWN_FLOOR,
        "tower_name": tower_name or UNKNOWN_TOWER,
    }
