"""Work-order revision and invoice helpers."""

from __future__ import annotations

from typing import Any

# Columns copied verbatim from the live work order into its revision snapshot.
SNAPSHOT_FIELDS: tuple[str, ...] = (
    "wo_number",
    "wo_date",
    "wo_validate",
    "total_value",
    "contact_person",
    "contact_email",
    "contact_number",
    "phone_code",
    "payment_term",
    "wo_description",
    "comments",
    "endclient_id",
    "project_id",
    "shipped_address",
    "billed_address",
    "recurrence_patterns",
)

MATERIAL_SNAPSHOT_FIELDS: tuple[str, ...] = (
    "item_name",
    "unit_rate",
    "volume",
    "volume_used",
    "tax",
    "hsn_code",
    "tower_id",
    "floor_id",
)


def next_revision(current_max: int | None, *, initial: int) -> int:
    """max + 1, or `initial` when nothing exists yet."""
    if current_max is None:
        return initial
    return int(current_max) + 1


def snapshot_values(source: object, fields: tuple[str, ...]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in fields:
        value = getattr(source, field)
        if isinstance(value, (dict, list)):
            value = _copy_json(value)
        values[field] = value
    return values


def _copy_json(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _copy_json(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_copy_json(item) for item in value]
    return value


def material_balance(*, volume: float | None, volume_used: float | None) -> float:
    return float(volume or 0) - float(volume_used or 0)


def ensure_volume_within_balance(*, requested: float, volume: float | None, volume_used: float | None) -> None:
    if requested <= 0:
        raise ValueError("Invoice item volume must be positive")
    balance = material_balance(volume=volume, volume_used=volume_used)
    if requested > balance:
        raise ValueError(f"Requested volume {requested} exceeds remaining balance {balance}")


def invoice_name(*, end_client_abbreviation: str, project_abbreviation: str, revision_no: int) -> str:
    return f"{end_client_abbreviation}-{project_abbreviation}-{revision_no}"


def total_pages(*, total_records: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return (total_records + limit - 1) // limit
