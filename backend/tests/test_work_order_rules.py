from __future__ import annotations

from types import SimpleNamespace

import pytest

from precast_erp.services.dimensions import compute_weight, format_dimensions
from precast_erp.services.precast_hierarchy import UNKNOWN_FLOOR, UNKNOWN_FLOOR_ID, UNKNOWN_TOWER, location_labels
from precast_erp.services.work_order_rules import (
    ensure_volume_within_balance,
    invoice_name,
    material_balance,
    next_revision,
    snapshot_values,
    total_pages,
)


def test_next_revision_starts_at_initial_value() -> None:
    assert next_revision(None, initial=0) == 0
    assert next_revision(None, initial=1) == 1
    assert next_revision(4, initial=1) == 5


def test_snapshot_copies_json_values_instead_of_sharing_them() -> None:
    source = SimpleNamespace(payment_term={"advance": 30.0}, recurrence_patterns=[{"pattern_type": "monthly"}])

    values = snapshot_values(source, ("payment_term", "recurrence_patterns"))
    source.payment_term["advance"] = 50.0
    source.recurrence_patterns[0]["pattern_type"] = "weekly"

    assert values == {"payment_term": {"advance": 30.0}, "recurrence_patterns": [{"pattern_type": "monthly"}]}


def test_volume_within_balance_passes_at_exact_remaining() -> None:
    ensure_volume_within_balance(requested=6.0, volume=10.0, volume_used=4.0)


def test_volume_above_balance_fails() -> None:
    with pytest.raises(ValueError, match="exceeds remaining balance"):
        ensure_volume_within_balance(requested=6.5, volume=10.0, volume_used=4.0)


def test_material_balance_treats_missing_as_zero() -> None:
    assert material_balance(volume=None, volume_used=None) == 0.0
    assert material_balance(volume=12.5, volume_used=None) == 12.5


def test_invoice_name_joins_abbreviations_and_revision() -> None:
    assert invoice_name(end_client_abbreviation="SKY", project_abbreviation="STA", revision_no=3) == "SKY-STA-3"


@pytest.mark.parametrize(("total", "limit", "pages"), [(0, 10, 0), (10, 10, 1), (11, 10, 2), (5, 0, 0)])
def test_total_pages(total: int, limit: int, pages: int) -> None:
    assert total_pages(total_records=total, limit=limit) == pages


def test_dimensions_are_formatted_with_two_decimals() -> None:
    assert format_dimensions(thickness=200, length=3000, height=120) == (
        "Thickness: 200.00mm, Length: 3000.00mm, Height: 120.00mm"
    )


def test_weight_converts_cubic_millimetres_to_cubic_metres() -> None:
    # 0.2m x 3m x 2m = 1.2 m3 of concrete at 2500 kg/m3
    assert compute_weight(thickness=200, length=3000, height=2000, density=2500) == pytest.approx(3000.0)


def test_location_labels_fall_back_to_unknown() -> None:
    assert location_labels(floor_id=None, floor_name=None, tower_name=None) == {
        "floor_id": UNKNOWN_FLOOR_ID,
        "floor_name": UNKNOWN_FLOOR,
        "tower_name": UNKNOWN_TOWER,
    }
