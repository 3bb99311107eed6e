from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import true

from precast_erp.domain_errors import DomainError
from precast_erp.models import Invoice
from precast_erp.schemas import InvoiceCreate
from precast_erp.security import WorkOrderAccessPolicy
from precast_erp.use_cases.invoices import (
    InvoiceHooks,
    create_invoice_use_case,
    get_invoice_use_case,
    list_invoices_by_work_order_use_case,
    list_pending_invoices_use_case,
    submit_invoice_use_case,
)

NOW = datetime(2026, 3, 6, 10, 0, tzinfo=timezone.utc)


class _SessionStub:
    def __init__(self) -> None:
        self.added: list[object] = []
        self.flush_calls = 0
        self.commit_calls = 0
        self.rollback_calls = 0

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def flush(self) -> None:
        self.flush_calls += 1
        for obj in self.added:
            if getattr(obj, "id", 0) is None:
                obj.id = 901

    def commit(self) -> None:
        self.commit_calls += 1

    def rollback(self) -> None:
        self.rollback_calls += 1


def _user(role="admin"):
    return SimpleNamespace(id=42, first_name="Dev", last_name="Shah", email="dev@example.com", role=role)


def _material(*, material_id=11, volume=10.0, volume_used=4.0):
    return SimpleNamespace(id=material_id, volume=volume, volume_used=volume_used, hsn_code=None,
                           item_name="Slab M30", unit_rate=5200.0, tax=18.0)


def _hooks(*, materials, **overrides) -> InvoiceHooks:
    values = {
        "now_utc": lambda: NOW,
        "load_work_order": lambda _db, _id, lock=False: SimpleNamespace(id=3, endclient_id=4, project_id=7),
        "load_end_client": lambda _db, _id: SimpleNamespace(id=4, abbreviation="SKY"),
        "load_project": lambda _db, _id: SimpleNamespace(project_id=7, abbreviation="STA"),
        "max_invoice_revision": lambda _db, _work_order_id: 1,
        "load_materials": lambda _db, *, work_order_id, item_ids: materials,
    }
    values.update(overrides)
    return InvoiceHooks(**values)


def test_create_invoice_consumes_balance_and_names_by_revision() -> None:
    db = _SessionStub()
    material = _material()

    result = create_invoice_use_case(
        data=InvoiceCreate(work_order_id=3, total_amount=26_000, items=[{"item_id": 11, "volume": 5, "hsn_code": 6810}]),
        current_user=_user(),
        db=db,
        hooks=_hooks(materials=[material]),
    )

    assert result.name == "SKY-STA-2"
    assert result.revision_no == 2
    assert result.id == 901
    assert material.volume_used == 9.0
    assert material.hsn_code == 6810
    invoice = db.added[0]
    assert isinstance(invoice, Invoice)
    assert invoice.indraft is True
    assert [(item.item_id, item.item_name, item.volume) for item in invoice.items] == [(11, "Slab M30", 5.0)]
    assert db.commit_calls == 1


def test_first_invoice_of_work_order_is_revision_one() -> None:
    result = create_invoice_use_case(
        data=InvoiceCreate(work_order_id=3, items=[{"item_id": 11, "volume": 1}]),
        current_user=_user(),
        db=_SessionStub(),
        hooks=_hooks(materials=[_material()], max_invoice_revision=lambda _db, _id: None),
    )

    assert result.name == "SKY-STA-1"


def test_create_invoice_rejects_volume_above_balance() -> None:
    db = _SessionStub()
    material = _material()

    with pytest.raises(DomainError) as exc_info:
        create_invoice_use_case(
            data=InvoiceCreate(work_order_id=3, items=[{"item_id": 11, "volume": 7}]),
            current_user=_user(),
            db=db,
            hooks=_hooks(materials=[material]),
        )

    assert exc_info.value.code == "VOLUME_EXCEEDS_BALANCE"
    assert exc_info.value.details == {"item_id": 11}
    assert material.volume_used == 4.0
    assert db.rollback_calls == 1
    assert db.added == []


def test_create_invoice_rejects_items_outside_work_order() -> None:
    db = _SessionStub()

    with pytest.raises(DomainError) as exc_info:
        create_invoice_use_case(
            data=InvoiceCreate(work_order_id=3, items=[{"item_id": 11, "volume": 1}, {"item_id": 12, "volume": 1}]),
            current_user=_user(),
            db=db,
            hooks=_hooks(materials=[_material()]),
        )

    assert exc_info.value.code == "INVOICE_ITEM_NOT_FOUND"
    assert exc_info.value.details == {"item_ids": [12]}
    assert db.commit_calls == 0


def test_create_invoice_for_unknown_work_order_is_404() -> None:
    with pytest.raises(DomainError) as exc_info:
        create_invoice_use_case(
            data=InvoiceCreate(work_order_id=3, items=[{"item_id": 11, "volume": 1}]),
            current_user=_user(),
            db=_SessionStub(),
            hooks=_hooks(materials=[], load_work_order=lambda _db, _id, lock=False: None),
        )

    assert exc_info.value.code == "WORK_ORDER_NOT_FOUND"


def test_submit_moves_invoice_out_of_draft() -> None:
    db = _SessionStub()
    invoice = SimpleNamespace(id=901, name="SKY-STA-2", indraft=True, updated_by=None, updated_at=None)

    result = submit_invoice_use_case(
        invoice_id=901,
        current_user=_user(),
        db=db,
        hooks=_hooks(materials=[], load_invoice=lambda _db, _id, lock=False: invoice),
    )

    assert result.message == "Invoice submitted successfully"
    assert invoice.indraft is False
    assert invoice.updated_at == NOW
    assert db.commit_calls == 1


def test_submitted_invoice_cannot_be_submitted_again() -> None:
    db = _SessionStub()
    invoice = SimpleNamespace(id=901, name="SKY-STA-2", indraft=False)

    with pytest.raises(DomainError) as exc_info:
        submit_invoice_use_case(
            invoice_id=901,
            current_user=_user(),
            db=db,
            hooks=_hooks(materials=[], load_invoice=lambda _db, _id, lock=False: invoice),
        )

    assert exc_info.value.code == "INVOICE_NOT_DRAFT"
    assert db.commit_calls == 0


def test_pending_invoices_are_paginated_with_item_balances() -> None:
    calls: list[dict] = []
    invoice = SimpleNamespace(
        id=901, name="SKY-STA-2", revision_no=2, total_amount=26_000, billing_address=None,
        shipping_address=None, created_by=42, created_at=NOW,
    )
    work_order = SimpleNamespace(id=3, wo_number="WO#1", endclient_id=4, project_id=7)
    item = SimpleNamespace(id=1, invoice_id=901, item_id=11, volume=5, hsn_code=6810)

    def page(_db, *, predicate, offset, limit):
        calls.append({"offset": offset, "limit": limit})
        return 11, [(invoice, work_order)]

    result = list_pending_invoices_use_case(
        page=2,
        limit=5,
        current_user=_user(),
        db=_SessionStub(),
        hooks=_hooks(
            materials=[],
            pending_invoice_page=page,
            pending_invoice_items=lambda _db, _ids: [(item, _material(volume_used=9.0))],
        ),
    )

    assert calls == [{"offset": 5, "limit": 5}]
    assert result.pagination.total_pages == 3
    assert result.data[0].wo_number == "WO#1"
    assert result.data[0].items[0].balance == 1.0
    assert result.data[0].items[0].item_name == "Slab M30"


def test_pending_invoice_line_of_a_dropped_material_keeps_its_name() -> None:
    invoice = SimpleNamespace(
        id=902, name="SKY-STA-3", revision_no=3, total_amount=1_000, billing_address=None,
        shipping_address=None, created_by=42, created_at=NOW,
    )
    work_order = SimpleNamespace(id=3, wo_number="WO#1", endclient_id=4, project_id=7)
    item = SimpleNamespace(id=2, invoice_id=902, item_id=77, item_name="Column M50", volume=2, hsn_code=None)

    result = list_pending_invoices_use_case(
        page=1,
        limit=None,
        current_user=_user(),
        db=_SessionStub(),
        hooks=_hooks(
            materials=[],
            pending_invoice_page=lambda _db, *, predicate, offset, limit: (1, [(invoice, work_order)]),
            pending_invoice_items=lambda _db, _ids: [(item, None)],
        ),
    )

    line = result.data[0].items[0]
    assert (line.item_name, line.unit_rate, line.balance) == ("Column M50", None, 0.0)


def test_pending_invoices_denied_for_site_roles() -> None:
    with pytest.raises(DomainError) as exc_info:
        list_pending_invoices_use_case(
            page=1,
            limit=None,
            current_user=_user(role="erection"),
            db=_SessionStub(),
            hooks=_hooks(materials=[]),
        )

    assert exc_info.value.http_status == 403


def test_superadmin_policy_sees_every_work_order() -> None:
    policy = WorkOrderAccessPolicy.for_user(_user(role="superadmin"))

    assert policy.work_order_predicate().compare(true())


def test_admin_policy_scopes_to_owned_end_clients() -> None:
    predicate = WorkOrderAccessPolicy.for_user(_user(role="admin")).work_order_predicate()

    compiled = predicate.compile()
    assert "work_order.endclient_id IN" in str(compiled)
    assert "client.user_id" in str(compiled)
    assert 42 in compiled.params.values()


def _invoice(**overrides):
    values = {
        "id": 901, "name": "SKY-STA-2", "work_order_id": 3, "revision_no": 2, "total_amount": 26_000,
        "payment_status": "pending", "indraft": True, "billing_address": "Plot 4", "shipping_address": None,
        "created_by": 42, "updated_by": 42, "created_at": NOW, "updated_at": NOW,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_get_invoice_carries_work_order_header_and_material_details() -> None:
    work_order = SimpleNamespace(
        id=3, wo_number="WO#1", endclient_id=4, project_id=7, payment_term={"advance": 30.0},
    )
    live = SimpleNamespace(id=1, invoice_id=901, item_id=11, item_name="Slab M30", volume=5, hsn_code=6810)
    dropped = SimpleNamespace(id=2, invoice_id=901, item_id=77, item_name="Column M50", volume=1, hsn_code=None)
    material = SimpleNamespace(
        id=11, item_name="Slab M30", unit_rate=5200.0, tax=18.0, volume=10.0, volume_used=9.0,
        tower_id=20, floor_id=[21, 22],
    )
    seen: list[int] = []

    def load_view(_db, invoice_id, *, predicate):
        seen.append(invoice_id)
        return (
            _invoice(),
            work_order,
            SimpleNamespace(project_id=7, name="Skyline Towers"),
            SimpleNamespace(id=4, name="Skyline Developers"),
        )

    result = get_invoice_use_case(
        invoice_id=901,
        current_user=_user(),
        db=_SessionStub(),
        hooks=_hooks(
            materials=[],
            load_invoice_view=load_view,
            pending_invoice_items=lambda _db, _ids: [(live, material), (dropped, None)],
        ),
    )

    assert seen == [901]
    assert (result.wo_number, result.project_name, result.endclient_name) == ("WO#1", "Skyline Towers", "Skyline Developers")
    assert result.payment_term == {"advance": 30.0}
    assert result.items[0].volume_used == 9.0
    assert result.items[0].floor_id == [21, 22]
    assert (result.items[1].item_name, result.items[1].unit_rate, result.items[1].floor_id) == ("Column M50", None, [])


def test_get_invoice_outside_scope_is_404() -> None:
    with pytest.raises(DomainError) as exc_info:
        get_invoice_use_case(
            invoice_id=999,
            current_user=_user(),
            db=_SessionStub(),
            hooks=_hooks(materials=[], load_invoice_view=lambda _db, _id, *, predicate: None),
        )

    assert exc_info.value.http_status == 404
    assert exc_info.value.message == "Invoice not found"


def test_invoices_of_a_work_order_keep_revision_order() -> None:
    calls: list[int] = []

    def invoices(_db, work_order_id, *, predicate):
        calls.append(work_order_id)
        return [_invoice(id=900, revision_no=1, indraft=False), _invoice()]

    result = list_invoices_by_work_order_use_case(
        work_order_id=3,
        current_user=_user(role="superadmin"),
        db=_SessionStub(),
        hooks=_hooks(materials=[], invoices_for_work_order=invoices),
    )

    assert calls == [3]
    assert [invoice.revision_no for invoice in result] == [1, 2]
    assert result[0].indraft is False


def test_work_order_without_invoices_lists_nothing() -> None:
    result = list_invoices_by_work_order_use_case(
        work_order_id=3,
        current_user=_user(),
        db=_SessionStub(),
        hooks=_hooks(materials=[], invoices_for_work_order=lambda _db, _id, *, predicate: []),
    )

    assert result == []
