from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from precast_erp.auth import get_current_session
from precast_erp.database import get_db
from precast_erp.main import app
from precast_erp.routers import invoices as invoices_router
from precast_erp.routers import stock as stock_router
from precast_erp.routers import work_orders as work_orders_router
from precast_erp.use_cases.invoices import InvoiceHooks
from precast_erp.use_cases.stock_registry import StockRegistryHooks
from precast_erp.use_cases.work_orders import WorkOrderHooks

NOW = datetime(2026, 3, 7, 8, 15, tzinfo=timezone.utc)


def _invoice(**overrides):
    values = {
        "id": 901, "name": "SKY-STA-2", "work_order_id": 3, "revision_no": 2, "total_amount": 26_000,
        "payment_status": "pending", "indraft": True, "billing_address": None, "shipping_address": None,
        "created_by": 42, "updated_by": 42, "created_at": NOW, "updated_at": NOW,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def api(monkeypatch):
    state = {"role": "admin"}
    work_order = SimpleNamespace(
        id=3, wo_number="WO#1", wo_date=None, wo_validate=None, total_value=120_000, revision=1,
        project_id=7, endclient_id=4, created_by=42, created_at=NOW, updated_at=NOW, payment_term={},
    )
    log = SimpleNamespace(
        id=1, precast_stock_id=301, element_id=101, project_id=7, status="Approved",
        comments="Stock received in stockyard", element_type="SLAB", element_type_name="Slab",
        acted_by=42, action_timestamp=NOW,
    )

    def session_override():
        user = SimpleNamespace(id=42, role=state["role"], first_name="Dev", last_name="Shah", email="d@example.com", is_active=True)
        return SimpleNamespace(user=user, user_id=42, host_name="desk-02", ip_address="10.0.0.2")

    def db_override():
        yield SimpleNamespace()

    def invoice_view(_db, invoice_id, *, predicate):
        if invoice_id != 901:
            return None
        return _invoice(), work_order, SimpleNamespace(name="Skyline Towers"), SimpleNamespace(name="Skyline Developers")

    monkeypatch.setattr(
        invoices_router,
        "INVOICE_HOOKS",
        InvoiceHooks(
            now_utc=lambda: NOW,
            load_invoice_view=invoice_view,
            pending_invoice_items=lambda _db, _ids: [],
            invoices_for_work_order=lambda _db, work_order_id, *, predicate: [
                _invoice(id=900, revision_no=1, indraft=False), _invoice()
            ] if work_order_id == 3 else [],
        ),
    )
    monkeypatch.setattr(
        work_orders_router,
        "WORK_ORDER_HOOKS",
        WorkOrderHooks(
            now_utc=lambda: NOW,
            work_order_page=lambda _db, *, predicate, offset, limit: (1, [(work_order, None, None, None)]),
        ),
    )
    monkeypatch.setattr(
        stock_router,
        "STOCK_REGISTRY_HOOKS",
        StockRegistryHooks(
            now_utc=lambda: NOW,
            load_project=lambda _db, project_id: SimpleNamespace(project_id=project_id, name="Skyline Towers"),
            load_approval_logs=lambda _db, _project_id: [(log, SimpleNamespace(first_name="Dev", last_name="Shah"))],
        ),
    )
    app.dependency_overrides[get_current_session] = session_override
    app.dependency_overrides[get_db] = db_override
    try:
        yield SimpleNamespace(client=TestClient(app), state=state)
    finally:
        app.dependency_overrides.clear()


def test_get_invoice_over_http(api) -> None:
    response = api.client.get("/api/v1/invoices/901")

    assert response.status_code == 200
    payload = response.json()
    assert payload["wo_number"] == "WO#1"
    assert payload["project_name"] == "Skyline Towers"
    assert payload["items"] == []


def test_unknown_invoice_over_http_is_404(api) -> None:
    response = api.client.get("/api/v1/invoices/5")

    assert response.status_code == 404
    assert response.json() == {"error": "Invoice not found", "code": "INVOICE_NOT_FOUND"}


def test_invoices_of_work_order_over_http(api) -> None:
    response = api.client.get("/api/v1/invoices/work-order/3")

    assert response.status_code == 200
    assert [invoice["revision_no"] for invoice in response.json()] == [1, 2]
    assert api.client.get("/api/v1/invoices/work-order/8").json() == []


def test_invoice_reads_need_view_permission(api) -> None:
    api.state["role"] = "project_manager"

    response = api.client.get("/api/v1/invoices/901")

    assert response.status_code == 403
    assert response.json() == {"error": "Permission denied: canViewInvoices required"}


def test_work_order_listing_over_http(api) -> None:
    response = api.client.get("/api/v1/work-orders", params={"page": 1, "limit": 20})

    assert response.status_code == 200
    payload = response.json()
    assert payload["pagination"] == {"page": 1, "limit": 20, "total_records": 1, "total_pages": 1}
    assert payload["data"][0]["wo_number"] == "WO#1"


def test_work_order_listing_for_site_role_is_403(api) -> None:
    api.state["role"] = "erection"

    response = api.client.get("/api/v1/work-orders")

    assert response.status_code == 403
    assert response.json()["error"] == "No permission to view work orders"


def test_stock_approval_logs_over_http(api) -> None:
    response = api.client.get("/api/v1/projects/7/precast-stock/approval-logs")

    assert response.status_code == 200
    (entry,) = response.json()
    assert entry["acted_by_name"] == "Dev Shah"
    assert entry["status"] == "Approved"
