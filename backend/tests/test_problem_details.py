from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from precast_erp.domain_errors import DomainError, items_unavailable, not_found
from precast_erp.problem_details import (
    build_error_response,
    handle_domain_error,
    handle_http_exception,
    handle_unexpected_error,
    handle_validation_error,
)


def test_error_envelope_contains_message_and_stable_code() -> None:
    response = build_error_response(
        DomainError(
            code="STOCK_CONFLICT",
            http_status=409,
            message="stock conflict",
            details={"stock_id": 301},
        )
    )

    assert response.status_code == 409
    body = response.body.decode("utf-8")
    assert '"error":"stock conflict"' in body
    assert '"code":"STOCK_CONFLICT"' in body
    assert '"details":{"stock_id":301}' in body
    assert '"unavailable_elements"' not in body


def test_error_envelope_omits_details_when_none() -> None:
    response = build_error_response(not_found("PROJECT_NOT_FOUND", "Project not found"))

    body = response.body.decode("utf-8")
    assert response.status_code == 404
    assert '"details"' not in body


def test_unavailable_elements_are_top_level() -> None:
    response = build_error_response(items_unavailable([104, 102]))

    body = response.body.decode("utf-8")
    assert response.status_code == 400
    assert '"unavailable_elements":[102,104]' in body
    assert '"code":"ITEMS_UNAVAILABLE"' in body


class _QuantityIn(BaseModel):
    quantity: int


def _app() -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(DomainError, handle_domain_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/domain")
    def _domain():
        raise DomainError(code="ROUTE_PROBLEM", http_status=409, message="route failed", details={"source": "test"})

    @app.get("/http")
    def _http():
        raise HTTPException(status_code=403, detail="Permission denied: canDispatch required")

    @app.post("/validate")
    def _validate(payload: _QuantityIn):
        return {"quantity": payload.quantity}

    @app.get("/crash")
    def _crash():
        raise RuntimeError("boom")

    return app


def test_domain_error_is_rendered_by_handler() -> None:
    response = TestClient(_app()).get("/domain")

    assert response.status_code == 409
    assert response.json() == {"error": "route failed", "code": "ROUTE_PROBLEM", "details": {"source": "test"}}


def test_http_exception_uses_error_key() -> None:
    response = TestClient(_app()).get("/http")

    assert response.status_code == 403
    assert response.json() == {"error": "Permission denied: canDispatch required"}


def test_unknown_route_uses_error_key() -> None:
    response = TestClient(_app()).get("/missing")

    assert response.status_code == 404
    assert "error" in response.json()


def test_validation_failure_is_400_invalid_json_input() -> None:
    response = TestClient(_app()).post("/validate", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid JSON input"


def test_schema_mismatch_lists_field_errors() -> None:
    response = TestClient(_app()).post("/validate", json={"quantity": "many"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "Invalid JSON input"
    assert payload["details"][0]["loc"] == ["body", "quantity"]


def test_unexpected_error_is_500_with_details() -> None:
    response = TestClient(_app(), raise_server_exceptions=False).get("/crash")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error", "details": "boom"}
