"""Hooks shared by the coordinator use-cases."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, TypeVar

from ..services.dispatch_rules import generate_order_number
from ..services.lifecycle_rules import now_utc

logger = logging.getLogger(__name__)

KIND_ACTIVITY = "activity"
KIND_PROJECT_NOTIFICATION = "project_notification"

Emitter = Callable[[str, dict[str, Any]], object]
H = TypeVar("H", bound="UseCaseHooks")


def _discard(_kind: str, _payload: dict[str, Any]) -> None:
    return None


@dataclass(frozen=True)
class UseCaseHooks:
    """Clock, id generator and side-effect emitter injected by the routers."""

    now_utc: Callable[[], datetime] = now_utc
    generate_order_number: Callable[[], str] = generate_order_number
    emit: Emitter = _discard
    host_name: str | None = None
    ip_address: str | None = None


def emit_after_commit(hooks: UseCaseHooks, kind: str, payload: dict[str, Any]) -> None:
    """Hand a side effect to the emitter; the business outcome is already committed."""
    try:
        hooks.emit(kind, payload)
    except Exception:
        logger.exception("Failed to emit %s event", kind)


def activity_payload(
    hooks: UseCaseHooks,
    *,
    user: object,
    event_context: str,
    event_name: str,
    description: str,
    project_id: int | None,
) -> dict[str, Any]:
    return {
        "event_context": event_context,
        "event_name": event_name,
        "description": description,
        "user_name": display_name(user),
        "host_name": hooks.host_name,
        "ip_address": hooks.ip_address,
        "project_id": project_id,
    }


def display_name(user: object) -> str:
    first = getattr(user, "first_name", "") or ""
    last = getattr(user, "last_name", "") or ""
    name = f"{first} {last}".strip()
    return name or getattr(user, "email", "") or f"user:{getattr(user, 'id', '?')}"


def bind_request(hooks: H, *, session: object, emit: Emitter) -> H:
    """Per-request copy carrying the caller's host and address for activity logs."""
    return replace(
        hooks,
        emit=emit,
        host_name=getattr(session, "host_name", None),
        ip_address=getattr(session, "ip_address", None),
    )
