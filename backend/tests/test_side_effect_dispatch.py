from __future__ import annotations

import logging
from datetime import datetime
from types import SimpleNamespace

from precast_erp import celery_app as tasks
from precast_erp.use_cases.common import (
    KIND_ACTIVITY,
    KIND_PROJECT_NOTIFICATION,
    UseCaseHooks,
    activity_payload,
    bind_request,
    emit_after_commit,
)


class _TaskStub:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[tuple] = []
        self._fail = fail

    def delay(self, *args):
        if self._fail:
            raise ConnectionError("broker unreachable")
        self.calls.append(args)
        return SimpleNamespace(id="task-1")


def test_enqueue_routes_each_kind_to_its_task(monkeypatch) -> None:
    activity = _TaskStub()
    notify = _TaskStub()
    monkeypatch.setattr(tasks, "SIDE_EFFECT_TASKS", {KIND_ACTIVITY: activity, KIND_PROJECT_NOTIFICATION: notify})

    tasks.enqueue_side_effect(KIND_ACTIVITY, {"description": "created"})
    tasks.enqueue_side_effect(KIND_PROJECT_NOTIFICATION, {"project_id": 7})

    assert [args[0] for args in activity.calls] == [{"description": "created"}]
    assert [args[0] for args in notify.calls] == [{"project_id": 7}]
    assert datetime.fromisoformat(activity.calls[0][1]).tzinfo is not None


def test_enqueue_sends_a_copy_of_the_payload(monkeypatch) -> None:
    activity = _TaskStub()
    monkeypatch.setattr(tasks, "SIDE_EFFECT_TASKS", {KIND_ACTIVITY: activity})
    payload = {"description": "created"}

    tasks.enqueue_side_effect(KIND_ACTIVITY, payload)
    payload["description"] = "changed"

    assert activity.calls[0][0] == {"description": "created"}


def test_unknown_kind_is_logged_and_dropped(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        assert tasks.enqueue_side_effect("unrouted", {}) is None

    assert "No task registered for unrouted side effect" in caplog.text


def test_broker_failure_after_commit_is_logged_not_raised(monkeypatch, caplog) -> None:
    monkeypatch.setattr(tasks, "SIDE_EFFECT_TASKS", {KIND_ACTIVITY: _TaskStub(fail=True)})
    hooks = UseCaseHooks(emit=tasks.enqueue_side_effect)

    with caplog.at_level(logging.ERROR):
        emit_after_commit(hooks, KIND_ACTIVITY, {})

    assert "Failed to emit activity event" in caplog.text


def test_bound_hooks_carry_request_origin_into_activity_payload() -> None:
    collected: list = []
    session = SimpleNamespace(host_name="tablet-07", ip_address="10.0.0.7")
    hooks = bind_request(UseCaseHooks(), session=session, emit=lambda kind, payload: collected.append(kind))

    payload = activity_payload(
        hooks,
        user=SimpleNamespace(id=3, first_name="", last_name="", email="ops@example.com"),
        event_context="Dispatch",
        event_name="POST",
        description="Dispatch order ORD1 created",
        project_id=7,
    )
    hooks.emit(KIND_ACTIVITY, payload)

    assert payload["host_name"] == "tablet-07"
    assert payload["ip_address"] == "10.0.0.7"
    assert payload["user_name"] == "ops@example.com"
    assert collected == [KIND_ACTIVITY]
