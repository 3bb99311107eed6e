from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from precast_erp import celery_app as tasks
from precast_erp.models import ActivityLog, Notification, NotificationOutbox, User

EMITTED_AT = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class _QueryStub:
    def __init__(self, rows) -> None:
        self._rows = rows

    def filter(self, *_criteria):
        return self

    def all(self):
        return list(self._rows)

    def first(self):
        return self._rows[0] if self._rows else None


class _SessionStub:
    def __init__(self, *, stakeholder_ids=(), users=(), existing_keys=(), fail_commit=False) -> None:
        self.added: list[object] = []
        self.commit_calls = 0
        self.rollback_calls = 0
        self.closed = False
        self._stakeholder_ids = list(stakeholder_ids)
        self._users = list(users)
        self._existing_keys = list(existing_keys)
        self._fail_commit = fail_commit

    def execute(self, _statement):
        rows = [(user_id,) for user_id in self._stakeholder_ids]
        return SimpleNamespace(all=lambda: rows)

    def query(self, entity):
        if entity is User:
            return _QueryStub(self._users)
        return _QueryStub(self._existing_keys)

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def commit(self) -> None:
        if self._fail_commit:
            raise RuntimeError("connection lost")
        self.commit_calls += 1

    def rollback(self) -> None:
        self.rollback_calls += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def use_session(monkeypatch):
    def install(db: _SessionStub) -> _SessionStub:
        monkeypatch.setattr(tasks, "SessionLocal", lambda: db)
        return db

    return install


def test_record_activity_writes_one_row(use_session) -> None:
    db = use_session(_SessionStub())

    tasks.record_activity(
        {
            "event_context": "Dispatch",
            "event_name": "POST",
            "description": "Dispatch order ORD4821 created",
            "user_name": "Ravi Kumar",
            "host_name": "tablet-07",
            "ip_address": "10.0.0.7",
            "project_id": 7,
        },
        EMITTED_AT.isoformat(),
    )

    row = db.added[0]
    assert isinstance(row, ActivityLog)
    assert row.event_context == "Dispatch"
    assert row.created_at == EMITTED_AT
    assert db.commit_calls == 1
    assert db.closed


def test_record_activity_rolls_back_and_reraises(use_session) -> None:
    db = use_session(_SessionStub(fail_commit=True))

    with pytest.raises(RuntimeError):
        tasks.record_activity(
            {"event_context": "Stockyard", "event_name": "PUT", "description": "x"},
            EMITTED_AT.isoformat(),
        )

    assert db.rollback_calls == 1
    assert db.closed


def test_project_notification_fans_out_and_queues_push_for_token_holders(use_session) -> None:
    users = [
        SimpleNamespace(id=1, fcm_token="token-1"),
        SimpleNamespace(id=2, fcm_token=None),
    ]
    db = use_session(_SessionStub(stakeholder_ids=[1, 2], users=users))

    result = tasks.fan_out_project_notification(
        {
            "project_id": 7,
            "message": "Dispatch order received: ORD4821 for project: Skyline Towers",
            "action": "http://localhost:3000/project/7/dispatch-log",
            "reference": "dispatch_created:ORD4821",
        },
        EMITTED_AT.isoformat(),
    )

    assert result == {"notified": 2, "queued_push": 1}
    notifications = [obj for obj in db.added if isinstance(obj, Notification)]
    assert [(row.user_id, row.status) for row in notifications] == [(1, "unread"), (2, "unread")]
    outbox = [obj for obj in db.added if isinstance(obj, NotificationOutbox)]
    assert len(outbox) == 1
    assert outbox[0].recipient_token == "token-1"
    assert outbox[0].idempotency_key == "dispatch_created:ORD4821:1"
    assert outbox[0].meta_data == {
        "action": "http://localhost:3000/project/7/dispatch-log",
        "reference": "dispatch_created:ORD4821",
    }
    assert db.commit_calls == 1
    assert db.closed


def test_push_without_reference_is_keyed_by_emission_time(use_session) -> None:
    db = use_session(_SessionStub(stakeholder_ids=[1], users=[SimpleNamespace(id=1, fcm_token="token-1")]))

    tasks.fan_out_project_notification({"project_id": 7, "message": "m"}, EMITTED_AT.isoformat())

    outbox = [obj for obj in db.added if isinstance(obj, NotificationOutbox)]
    assert outbox[0].idempotency_key == f"project_notification:{EMITTED_AT.isoformat()}:1"


def test_duplicate_push_is_not_queued_twice(use_session) -> None:
    db = use_session(
        _SessionStub(
            stakeholder_ids=[1],
            users=[SimpleNamespace(id=1, fcm_token="token-1")],
            existing_keys=[(55,)],
        )
    )

    tasks.fan_out_project_notification({"project_id": 7, "message": "m", "reference": "r"}, EMITTED_AT.isoformat())

    assert not any(isinstance(obj, NotificationOutbox) for obj in db.added)
    assert len([obj for obj in db.added if isinstance(obj, Notification)]) == 1


def test_project_without_stakeholders_writes_nothing(use_session) -> None:
    db = use_session(_SessionStub())

    result = tasks.fan_out_project_notification({"project_id": 7, "message": "m"}, EMITTED_AT.isoformat())

    assert result == {"notified": 0, "queued_push": 0}
    assert db.added == []
    assert db.commit_calls == 0
    assert db.closed
