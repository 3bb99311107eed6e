from __future__ import annotations

from types import SimpleNamespace

import pytest

from precast_erp import schema_bootstrap


class _InspectorStub:
    def __init__(self, tables=(), stock_columns=()) -> None:
        self._tables = set(tables)
        self._stock_columns = list(stock_columns)

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def get_columns(self, name: str) -> list[dict]:
        assert name == "precast_stock"
        return [{"name": column} for column in self._stock_columns]


@pytest.mark.parametrize(
    ("inspector", "expected"),
    [
        (_InspectorStub(), None),
        (_InspectorStub(tables={"alembic_version", "precast_stock"}, stock_columns=["id", "lifecycle_state"]), None),
        (_InspectorStub(tables={"project", "work_order"}), None),
        (_InspectorStub(tables={"precast_stock"}, stock_columns=["id", "stockyard", "dispatch_status"]), None),
        (_InspectorStub(tables={"precast_stock"}, stock_columns=["id", "lifecycle_state"]), "002"),
    ],
)
def test_baseline_revision(inspector, expected) -> None:
    assert schema_bootstrap.baseline_revision(inspector) == expected


@pytest.fixture
def alembic_calls(monkeypatch):
    calls: list = []
    monkeypatch.setattr(
        schema_bootstrap,
        "command",
        SimpleNamespace(
            stamp=lambda _config, revision: calls.append(("stamp", revision)),
            upgrade=lambda _config, revision: calls.append(("upgrade", revision)),
        ),
    )
    monkeypatch.setattr(
        schema_bootstrap,
        "Base",
        SimpleNamespace(metadata=SimpleNamespace(create_all=lambda **_kwargs: calls.append(("create_all",)))),
    )
    return calls


def test_untracked_lifecycle_schema_is_completed_and_stamped_before_upgrade(monkeypatch, alembic_calls) -> None:
    inspector = _InspectorStub(tables={"precast_stock"}, stock_columns=["id", "lifecycle_state"])
    monkeypatch.setattr(schema_bootstrap, "inspect", lambda _bind: inspector)

    stamped = schema_bootstrap.bootstrap_schema(bind=object())

    assert stamped == "002"
    assert alembic_calls == [("create_all",), ("stamp", "002"), ("upgrade", "head")]


def test_tracked_schema_only_upgrades(monkeypatch, alembic_calls) -> None:
    inspector = _InspectorStub(tables={"alembic_version", "precast_stock"}, stock_columns=["lifecycle_state"])
    monkeypatch.setattr(schema_bootstrap, "inspect", lambda _bind: inspector)

    assert schema_bootstrap.bootstrap_schema(bind=object()) is None
    assert alembic_calls == [("upgrade", "head")]


def test_alembic_config_points_at_the_bundled_scripts() -> None:
    config = schema_bootstrap.alembic_config()

    assert config.get_main_option("script_location").endswith("alembic")
