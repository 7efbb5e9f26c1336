# tests/conftest.py

from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from opsdesk.cli.bootstrap import create_initial_state
from opsdesk.core.state import AppState
from opsdesk.tasks.task_models import NewTask, OwnerScope
from opsdesk.tasks.task_store import TaskStore

from .fakes import FixedClock

TODAY = date(2024, 1, 1)  # a Monday


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="opsdesk-test",
        log_level="DEBUG",
        console_enabled=False,
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        # Identity
        tenant_id="t1",
        owner_id="u1",
        # Recurrence
        timezone="UTC",
        recurrence_window_days=30,
        reconcile_enabled=False,
        reconcile_interval_seconds=3600.0,
    )


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def owner() -> OwnerScope:
    return OwnerScope(tenant_id="t1", owner_id="u1")


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FixedClock) -> AppState:
    """
    AppState wired with a fixed clock.

    NOTE: We keep the real SQLite TaskStore here because its uniqueness and scoping
    behaviour is part of what we want to test.
    """
    return create_initial_state(settings=settings, clock=clock)


def make_root(
    store: TaskStore,
    *,
    rule: str = "FREQ=DAILY",
    tenant_id: str = "t1",
    owner_id: str = "u1",
    name: str = "Water plants",
    do_date: date | None = TODAY,
    **kwargs,
) -> int:
    return store.add_task(
        NewTask(
            tenant_id=tenant_id,
            owner_id=owner_id,
            name=name,
            recurrence_rule=rule,
            do_date=do_date,
            **kwargs,
        )
    )
