# tests/test_task_store.py

from __future__ import annotations

import sqlite3
from datetime import date

import pytest

from opsdesk.tasks.task_errors import StoreError, ValidationError
from opsdesk.tasks.task_models import (
    NewTask,
    Priority,
    PriorityLevel,
    SchedulingMetadata,
    TaskStatus,
)
from opsdesk.tasks.task_store import TaskStore

from .conftest import make_root


def _instance(parent_id: int, day: date, **kwargs) -> NewTask:
    return NewTask(
        tenant_id=kwargs.pop("tenant_id", "t1"),
        owner_id=kwargs.pop("owner_id", "u1"),
        name=kwargs.pop("name", "Water plants"),
        parent_task_id=parent_id,
        do_date=day,
        due_date=day,
        **kwargs,
    )


def test_add_and_get_roundtrip(store: TaskStore) -> None:
    tid = store.add_task(
        NewTask(
            tenant_id="t1",
            owner_id="u1",
            name="  Pay rent ",
            priority=Priority.HIGH,
            priority_level=PriorityLevel.P2,
            due_date=date(2024, 2, 1),
            scheduling_metadata=SchedulingMetadata(extra={"at_risk": True}),
        )
    )
    t = store.get_task(tid)
    assert t is not None
    assert t.name == "Pay rent"
    assert t.status == TaskStatus.TODO
    assert t.priority == Priority.HIGH
    assert t.priority_level == PriorityLevel.P2
    assert t.due_date == date(2024, 2, 1)
    assert t.do_date is None
    assert t.scheduling_metadata.extra == {"at_risk": True}


def test_get_task_is_owner_scoped(store: TaskStore) -> None:
    tid = store.add_task(NewTask(tenant_id="t1", owner_id="u1", name="x"))
    assert store.get_task(tid, tenant_id="t1", owner_id="u1") is not None
    assert store.get_task(tid, tenant_id="t1", owner_id="u2") is None
    assert store.get_task(tid, tenant_id="t2", owner_id="u1") is None


def test_add_task_validates(store: TaskStore) -> None:
    with pytest.raises(ValidationError):
        store.add_task(NewTask(tenant_id="t1", owner_id="u1", name="  "))
    with pytest.raises(ValidationError):
        store.add_task(NewTask(tenant_id="", owner_id="u1", name="x"))
    with pytest.raises(ValidationError):
        store.add_task(
            NewTask(tenant_id="t1", owner_id="u1", name="x", parent_task_id=1, recurrence_rule="FREQ=DAILY")
        )


def test_list_recurrence_roots_filters(store: TaskStore) -> None:
    a = make_root(store, name="a")
    b = make_root(store, name="b", owner_id="u2")
    make_root(store, name="blank", rule="   ")
    store.add_task(NewTask(tenant_id="t1", owner_id="u1", name="one-off"))
    store.insert_instances([_instance(a, date(2024, 1, 1))])

    ids = {t.id for t in store.list_recurrence_roots()}
    assert ids == {a, b}

    mine = store.list_recurrence_roots(tenant_id="t1", owner_id="u1")
    assert [t.id for t in mine] == [a]

    assert [t.id for t in store.list_recurrence_roots(task_id=b)] == [b]


def test_list_instance_keys_single_window(store: TaskStore) -> None:
    a = make_root(store, name="a")
    b = make_root(store, name="b")
    store.insert_instances(
        [
            _instance(a, date(2024, 1, 1)),
            _instance(a, date(2024, 1, 5)),
            _instance(b, date(2024, 1, 2)),
            _instance(b, date(2024, 3, 1)),
        ]
    )

    keys = store.list_instance_keys([a, b], start=date(2024, 1, 1), end=date(2024, 1, 31))
    assert keys == {(a, date(2024, 1, 1)), (a, date(2024, 1, 5)), (b, date(2024, 1, 2))}

    assert store.list_instance_keys([], start=date(2024, 1, 1), end=date(2024, 1, 31)) == set()
    assert store.list_instance_keys([a], start=date(2024, 1, 1), end=date(2024, 1, 31), owner_id="u2") == set()


def test_insert_instances_ignores_duplicates(store: TaskStore) -> None:
    a = make_root(store)
    assert store.insert_instances([_instance(a, date(2024, 1, 1)), _instance(a, date(2024, 1, 2))]) == 2
    assert store.insert_instances([_instance(a, date(2024, 1, 2)), _instance(a, date(2024, 1, 3))]) == 1

    items = store.list_instances(a, start=date(2024, 1, 1), end=date(2024, 1, 31))
    assert [t.do_date for t in items] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
    assert all(t.recurrence_rule is None and t.parent_task_id == a for t in items)


def test_insert_instances_only_skips_series_day_collisions(store: TaskStore) -> None:
    a = make_root(store)
    batch = [_instance(a, date(2024, 1, 1)), _instance(a, date(2024, 1, 2), tenant_id=None)]

    with pytest.raises(StoreError):
        store.insert_instances(batch)

    assert store.list_instances(a, start=date(2024, 1, 1), end=date(2024, 1, 31)) == []


def test_insert_instances_requires_parent(store: TaskStore) -> None:
    with pytest.raises(ValidationError):
        store.insert_instances([NewTask(tenant_id="t1", owner_id="u1", name="x", do_date=date(2024, 1, 1))])


def test_update_scheduling_metadata_scoped(store: TaskStore) -> None:
    a = make_root(store)
    meta = SchedulingMetadata(recurrence_paused=True, extra={"last_scheduled_at": "x"})

    assert store.update_scheduling_metadata(a, meta, tenant_id="t1", owner_id="other") is None

    updated = store.update_scheduling_metadata(a, meta, tenant_id="t1", owner_id="u1")
    assert updated is not None
    assert updated.recurrence_paused is True
    assert updated.scheduling_metadata.extra == {"last_scheduled_at": "x"}


def test_commit_and_clear(store: TaskStore) -> None:
    tid = store.add_task(NewTask(tenant_id="t1", owner_id="u1", name="x", auto_schedule=False))
    block = store.add_focus_block(tenant_id="t1", owner_id="u1", start_at="2024-01-02T09:00", end_at="2024-01-02T10:00")
    assert store.assign_scheduled_block(tid, block, tenant_id="t1") is True

    t = store.mark_committed(tid, tenant_id="t1", owner_id="u1", day=date(2024, 1, 2), auto_schedule=True)
    assert t is not None
    assert t.committed_date == t.do_date == date(2024, 1, 2)
    assert t.auto_schedule is True
    assert t.scheduled_block_id == block

    t = store.clear_commitment(tid, tenant_id="t1", owner_id="u1")
    assert t is not None
    assert (t.committed_date, t.do_date, t.scheduled_block_id) == (None, None, None)

    assert store.delete_focus_block(block, tenant_id="t1") is True
    assert store.get_focus_block(block) is None
    assert store.delete_focus_block(block, tenant_id="t1") is False


def test_sqlite_errors_become_store_errors(store: TaskStore, monkeypatch) -> None:
    def broken(self):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(TaskStore, "_get_conn", broken)
    with pytest.raises(StoreError):
        store.count_tasks()


def test_schema_migration_adds_missing_columns(tmp_path) -> None:
    db = tmp_path / "legacy.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute(
        """
        CREATE TABLE tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'todo',
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT INTO tasks(tenant_id, owner_id, name, created_at, updated_at) VALUES ('t1', 'u1', 'old', 1, 1)"
    )
    conn.commit()
    conn.close()

    store = TaskStore(db)
    t = store.get_task(1)
    assert t is not None
    assert t.name == "old"
    assert t.context == "house"
    assert t.recurrence_rule is None
    assert t.scheduling_metadata == SchedulingMetadata()
