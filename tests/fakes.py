# tests/fakes.py

from __future__ import annotations

import itertools
import time
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import date, datetime

from opsdesk.tasks.task_errors import StoreError
from opsdesk.tasks.task_models import NewTask, SchedulingMetadata, Task, TaskStatus


class FixedClock:
    """Callable clock for reconciler / lifecycle tests; move it with `set`."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def set(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeTaskRepo:
    """
    In-memory TaskRepo.

    - counts calls per method (`calls`) so tests can assert on round trips
    - `fail_on` names methods that raise StoreError instead of running
    """

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self.tasks: dict[int, Task] = {t.id: t for t in tasks}
        self.blocks: set[int] = set()
        self.calls: dict[str, int] = {}
        self.fail_on: set[str] = set()
        self._ids = itertools.count(max(self.tasks, default=0) + 1)

    def _enter(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        if name in self.fail_on:
            raise StoreError(f"{name} failed (injected)")

    def _owned(self, t: Task, tenant_id: str | None, owner_id: str | None) -> bool:
        return (tenant_id is None or t.tenant_id == tenant_id) and (
            owner_id is None or t.owner_id == owner_id
        )

    def add_root(self, **kwargs) -> Task:
        now = time.time()
        defaults = dict(
            tenant_id="t1",
            owner_id="u1",
            name="Series",
            status=TaskStatus.TODO,
            created_at=now,
            updated_at=now,
            recurrence_rule="FREQ=DAILY",
        )
        defaults.update(kwargs)
        task = Task(id=next(self._ids), **defaults)
        self.tasks[task.id] = task
        return task

    # ---- TaskRepo ----

    def list_recurrence_roots(self, *, tenant_id=None, owner_id=None, task_id=None) -> list[Task]:
        self._enter("list_recurrence_roots")
        out = [
            t
            for t in self.tasks.values()
            if t.is_recurrence_root
            and self._owned(t, tenant_id, owner_id)
            and (task_id is None or t.id == task_id)
        ]
        return sorted(out, key=lambda t: (t.created_at, t.id), reverse=True)

    def list_instance_keys(
        self, parent_ids, *, start: date, end: date, tenant_id=None, owner_id=None
    ) -> set[tuple[int, date]]:
        self._enter("list_instance_keys")
        ids = set(parent_ids)
        return {
            (t.parent_task_id, t.do_date)
            for t in self.tasks.values()
            if t.parent_task_id in ids
            and t.do_date is not None
            and start <= t.do_date <= end
            and self._owned(t, tenant_id, owner_id)
        }

    def insert_instances(self, rows: Sequence[NewTask]) -> int:
        self._enter("insert_instances")
        taken = {(t.parent_task_id, t.do_date) for t in self.tasks.values() if t.parent_task_id}
        inserted = 0
        now = time.time()
        for r in rows:
            key = (r.parent_task_id, r.do_date)
            if key in taken:
                continue
            taken.add(key)
            tid = next(self._ids)
            self.tasks[tid] = Task(
                id=tid,
                tenant_id=r.tenant_id,
                owner_id=r.owner_id,
                name=r.name,
                status=r.status,
                created_at=now,
                updated_at=now,
                description=r.description,
                project_id=r.project_id,
                priority=r.priority,
                priority_level=r.priority_level,
                context=r.context,
                duration_minutes=r.duration_minutes,
                auto_schedule=r.auto_schedule,
                due_date=r.due_date,
                do_date=r.do_date,
                committed_date=r.committed_date,
                recurrence_rule=r.recurrence_rule,
                parent_task_id=r.parent_task_id,
                scheduling_metadata=r.scheduling_metadata,
            )
            inserted += 1
        return inserted

    def get_task(self, task_id: int, *, tenant_id=None, owner_id=None) -> Task | None:
        self._enter("get_task")
        t = self.tasks.get(task_id)
        return t if t is not None and self._owned(t, tenant_id, owner_id) else None

    def mark_committed(
        self, task_id: int, *, tenant_id: str, owner_id: str, day: date, auto_schedule: bool = False
    ) -> Task | None:
        self._enter("mark_committed")
        t = self.tasks.get(task_id)
        if t is None or not self._owned(t, tenant_id, owner_id):
            return None
        t = replace(
            t,
            committed_date=day,
            do_date=day,
            auto_schedule=True if auto_schedule else t.auto_schedule,
        )
        self.tasks[task_id] = t
        return t

    def clear_commitment(self, task_id: int, *, tenant_id: str, owner_id: str) -> Task | None:
        self._enter("clear_commitment")
        t = self.tasks.get(task_id)
        if t is None or not self._owned(t, tenant_id, owner_id):
            return None
        t = replace(t, committed_date=None, do_date=None, scheduled_block_id=None)
        self.tasks[task_id] = t
        return t

    def update_scheduling_metadata(
        self, task_id: int, meta: SchedulingMetadata, *, tenant_id: str, owner_id: str
    ) -> Task | None:
        self._enter("update_scheduling_metadata")
        t = self.tasks.get(task_id)
        if t is None or not self._owned(t, tenant_id, owner_id):
            return None
        t = replace(t, scheduling_metadata=meta)
        self.tasks[task_id] = t
        return t

    def delete_focus_block(self, block_id: int, *, tenant_id: str) -> bool:
        self._enter("delete_focus_block")
        if block_id in self.blocks:
            self.blocks.discard(block_id)
            return True
        return False
