# src/opsdesk/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the task engine.

The reconciler and the commit lifecycle depend on Protocols instead of the concrete SQLite
store. This keeps the store swappable and makes testing easier (see tests/fakes.py).
"""

from collections.abc import Iterable, Sequence
from datetime import date
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import NewTask, SchedulingMetadata, Task


class TaskRepo(Protocol):
    # Reconciler API
    def list_recurrence_roots(
            self,
            *,
            tenant_id: str | None = None,
            owner_id: str | None = None,
            task_id: int | None = None,
    ) -> list[Task]: ...

    def list_instance_keys(
            self,
            parent_ids: Iterable[int],
            *,
            start: date,
            end: date,
            tenant_id: str | None = None,
            owner_id: str | None = None,
    ) -> set[tuple[int, date]]: ...

    def insert_instances(self, rows: Sequence[NewTask]) -> int: ...

    # Single-task API (owner-scoped)
    def get_task(
            self,
            task_id: int,
            *,
            tenant_id: str | None = None,
            owner_id: str | None = None,
    ) -> Task | None: ...

    def mark_committed(
            self,
            task_id: int,
            *,
            tenant_id: str,
            owner_id: str,
            day: date,
            auto_schedule: bool = False,
    ) -> Task | None: ...

    def clear_commitment(self, task_id: int, *, tenant_id: str, owner_id: str) -> Task | None: ...

    def update_scheduling_metadata(
            self,
            task_id: int,
            meta: SchedulingMetadata,
            *,
            tenant_id: str,
            owner_id: str,
    ) -> Task | None: ...

    # Calendar blocks (owned by the scheduling side)
    def delete_focus_block(self, block_id: int, *, tenant_id: str) -> bool: ...
