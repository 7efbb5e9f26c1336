# src/opsdesk/tasks/commit_lifecycle.py

from __future__ import annotations

"""
Commit / uncommit: move one task between the backlog and a specific day.

- commit:   committed_date = do_date = day (today by default); optionally marks the task
            for the auto-scheduler, which picks a time block later on its own cadence.
- uncommit: clears committed_date, do_date and scheduled_block_id, then deletes the
            calendar block the task was placed in. The block deletion is advisory: if it
            fails, the task stays uncommitted and the failure is only logged.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, tzinfo
from datetime import timezone as dt_timezone
from typing import Any

from ..core.ports import TaskRepo
from .task_errors import NotFoundError, StoreError, ValidationError
from .task_models import OwnerScope, Task

logger = logging.getLogger(__name__)


def require_task_id(task_id: Any) -> int:
    if task_id is None or (isinstance(task_id, str) and not task_id.strip()):
        raise ValidationError("task_id is required")
    if isinstance(task_id, bool):
        raise ValidationError("task_id must be an integer")
    try:
        return int(task_id)
    except (TypeError, ValueError):
        raise ValidationError(f"task_id must be an integer, got {task_id!r}") from None


def parse_day(value: date | str | None, *, field: str = "date") -> date | None:
    """Accept a date, an ISO date string, or an ISO datetime string (date part is used)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text.split("T")[0])
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD), got {value!r}") from None


class CommitLifecycle:
    def __init__(
        self,
        repo: TaskRepo,
        *,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._tz = tz or dt_timezone.utc
        self._clock = clock or (lambda: datetime.now(self._tz))

    def today(self) -> date:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(self._tz)
        return now.date()

    def _load_owned(self, owner: OwnerScope, task_id: int) -> Task:
        task = self._repo.get_task(task_id, tenant_id=owner.tenant_id, owner_id=owner.owner_id)
        if task is None:
            raise NotFoundError()
        return task

    def commit(
        self,
        owner: OwnerScope,
        task_id: Any,
        day: date | str | None = None,
        *,
        auto_schedule: bool = False,
    ) -> Task:
        tid = require_task_id(task_id)
        commit_day = parse_day(day) or self.today()

        existing = self._load_owned(owner, tid)
        updated = self._repo.mark_committed(
            tid,
            tenant_id=owner.tenant_id,
            owner_id=owner.owner_id,
            day=commit_day,
            auto_schedule=bool(auto_schedule),
        )
        if updated is None:
            raise NotFoundError()

        logger.info(
            "Committed task %s %r to %s (auto_schedule=%s)",
            tid,
            existing.name,
            commit_day.isoformat(),
            bool(auto_schedule),
        )
        return updated

    def uncommit(self, owner: OwnerScope, task_id: Any) -> Task:
        tid = require_task_id(task_id)

        existing = self._load_owned(owner, tid)
        updated = self._repo.clear_commitment(tid, tenant_id=owner.tenant_id, owner_id=owner.owner_id)
        if updated is None:
            raise NotFoundError()

        block_id = existing.scheduled_block_id
        if block_id is not None:
            try:
                deleted = self._repo.delete_focus_block(block_id, tenant_id=owner.tenant_id)
            except StoreError:
                logger.warning(
                    "Task %s uncommitted but its block %s could not be deleted",
                    tid,
                    block_id,
                    exc_info=True,
                )
            else:
                if not deleted:
                    logger.debug("Block %s of task %s was already gone", block_id, tid)

        logger.info("Moved task %s %r back to backlog", tid, existing.name)
        return updated
