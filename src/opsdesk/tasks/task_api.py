# src/opsdesk/tasks/task_api.py

from __future__ import annotations

"""
Request-scoped entry points.

Thin helpers over AppState used by connectors (console commands) and by anything else that
acts on behalf of one owner. Every helper validates its input before touching the store.
"""

import logging
from datetime import date
from typing import Any

from ..core.state import AppState
from .commit_lifecycle import parse_day, require_task_id
from .recurrence import RecurrenceRule, RecurrenceRuleError
from .series_reconciler import DateWindow, ReconcileResult
from .task_errors import NotFoundError, ValidationError
from .task_models import (
    NewTask,
    OwnerScope,
    SchedulingMetadata,
    Task,
    TaskStatus,
    resolve_priority,
)

logger = logging.getLogger(__name__)


def _window(state: AppState, start: date | str | None, end: date | str | None) -> DateWindow:
    default = state.reconciler.default_window()
    s = parse_day(start, field="from") or default.start
    e = parse_day(end, field="to")
    if e is None:
        e = DateWindow.from_today(s, getattr(state.settings, "recurrence_window_days", 30)).end
    return DateWindow(start=s, end=e)


def create_task(
    state: AppState,
    owner: OwnerScope,
    *,
    name: str,
    description: str | None = None,
    project_id: str | None = None,
    priority: str | None = None,
    priority_level: str | None = None,
    context: str | None = None,
    duration_minutes: int | None = None,
    auto_schedule: bool | None = None,
    due_date: date | str | None = None,
    do_date: date | str | None = None,
    recurrence_rule: str | None = None,
) -> Task:
    """
    Create a one-off task or a recurrence root.

    A recurrence root always gets a persisted anchor: when neither do_date nor due_date is
    given, do_date is set to today. The anchor is also stored in scheduling_metadata, so
    committing or uncommitting the root later does not shift the series phase.
    """
    if not name or not name.strip():
        raise ValidationError("name is required")

    rule = (recurrence_rule or "").strip() or None
    if rule is not None:
        try:
            RecurrenceRule.parse(rule)
        except RecurrenceRuleError as e:
            raise ValidationError(f"invalid recurrence_rule: {e}") from e

    due = parse_day(due_date, field="due_date")
    do = parse_day(do_date, field="do_date")
    if rule is not None and due is None and do is None:
        do = state.reconciler.today()
    meta = SchedulingMetadata()
    if rule is not None:
        meta.recurrence_anchor = do or due

    p, level = resolve_priority(priority, priority_level)
    new = NewTask(
        tenant_id=owner.tenant_id,
        owner_id=owner.owner_id,
        name=name.strip(),
        description=description or None,
        project_id=project_id or None,
        status=TaskStatus.TODO,
        priority=p,
        priority_level=level,
        context=context or "house",
        duration_minutes=30 if duration_minutes is None else int(duration_minutes),
        auto_schedule=True if auto_schedule is None else bool(auto_schedule),
        due_date=due,
        do_date=do,
        recurrence_rule=rule,
        scheduling_metadata=meta,
    )
    task_id = state.task_store.add_task(new)
    task = state.task_store.get_task(task_id, tenant_id=owner.tenant_id, owner_id=owner.owner_id)
    if task is None:
        raise NotFoundError()
    logger.info("Created task %s %r rule=%s", task_id, task.name, rule)
    return task


def list_recurring_series(state: AppState, owner: OwnerScope) -> list[Task]:
    return state.task_store.list_recurrence_roots(
        tenant_id=owner.tenant_id, owner_id=owner.owner_id
    )


def list_series_instances(
    state: AppState,
    owner: OwnerScope,
    task_id: Any,
    *,
    start: date | str | None = None,
    end: date | str | None = None,
) -> list[Task]:
    tid = require_task_id(task_id)
    window = _window(state, start, end)
    return state.task_store.list_instances(
        tid,
        start=window.start,
        end=window.end,
        tenant_id=owner.tenant_id,
        owner_id=owner.owner_id,
    )


def set_series_paused(state: AppState, owner: OwnerScope, task_id: Any, paused: bool) -> Task:
    """Pause or resume a series; every other metadata key is preserved."""
    tid = require_task_id(task_id)
    roots = state.task_store.list_recurrence_roots(
        tenant_id=owner.tenant_id, owner_id=owner.owner_id, task_id=tid
    )
    if not roots:
        raise NotFoundError()

    meta = roots[0].scheduling_metadata
    meta.recurrence_paused = bool(paused)
    updated = state.task_store.update_scheduling_metadata(
        tid, meta, tenant_id=owner.tenant_id, owner_id=owner.owner_id
    )
    if updated is None:
        raise NotFoundError()
    logger.info("Series %s %s", tid, "paused" if paused else "resumed")
    return updated


def expand_recurring_for_owner(
    state: AppState,
    owner: OwnerScope,
    *,
    task_id: Any = None,
    start: date | str | None = None,
    end: date | str | None = None,
) -> ReconcileResult:
    """On-demand reconcile for one owner (optionally one series)."""
    tid = require_task_id(task_id) if task_id not in (None, "") else None
    window = _window(state, start, end)
    return state.reconciler.run_for_owner(
        owner.tenant_id, owner.owner_id, task_id=tid, window=window
    )


def run_recurring_for_everyone(state: AppState) -> ReconcileResult:
    return state.reconciler.run_for_everyone()


def commit_task(
    state: AppState,
    owner: OwnerScope,
    task_id: Any,
    day: date | str | None = None,
    *,
    auto_schedule: bool = False,
) -> Task:
    return state.commits.commit(owner, task_id, day, auto_schedule=auto_schedule)


def uncommit_task(state: AppState, owner: OwnerScope, task_id: Any) -> Task:
    return state.commits.uncommit(owner, task_id)
