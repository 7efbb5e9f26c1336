# src/opsdesk/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store, the reconciler and the commit lifecycle into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings, load_timezone
from ..core.state import AppState
from ..tasks.commit_lifecycle import CommitLifecycle
from ..tasks.series_reconciler import SeriesReconciler
from ..tasks.task_models import OwnerScope
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, clock=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the clock) injectable makes the app easier to test and avoids
    hidden global config reads. If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    tz = load_timezone(getattr(settings, "timezone", "UTC"))
    store = TaskStore(settings.tasks_db_path)

    state = AppState(
        settings=settings,
        task_store=store,
        reconciler=SeriesReconciler(
            store,
            tz=tz,
            window_days=getattr(settings, "recurrence_window_days", 30),
            clock=clock,
        ),
        commits=CommitLifecycle(store, tz=tz, clock=clock),
        owner=OwnerScope(tenant_id=settings.tenant_id, owner_id=settings.owner_id),
    )
    logger.debug("AppState ready tz=%s owner=%s", tz, state.owner)
    return state
