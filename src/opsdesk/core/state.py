# src/opsdesk/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..tasks.commit_lifecycle import CommitLifecycle
from ..tasks.series_reconciler import SeriesReconciler
from ..tasks.task_models import OwnerScope
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings object (config.Settings, or a SimpleNamespace in tests).
    settings: Any

    task_store: TaskStore
    reconciler: SeriesReconciler
    commits: CommitLifecycle

    # Identity used by the console connector.
    owner: OwnerScope

    # Serializes command handling between connectors.
    lock: threading.Lock = field(default_factory=threading.Lock)
