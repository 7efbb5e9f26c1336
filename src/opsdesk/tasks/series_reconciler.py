# src/opsdesk/tasks/series_reconciler.py

from __future__ import annotations

"""
Series reconciler.

One pass over a scope of recurrence roots:
- loads the roots (no parent, has a rule),
- counts and skips paused series,
- expands each rule over the window,
- drops occurrence days that already have an instance (one batched lookup),
- inserts the remaining instances in one batch.

The same pass serves the periodic job (everyone) and on-demand calls (one owner,
optionally one series). Existing instances are re-read from the store on every pass,
so running it twice in a row creates nothing the second time.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from datetime import timezone as dt_timezone

from ..core.ports import TaskRepo
from .recurrence import expand
from .task_errors import ValidationError
from .task_models import NewTask, SchedulingMetadata, Task, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30

InstanceKey = tuple[int, date]


@dataclass(slots=True, frozen=True)
class DateWindow:
    """Inclusive [start, end] range of calendar days."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValidationError(
                f"window start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    @classmethod
    def from_today(cls, today: date, days: int = DEFAULT_WINDOW_DAYS) -> DateWindow:
        return cls(start=today, end=today + timedelta(days=max(0, int(days))))

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


@dataclass(slots=True, frozen=True)
class ReconcileScope:
    """
    Which roots a pass looks at.

    Everything None -> every tenant and owner (periodic mode).
    """

    tenant_id: str | None = None
    owner_id: str | None = None
    task_id: int | None = None

    @classmethod
    def everyone(cls) -> ReconcileScope:
        return cls()

    @classmethod
    def for_owner(cls, tenant_id: str, owner_id: str, task_id: int | None = None) -> ReconcileScope:
        if not tenant_id or not owner_id:
            raise ValidationError("tenant_id and owner_id are required")
        return cls(tenant_id=tenant_id, owner_id=owner_id, task_id=task_id)

    def __str__(self) -> str:
        if self.tenant_id is None and self.owner_id is None:
            return "all"
        s = f"{self.tenant_id}/{self.owner_id}"
        return s if self.task_id is None else f"{s}#{self.task_id}"


@dataclass(slots=True)
class ReconcileResult:
    created: int = 0
    skipped: int = 0
    paused_series: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "pausedSeries": self.paused_series,
        }


class DedupIndex:
    """Membership set of (parent_task_id, do_date) pairs that already have an instance."""

    def __init__(self, keys: Iterable[InstanceKey] = ()) -> None:
        self._keys: set[InstanceKey] = set(keys)

    @classmethod
    def load(
        cls,
        repo: TaskRepo,
        parent_ids: Iterable[int],
        window: DateWindow,
        scope: ReconcileScope,
    ) -> DedupIndex:
        ids = list(parent_ids)
        if not ids:
            return cls()
        keys = repo.list_instance_keys(
            ids,
            start=window.start,
            end=window.end,
            tenant_id=scope.tenant_id,
            owner_id=scope.owner_id,
        )
        return cls(keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def add(self, key: InstanceKey) -> None:
        self._keys.add(key)


class InstanceMaterializer:
    """Builds instance rows from a root: schedulable attributes copied, provenance stamped."""

    def __init__(self, generated_at: datetime) -> None:
        self._generated_at = generated_at.isoformat()

    def build(self, root: Task, occurrence: date) -> NewTask:
        return NewTask(
            tenant_id=root.tenant_id,
            owner_id=root.owner_id,
            project_id=root.project_id,
            name=root.name,
            description=root.description,
            status=TaskStatus.TODO,
            priority=root.priority,
            priority_level=root.priority_level,
            context=root.context or "house",
            duration_minutes=root.duration_minutes,
            auto_schedule=root.auto_schedule,
            due_date=occurrence,
            do_date=occurrence,
            committed_date=None,
            recurrence_rule=None,
            parent_task_id=root.id,
            scheduling_metadata=SchedulingMetadata(
                recurrence_parent_id=root.id,
                recurrence_generated_at=self._generated_at,
            ),
        )


def resolve_anchor(root: Task, *, tz: tzinfo, today: date) -> date:
    """
    Phase reference of a series.

    The anchor stored at creation wins; older roots without one fall back to do_date,
    then due_date, then the day the root was created.
    """
    if root.scheduling_metadata.recurrence_anchor is not None:
        return root.scheduling_metadata.recurrence_anchor
    if root.do_date is not None:
        return root.do_date
    if root.due_date is not None:
        return root.due_date
    if root.created_at > 0:
        return datetime.fromtimestamp(root.created_at, tz).date()
    return today


class SeriesReconciler:
    def __init__(
        self,
        repo: TaskRepo,
        *,
        tz: tzinfo | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._tz = tz or dt_timezone.utc
        self._window_days = int(window_days)
        self._clock = clock or (lambda: datetime.now(self._tz))

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        now = self.now()
        if now.tzinfo is not None:
            now = now.astimezone(self._tz)
        return now.date()

    def default_window(self) -> DateWindow:
        return DateWindow.from_today(self.today(), self._window_days)

    # ---- entry points ----

    def run_for_everyone(self, window: DateWindow | None = None) -> ReconcileResult:
        """Periodic mode: every tenant, every owner."""
        return self.reconcile(ReconcileScope.everyone(), window)

    def run_for_owner(
        self,
        tenant_id: str,
        owner_id: str,
        *,
        task_id: int | None = None,
        window: DateWindow | None = None,
    ) -> ReconcileResult:
        """On-demand mode: one owner, optionally one series."""
        return self.reconcile(ReconcileScope.for_owner(tenant_id, owner_id, task_id), window)

    # ---- the pass ----

    def reconcile(self, scope: ReconcileScope, window: DateWindow | None = None) -> ReconcileResult:
        """
        Materialize missing instances for every active root in `scope`.

        Store failures (root listing, instance lookup, batch insert) propagate as StoreError
        and nothing is reported for the pass; a root with an unusable rule only contributes
        zero occurrences.
        """
        window = window or self.default_window()
        now = self.now()
        today = self.today()
        result = ReconcileResult()

        roots = self._repo.list_recurrence_roots(
            tenant_id=scope.tenant_id,
            owner_id=scope.owner_id,
            task_id=scope.task_id,
        )

        active: list[Task] = []
        for root in roots:
            if root.recurrence_paused:
                result.paused_series += 1
                continue
            active.append(root)

        index = DedupIndex.load(self._repo, (r.id for r in active), window, scope)
        materializer = InstanceMaterializer(now)

        pending: list[NewTask] = []
        for root in active:
            anchor = resolve_anchor(root, tz=self._tz, today=today)
            for occurrence in expand(root.recurrence_rule, window.start, window.end, anchor=anchor):
                key = (root.id, occurrence)
                if key in index:
                    result.skipped += 1
                    continue
                index.add(key)
                pending.append(materializer.build(root, occurrence))

        if pending:
            inserted = self._repo.insert_instances(pending)
            result.created = inserted
            # Rows another pass inserted first were ignored by the store.
            result.skipped += len(pending) - inserted

        logger.info(
            "Recurring reconcile scope=%s window=%s roots=%d created=%d skipped=%d paused=%d",
            scope,
            window,
            len(roots),
            result.created,
            result.skipped,
            result.paused_series,
        )
        return result
