# src/opsdesk/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.TODO
        try:
            return cls(raw)
        except ValueError:
            return cls.TODO


class Priority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


class PriorityLevel(StrEnum):
    """Reclaim-style level: p1 = critical ... p4 = low."""

    P1 = "p1"
    P2 = "p2"
    P3 = "p3"
    P4 = "p4"

    @classmethod
    def from_db(cls, raw: str | None) -> PriorityLevel:
        if not raw:
            return cls.P3
        try:
            return cls(raw)
        except ValueError:
            return cls.P3


PRIORITY_FROM_LEVEL: dict[PriorityLevel, Priority] = {
    PriorityLevel.P1: Priority.CRITICAL,
    PriorityLevel.P2: Priority.HIGH,
    PriorityLevel.P3: Priority.MEDIUM,
    PriorityLevel.P4: Priority.LOW,
}

PRIORITY_LEVEL_FROM_PRIORITY: dict[Priority, PriorityLevel] = {
    p: level for level, p in PRIORITY_FROM_LEVEL.items()
}


def resolve_priority(
    priority: str | None, priority_level: str | None
) -> tuple[Priority, PriorityLevel]:
    """
    Fill whichever half of (priority, priority_level) is missing from the other.

    Nothing given -> (medium, p3).
    """
    if priority and priority_level:
        return Priority.from_db(priority), PriorityLevel.from_db(priority_level)
    if priority_level:
        level = PriorityLevel.from_db(priority_level)
        return PRIORITY_FROM_LEVEL[level], level
    p = Priority.from_db(priority)
    return p, PRIORITY_LEVEL_FROM_PRIORITY[p]


@dataclass(slots=True)
class SchedulingMetadata:
    """
    Side-state attached to a task.

    Recognized keys are explicit fields; anything else written by other components
    (auto-scheduler bookkeeping such as last_scheduled_at / at_risk) is kept in `extra`
    and written back untouched.
    """

    recurrence_paused: bool = False
    recurrence_anchor: date | None = None
    recurrence_parent_id: int | None = None
    recurrence_generated_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = (
        "recurrence_paused",
        "recurrence_anchor",
        "recurrence_parent_id",
        "recurrence_generated_at",
    )

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> SchedulingMetadata:
        if not raw:
            return cls()
        parent_raw = raw.get("recurrence_parent_id")
        try:
            parent_id = int(parent_raw) if parent_raw is not None else None
        except (TypeError, ValueError):
            parent_id = None
        try:
            anchor = date.fromisoformat(str(raw["recurrence_anchor"])[:10])
        except (KeyError, ValueError):
            anchor = None
        generated = raw.get("recurrence_generated_at")
        return cls(
            recurrence_paused=bool(raw.get("recurrence_paused", False)),
            recurrence_anchor=anchor,
            recurrence_parent_id=parent_id,
            recurrence_generated_at=str(generated) if generated else None,
            extra={k: v for k, v in raw.items() if k not in cls._KNOWN},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        if self.recurrence_paused:
            out["recurrence_paused"] = True
        if self.recurrence_anchor is not None:
            out["recurrence_anchor"] = self.recurrence_anchor.isoformat()
        if self.recurrence_parent_id is not None:
            out["recurrence_parent_id"] = self.recurrence_parent_id
        if self.recurrence_generated_at:
            out["recurrence_generated_at"] = self.recurrence_generated_at
        return out


@dataclass(frozen=True, slots=True)
class OwnerScope:
    """Who is asking: tenant + owning user. Every owner-scoped read/write is filtered by both."""

    tenant_id: str
    owner_id: str


@dataclass(slots=True)
class Task:
    id: int
    tenant_id: str
    owner_id: str
    name: str
    status: TaskStatus
    created_at: float
    updated_at: float

    description: str | None = None
    project_id: str | None = None
    priority: Priority = Priority.MEDIUM
    priority_level: PriorityLevel = PriorityLevel.P3
    context: str = "house"
    duration_minutes: int = 30
    auto_schedule: bool = True

    due_date: date | None = None
    do_date: date | None = None
    committed_date: date | None = None
    scheduled_block_id: int | None = None

    recurrence_rule: str | None = None
    parent_task_id: int | None = None
    scheduling_metadata: SchedulingMetadata = field(default_factory=SchedulingMetadata)

    @property
    def is_recurrence_root(self) -> bool:
        return self.parent_task_id is None and bool((self.recurrence_rule or "").strip())

    @property
    def is_committed(self) -> bool:
        return self.committed_date is not None

    @property
    def recurrence_paused(self) -> bool:
        return self.scheduling_metadata.recurrence_paused


@dataclass(slots=True)
class NewTask:
    """A task row that has not been inserted yet (no id, no timestamps)."""

    tenant_id: str
    owner_id: str
    name: str

    description: str | None = None
    project_id: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    priority_level: PriorityLevel = PriorityLevel.P3
    context: str = "house"
    duration_minutes: int = 30
    auto_schedule: bool = True

    due_date: date | None = None
    do_date: date | None = None
    committed_date: date | None = None

    recurrence_rule: str | None = None
    parent_task_id: int | None = None
    scheduling_metadata: SchedulingMetadata = field(default_factory=SchedulingMetadata)


@dataclass(slots=True)
class FocusBlock:
    """A calendar time block owned by the scheduling side; tasks link to it via scheduled_block_id."""

    id: int
    tenant_id: str
    owner_id: str
    title: str
    start_at: str
    end_at: str
    task_id: int | None
    created_at: float
