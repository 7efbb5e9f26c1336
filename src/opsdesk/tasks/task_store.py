# src/opsdesk/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator, Sequence
from datetime import date
from pathlib import Path
from typing import Any

from .task_errors import StoreError, ValidationError
from .task_models import (
    FocusBlock,
    NewTask,
    Priority,
    PriorityLevel,
    SchedulingMetadata,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

_INSERT_COLUMNS = (
    "tenant_id",
    "owner_id",
    "project_id",
    "name",
    "description",
    "status",
    "priority",
    "priority_level",
    "context",
    "duration_minutes",
    "auto_schedule",
    "due_date",
    "do_date",
    "committed_date",
    "recurrence_rule",
    "parent_task_id",
    "scheduling_metadata",
    "created_at",
    "updated_at",
)


class TaskStore:
    """
    SQLite task store.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Series uniqueness:
    - a unique index on (parent_task_id, do_date) makes "one instance per occurrence day"
      hold even when two reconcile passes race; batch inserts skip collisions
      on that index only (ON CONFLICT ... DO NOTHING).

    Thread-safety:
    - each method opens its own SQLite connection

    Every sqlite3.Error is re-raised as StoreError.
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._series_index = False
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except StoreError:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StoreError(f"cannot open task store {self._db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            with contextlib.suppress(sqlite3.Error):
                conn.rollback()
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    project_id TEXT,
                    name TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'todo',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    priority_level TEXT NOT NULL DEFAULT 'p3',
                    context TEXT NOT NULL DEFAULT 'house',
                    duration_minutes INTEGER NOT NULL DEFAULT 30,
                    auto_schedule INTEGER NOT NULL DEFAULT 1,
                    due_date TEXT,
                    do_date TEXT,
                    committed_date TEXT,
                    scheduled_block_id INTEGER,
                    recurrence_rule TEXT,
                    parent_task_id INTEGER,
                    scheduling_metadata TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS focus_blocks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    start_at TEXT NOT NULL,
                    end_at TEXT NOT NULL,
                    task_id INTEGER,
                    created_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("project_id", "TEXT")
            add_col("description", "TEXT")
            add_col("priority", "TEXT NOT NULL DEFAULT 'medium'")
            add_col("priority_level", "TEXT NOT NULL DEFAULT 'p3'")
            add_col("context", "TEXT NOT NULL DEFAULT 'house'")
            add_col("duration_minutes", "INTEGER NOT NULL DEFAULT 30")
            add_col("auto_schedule", "INTEGER NOT NULL DEFAULT 1")
            add_col("due_date", "TEXT")
            add_col("do_date", "TEXT")
            add_col("committed_date", "TEXT")
            add_col("scheduled_block_id", "INTEGER")
            add_col("recurrence_rule", "TEXT")
            add_col("parent_task_id", "INTEGER")
            add_col("scheduling_metadata", "TEXT NOT NULL DEFAULT '{}'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(tenant_id, owner_id)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_roots ON tasks(parent_task_id, recurrence_rule)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_blocks_tenant ON focus_blocks(tenant_id)")
            self._series_index = True
            try:
                cur.execute(
                    """
                    CREATE UNIQUE INDEX IF NOT EXISTS uq_tasks_series_day
                    ON tasks(parent_task_id, do_date)
                    WHERE parent_task_id IS NOT NULL AND do_date IS NOT NULL
                    """
                )
            except sqlite3.IntegrityError:
                # Older databases may already hold duplicate instances; keep running on the
                # in-process dedup check until they are cleaned up.
                self._series_index = False
                logger.warning(
                    "TaskStore: duplicate series instances exist in %s; "
                    "uq_tasks_series_day not created",
                    self._db_path,
                )

            conn.commit()

    @staticmethod
    def _meta_to_str(meta: SchedulingMetadata | None) -> str:
        if meta is None:
            return "{}"
        try:
            return json.dumps(meta.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError):
            logger.exception("Failed to JSON-encode scheduling_metadata; storing {}.")
            return "{}"

    @staticmethod
    def _str_to_meta(s: str | None) -> SchedulingMetadata:
        if not s:
            return SchedulingMetadata()
        try:
            val = json.loads(s)
        except ValueError:
            return SchedulingMetadata()
        return SchedulingMetadata.from_dict(val if isinstance(val, dict) else None)

    @staticmethod
    def _to_date(raw: str | None) -> date | None:
        if not raw:
            return None
        try:
            return date.fromisoformat(str(raw)[:10])
        except ValueError:
            return None

    @staticmethod
    def _from_date(d: date | None) -> str | None:
        return d.isoformat() if d is not None else None

    @staticmethod
    def _scope_filters(
        tenant_id: str | None, owner_id: str | None
    ) -> tuple[list[str], list[Any]]:
        where: list[str] = []
        params: list[Any] = []
        if tenant_id is not None:
            where.append("tenant_id = ?")
            params.append(tenant_id)
        if owner_id is not None:
            where.append("owner_id = ?")
            params.append(owner_id)
        return where, params

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            tenant_id=str(row["tenant_id"]),
            owner_id=str(row["owner_id"]),
            name=str(row["name"] or ""),
            status=TaskStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            description=row["description"],
            project_id=row["project_id"],
            priority=Priority.from_db(row["priority"]),
            priority_level=PriorityLevel.from_db(row["priority_level"]),
            context=str(row["context"] or "house"),
            duration_minutes=int(row["duration_minutes"] if row["duration_minutes"] is not None else 30),
            auto_schedule=bool(row["auto_schedule"]),
            due_date=self._to_date(row["due_date"]),
            do_date=self._to_date(row["do_date"]),
            committed_date=self._to_date(row["committed_date"]),
            scheduled_block_id=(
                int(row["scheduled_block_id"]) if row["scheduled_block_id"] is not None else None
            ),
            recurrence_rule=row["recurrence_rule"],
            parent_task_id=int(row["parent_task_id"]) if row["parent_task_id"] is not None else None,
            scheduling_metadata=self._str_to_meta(row["scheduling_metadata"]),
        )

    @staticmethod
    def _row_to_block(row: sqlite3.Row) -> FocusBlock:
        return FocusBlock(
            id=int(row["id"]),
            tenant_id=str(row["tenant_id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"] or ""),
            start_at=str(row["start_at"]),
            end_at=str(row["end_at"]),
            task_id=int(row["task_id"]) if row["task_id"] is not None else None,
            created_at=float(row["created_at"] or 0.0),
        )

    def _new_task_params(self, new: NewTask, now: float) -> tuple[Any, ...]:
        return (
            new.tenant_id,
            new.owner_id,
            new.project_id,
            new.name.strip(),
            new.description,
            new.status.value,
            new.priority.value,
            new.priority_level.value,
            new.context or "house",
            int(new.duration_minutes),
            1 if new.auto_schedule else 0,
            self._from_date(new.due_date),
            self._from_date(new.do_date),
            self._from_date(new.committed_date),
            new.recurrence_rule,
            new.parent_task_id,
            self._meta_to_str(new.scheduling_metadata),
            now,
            now,
        )

    def _fetch_task(
        self,
        conn: sqlite3.Connection,
        task_id: int,
        *,
        tenant_id: str | None,
        owner_id: str | None,
    ) -> Task | None:
        where, params = self._scope_filters(tenant_id, owner_id)
        where.insert(0, "id = ?")
        params.insert(0, int(task_id))
        cur = conn.execute(f"SELECT * FROM tasks WHERE {' AND '.join(where)}", params)
        row = cur.fetchone()
        return self._row_to_task(row) if row else None

    # ---- public API: tasks ----

    def count_tasks(self) -> int:
        with self._session() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def add_task(self, new: NewTask) -> int:
        if not new.name or not new.name.strip():
            raise ValidationError("name is required")
        if not new.tenant_id or not new.owner_id:
            raise ValidationError("tenant_id and owner_id are required")
        if new.parent_task_id is not None and new.recurrence_rule:
            raise ValidationError("a series instance cannot carry its own recurrence_rule")

        now = time.time()
        placeholders = ", ".join("?" for _ in _INSERT_COLUMNS)
        with self._session() as conn:
            cur = conn.execute(
                f"INSERT INTO tasks({', '.join(_INSERT_COLUMNS)}) VALUES ({placeholders})",
                self._new_task_params(new, now),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise StoreError("SQLite did not return lastrowid for tasks insert")
            task_id = int(rowid)
        logger.debug(
            "Task added id=%s owner=%s/%s rule=%s parent=%s",
            task_id,
            new.tenant_id,
            new.owner_id,
            new.recurrence_rule,
            new.parent_task_id,
        )
        return task_id

    def get_task(
        self,
        task_id: int,
        *,
        tenant_id: str | None = None,
        owner_id: str | None = None,
    ) -> Task | None:
        with self._session() as conn:
            return self._fetch_task(conn, task_id, tenant_id=tenant_id, owner_id=owner_id)

    def list_recurrence_roots(
        self,
        *,
        tenant_id: str | None = None,
        owner_id: str | None = None,
        task_id: int | None = None,
    ) -> list[Task]:
        """
        Series roots: no parent and a non-empty recurrence_rule.

        Paused roots are included; the caller decides what to do with them.
        Newest first.
        """
        where, params = self._scope_filters(tenant_id, owner_id)
        where[:0] = [
            "parent_task_id IS NULL",
            "recurrence_rule IS NOT NULL",
            "TRIM(recurrence_rule) != ''",
        ]
        if task_id is not None:
            where.append("id = ?")
            params.append(int(task_id))

        with self._session() as conn:
            cur = conn.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE {' AND '.join(where)}
                ORDER BY created_at DESC, id DESC
                """,
                params,
            )
            return [self._row_to_task(r) for r in cur.fetchall()]

    def list_instance_keys(
        self,
        parent_ids: Iterable[int],
        *,
        start: date,
        end: date,
        tenant_id: str | None = None,
        owner_id: str | None = None,
    ) -> set[tuple[int, date]]:
        """
        (parent_task_id, do_date) pairs of existing instances inside [start, end].

        One query for the whole parent set: the ids are bound as a single JSON array.
        """
        ids = sorted({int(p) for p in parent_ids})
        if not ids:
            return set()

        where, params = self._scope_filters(tenant_id, owner_id)
        where[:0] = [
            "parent_task_id IN (SELECT value FROM json_each(?))",
            "do_date >= ?",
            "do_date <= ?",
        ]
        params[:0] = [json.dumps(ids), start.isoformat(), end.isoformat()]

        with self._session() as conn:
            cur = conn.execute(
                f"SELECT parent_task_id, do_date FROM tasks WHERE {' AND '.join(where)}",
                params,
            )
            out: set[tuple[int, date]] = set()
            for row in cur.fetchall():
                d = self._to_date(row["do_date"])
                if d is not None:
                    out.add((int(row["parent_task_id"]), d))
            return out

    def insert_instances(self, rows: Sequence[NewTask]) -> int:
        """
        Insert series instances in one transaction.

        Rows colliding with an existing (parent_task_id, do_date) are skipped; any other
        constraint failure aborts the whole batch as StoreError.
        Returns the number of rows actually inserted.
        """
        if not rows:
            return 0
        for r in rows:
            if r.parent_task_id is None:
                raise ValidationError("series instances need a parent_task_id")
            if r.recurrence_rule:
                raise ValidationError("a series instance cannot carry its own recurrence_rule")

        now = time.time()
        params = [self._new_task_params(r, now) for r in rows]
        placeholders = ", ".join("?" for _ in _INSERT_COLUMNS)
        sql = f"INSERT INTO tasks({', '.join(_INSERT_COLUMNS)}) VALUES ({placeholders})"
        if self._series_index:
            sql += (
                " ON CONFLICT(parent_task_id, do_date)"
                " WHERE parent_task_id IS NOT NULL AND do_date IS NOT NULL DO NOTHING"
            )

        with self._session() as conn:
            before = conn.total_changes
            conn.executemany(sql, params)
            conn.commit()
            inserted = conn.total_changes - before

        if inserted < len(rows):
            logger.info(
                "insert_instances: %d of %d rows already existed (ignored)",
                len(rows) - inserted,
                len(rows),
            )
        return inserted

    def list_instances(
        self,
        parent_id: int,
        *,
        start: date,
        end: date,
        tenant_id: str | None = None,
        owner_id: str | None = None,
    ) -> list[Task]:
        where, params = self._scope_filters(tenant_id, owner_id)
        where[:0] = ["parent_task_id = ?", "do_date >= ?", "do_date <= ?"]
        params[:0] = [int(parent_id), start.isoformat(), end.isoformat()]

        with self._session() as conn:
            cur = conn.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE {' AND '.join(where)}
                ORDER BY do_date ASC, id ASC
                """,
                params,
            )
            return [self._row_to_task(r) for r in cur.fetchall()]

    def update_scheduling_metadata(
        self,
        task_id: int,
        meta: SchedulingMetadata,
        *,
        tenant_id: str,
        owner_id: str,
    ) -> Task | None:
        with self._session() as conn:
            cur = conn.execute(
                """
                UPDATE tasks
                SET scheduling_metadata = ?, updated_at = ?
                WHERE id = ? AND tenant_id = ? AND owner_id = ?
                """,
                (self._meta_to_str(meta), time.time(), int(task_id), tenant_id, owner_id),
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            return self._fetch_task(conn, task_id, tenant_id=tenant_id, owner_id=owner_id)

    def mark_committed(
        self,
        task_id: int,
        *,
        tenant_id: str,
        owner_id: str,
        day: date,
        auto_schedule: bool = False,
    ) -> Task | None:
        """
        committed_date = do_date = day.

        auto_schedule only ever switches the flag on; the existing scheduled block is left
        for the auto-scheduler to reconsider.
        """
        fields = ["committed_date = ?", "do_date = ?", "updated_at = ?"]
        params: list[Any] = [day.isoformat(), day.isoformat(), time.time()]
        if auto_schedule:
            fields.append("auto_schedule = 1")
        params.extend([int(task_id), tenant_id, owner_id])

        with self._session() as conn:
            cur = conn.execute(
                f"UPDATE tasks SET {', '.join(fields)} WHERE id = ? AND tenant_id = ? AND owner_id = ?",
                params,
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            return self._fetch_task(conn, task_id, tenant_id=tenant_id, owner_id=owner_id)

    def clear_commitment(self, task_id: int, *, tenant_id: str, owner_id: str) -> Task | None:
        """Back to backlog: committed_date, do_date and scheduled_block_id all cleared."""
        with self._session() as conn:
            cur = conn.execute(
                """
                UPDATE tasks
                SET committed_date = NULL,
                    do_date = NULL,
                    scheduled_block_id = NULL,
                    updated_at = ?
                WHERE id = ? AND tenant_id = ? AND owner_id = ?
                """,
                (time.time(), int(task_id), tenant_id, owner_id),
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            return self._fetch_task(conn, task_id, tenant_id=tenant_id, owner_id=owner_id)

    def assign_scheduled_block(self, task_id: int, block_id: int | None, *, tenant_id: str) -> bool:
        """Write port for the auto-scheduler: link a task to the block it was placed in."""
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE tasks SET scheduled_block_id = ?, updated_at = ? WHERE id = ? AND tenant_id = ?",
                (block_id, time.time(), int(task_id), tenant_id),
            )
            conn.commit()
            return cur.rowcount == 1

    # ---- public API: calendar blocks ----

    def add_focus_block(
        self,
        *,
        tenant_id: str,
        owner_id: str,
        start_at: str,
        end_at: str,
        title: str = "",
        task_id: int | None = None,
    ) -> int:
        with self._session() as conn:
            cur = conn.execute(
                """
                INSERT INTO focus_blocks(tenant_id, owner_id, title, start_at, end_at, task_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (tenant_id, owner_id, title, start_at, end_at, task_id, time.time()),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise StoreError("SQLite did not return lastrowid for focus_blocks insert")
            return int(rowid)

    def get_focus_block(self, block_id: int, *, tenant_id: str | None = None) -> FocusBlock | None:
        where, params = self._scope_filters(tenant_id, None)
        where.insert(0, "id = ?")
        params.insert(0, int(block_id))
        with self._session() as conn:
            row = conn.execute(
                f"SELECT * FROM focus_blocks WHERE {' AND '.join(where)}", params
            ).fetchone()
            return self._row_to_block(row) if row else None

    def delete_focus_block(self, block_id: int, *, tenant_id: str) -> bool:
        with self._session() as conn:
            cur = conn.execute(
                "DELETE FROM focus_blocks WHERE id = ? AND tenant_id = ?",
                (int(block_id), tenant_id),
            )
            conn.commit()
            return cur.rowcount == 1
