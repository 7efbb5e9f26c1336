# src/opsdesk/tasks/task_errors.py

"""
Error taxonomy for the task engine.

- ValidationError: caller input is missing or malformed; raised before any store access.
- NotFoundError: the task does not exist or is not owned by the caller (never distinguished).
- StoreError: the store failed; wraps the underlying sqlite3 error.
"""

from __future__ import annotations


class TaskError(Exception):
    """Base class for task engine errors."""


class ValidationError(TaskError, ValueError):
    pass


class NotFoundError(TaskError, LookupError):
    def __init__(self, message: str = "Task not found") -> None:
        super().__init__(message)


class StoreError(TaskError, RuntimeError):
    pass
