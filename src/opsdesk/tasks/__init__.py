"""
Task subsystem.

Components:
- task_models.py: data structures (Task, NewTask, SchedulingMetadata, enums)
- task_errors.py: ValidationError / NotFoundError / StoreError
- task_store.py: SQLite-backed storage + query/update helpers
- recurrence.py: rule parsing, occurrence expansion, editor presets
- series_reconciler.py: materializes series instances for a window (idempotent)
- commit_lifecycle.py: commit a task to a day / move it back to the backlog
- reconcile_scheduler.py: periodic trigger for the reconciler
- task_api.py: small high-level helpers used by the rest of the app
"""
