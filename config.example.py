# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Use:
- .env (local, gitignored)
- config_local.py (local safe overrides, gitignored)

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "OPSDESK_APP_NAME": "App display name (default: opsdesk).",
    "OPSDESK_LOG_LEVEL": "Console logging level (default: INFO).",
    # Connectors
    "OPSDESK_CONSOLE_ENABLED": "Enable console connector (true/false).",
    # Identity used by the console
    "OPSDESK_TENANT_ID": "Tenant the console acts in (default: default).",
    "OPSDESK_OWNER_ID": "Owner the console acts as (default: me).",
    # Paths (gitignored)
    "OPSDESK_DATA_DIR": "Local data directory, also holds opsdesk.log (default: .local/opsdesk).",
    "OPSDESK_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    # Recurring tasks
    "OPSDESK_TIMEZONE": "IANA zone used for 'today' and window defaults (default: UTC).",
    "OPSDESK_RECURRENCE_WINDOW_DAYS": "Default window length in days after today (default: 30).",
    "OPSDESK_RECONCILE_ENABLED": "Run the periodic reconciler in the background (true/false).",
    "OPSDESK_RECONCILE_INTERVAL_SECONDS": "Seconds between periodic passes (default: 3600).",
}
