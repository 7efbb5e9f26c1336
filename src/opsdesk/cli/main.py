# src/opsdesk/cli/main.py

"""
CLI entrypoints.

main():
    initializes logging, builds AppState, then starts:
    - the periodic reconciler in a background thread (optional),
    - the console REPL in the main thread (optional).

reconcile_once():
    one reconcile pass for every owner, for cron-style schedulers. Prints the counts as JSON.
"""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging
from ..tasks.reconcile_scheduler import ReconcileBackgroundRunner, start_reconcile_in_background
from ..tasks.task_api import run_recurring_for_everyone
from ..tasks.task_errors import TaskError

logger = logging.getLogger(__name__)


def _configure_logging(settings) -> None:
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_dir = getattr(settings, "data_dir", ".local/opsdesk")
    setup_logging(log_dir=log_dir, console_level=console_level)


def main() -> None:
    settings = get_settings()
    _configure_logging(settings)

    logger.info("Starting %s...", getattr(settings, "app_name", "opsdesk"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    reconcile_runner: ReconcileBackgroundRunner | None = start_reconcile_in_background(state)

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError, AttributeError):
        # Not the main thread, or the platform lacks SIGTERM.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running the periodic reconciler only. Press Ctrl+C to stop.")
            stop_main.wait()

    finally:
        if reconcile_runner is not None:
            reconcile_runner.stop()
            reconcile_runner.join(timeout=10.0)

        # TaskStore uses short-lived sqlite connections per call; no explicit close required.
        logger.info("Bye.")


def reconcile_once() -> None:
    settings = get_settings()
    _configure_logging(settings)

    state = create_initial_state(settings=settings)
    try:
        result = run_recurring_for_everyone(state)
    except TaskError:
        logger.exception("Reconcile pass failed.")
        sys.exit(1)

    print(json.dumps(result.as_dict()))


if __name__ == "__main__":
    main()
