# src/opsdesk/tasks/reconcile_scheduler.py

from __future__ import annotations

"""
Periodic reconcile trigger.

A small polling loop that runs one reconcile pass for everyone every interval.
A failed pass is logged and the loop keeps going; the next tick is the retry.

The loop can also run in a background thread with its own event loop, so it can sit next
to the blocking console REPL.
"""

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..core.state import AppState
    from .series_reconciler import ReconcileResult

logger = logging.getLogger(__name__)


class EveryoneReconciler(Protocol):
    def run_for_everyone(self) -> ReconcileResult: ...


async def run_reconcile_scheduler(
        reconciler: EveryoneReconciler,
        *,
        interval_seconds: float = 3600.0,
        stop_event: asyncio.Event | None = None,
) -> None:
    """
    Every interval_seconds:
    - run reconciler.run_for_everyone() in a worker thread (the store is blocking sqlite)
    - log the counts, or log the failure and wait for the next tick

    Stops when stop_event is set, or when the coroutine is cancelled.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while stop_event is None or not stop_event.is_set():
        try:
            result = await asyncio.to_thread(reconciler.run_for_everyone)
            logger.debug("Periodic reconcile done: %s", result.as_dict())
        except Exception:
            logger.exception("Periodic reconcile pass failed")

        if stop_event is None:
            await asyncio.sleep(sleep_s)
            continue
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=sleep_s)

    logger.info("Periodic reconcile loop stopped.")


@dataclass(slots=True)
class ReconcileBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Failed to signal reconcile loop stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_reconcile_in_background(state: AppState) -> ReconcileBackgroundRunner | None:
    """
    Start the periodic reconciler in a background thread.

    Why a thread:
    - console REPL is blocking (input()).
    - the periodic loop is async and wants its own event loop.
    """
    settings = state.settings
    if not getattr(settings, "reconcile_enabled", True):
        logger.info("Periodic reconcile disabled, not starting.")
        return None

    interval = float(getattr(settings, "reconcile_interval_seconds", 3600.0))
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(
                run_reconcile_scheduler(
                    state.reconciler,
                    interval_seconds=interval,
                    stop_event=stop_event,
                )
            )
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="opsdesk-reconcile", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Reconcile thread did not initialize properly.")
        return None

    logger.info("Periodic reconcile started (every %.0fs).", interval)
    return ReconcileBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
