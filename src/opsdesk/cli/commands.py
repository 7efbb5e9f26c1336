# src/opsdesk/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import cast

from ..core.state import AppState
from ..tasks import task_api
from ..tasks.commit_lifecycle import parse_day
from ..tasks.recurrence import RecurrenceRuleError, build_rule, describe_rule
from ..tasks.task_errors import NotFoundError, StoreError, ValidationError
from ..tasks.task_models import OwnerScope, Task

CommandEmitter = Callable[[str], None]
CommandHandler3 = Callable[[AppState, list[str], OwnerScope], str]
CommandHandler4 = Callable[[AppState, list[str], OwnerScope, CommandEmitter | None], str]
CommandHandler = CommandHandler3 | CommandHandler4

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /expand, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        owner: OwnerScope | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Validation / not-found errors become the reply; store errors are logged.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        who = owner or state.owner

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 4

        try:
            if nparams >= 4:
                h4 = cast(CommandHandler4, handler)
                return h4(state, args, who, emit)
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, who)
        except (ValidationError, NotFoundError) as e:
            return f"Error: {e}"
        except StoreError:
            logger.exception("Store failure while handling /%s", name)
            return "Store error, see the log for details."

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _split_options(args: list[str], known: set[str]) -> tuple[dict[str, str], list[str]]:
    """Pull key=value tokens for known keys out of args; the rest stays in order."""
    opts: dict[str, str] = {}
    rest: list[str] = []
    for a in args:
        key, sep, value = a.partition("=")
        if sep and key.lower() in known:
            opts[key.lower()] = value
        else:
            rest.append(a)
    return opts, rest


def _format_task(t: Task) -> str:
    day = t.do_date.isoformat() if t.do_date else "backlog"
    flags = []
    if t.is_committed:
        flags.append("committed")
    if t.scheduled_block_id is not None:
        flags.append(f"block {t.scheduled_block_id}")
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return f"#{t.id} {day} {t.name}{suffix}"


def cmd_help(state: AppState, args: list[str], owner: OwnerScope) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], owner: OwnerScope) -> str:
    settings = state.settings
    window = state.reconciler.default_window()
    return (
        "Status:\n"
        f"  Owner: {owner.tenant_id}/{owner.owner_id}\n"
        f"  Timezone: {getattr(settings, 'timezone', 'UTC')}\n"
        f"  Default window: {window}\n"
        f"  Periodic reconcile: {'ON' if getattr(settings, 'reconcile_enabled', False) else 'OFF'}\n"
        f"  Tasks stored: {state.task_store.count_tasks()}"
    )


def cmd_add(state: AppState, args: list[str], owner: OwnerScope) -> str:
    """
    /add <name> [on=YYYY-MM-DD]
    """
    opts, rest = _split_options(args, {"on"})
    if not rest:
        return "Usage: /add <name> [on=YYYY-MM-DD]"
    task = task_api.create_task(state, owner, name=" ".join(rest), do_date=opts.get("on"))
    return f"Created task {_format_task(task)}"


def cmd_recur(
    state: AppState,
    args: list[str],
    owner: OwnerScope,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /recur <daily|weekdays|weekly|biweekly|monthly> [days=MO,WE] [until=YYYY-MM-DD]
           [start=YYYY-MM-DD] <name>
    """
    usage = (
        "Usage: /recur <daily|weekdays|weekly|biweekly|monthly> "
        "[days=MO,WE] [until=YYYY-MM-DD] [start=YYYY-MM-DD] <name>"
    )
    if len(args) < 2:
        return usage

    preset = args[0]
    opts, rest = _split_options(args[1:], {"days", "until", "start"})
    if not rest:
        return usage

    start = parse_day(opts.get("start"), field="start")
    try:
        rule = build_rule(
            preset,
            days=[d for d in opts.get("days", "").split(",") if d],
            until=parse_day(opts.get("until"), field="until"),
            base_date=start or state.reconciler.today(),
        )
    except RecurrenceRuleError as e:
        return f"Error: {e}"
    if rule is None:
        return "Preset 'none' creates no series; use /add for one-off tasks."

    task = task_api.create_task(
        state, owner, name=" ".join(rest), recurrence_rule=rule, do_date=start
    )
    if emit is not None:
        emit(f"[SERIES] Rule stored as {rule}")
    return f"Created series #{task.id} {task.name} ({describe_rule(rule)}). Use /expand {task.id} to generate."


def cmd_series(state: AppState, args: list[str], owner: OwnerScope) -> str:
    roots = task_api.list_recurring_series(state, owner)
    if not roots:
        return "No recurring series."
    lines = ["Recurring series:"]
    for t in roots:
        paused = " | paused" if t.recurrence_paused else ""
        anchor = t.scheduling_metadata.recurrence_anchor or t.do_date or t.due_date
        anchor_s = f" | from {anchor.isoformat()}" if anchor else ""
        lines.append(f"  #{t.id} {t.name} | {describe_rule(t.recurrence_rule)}{anchor_s}{paused}")
    return "\n".join(lines)


def cmd_instances(state: AppState, args: list[str], owner: OwnerScope) -> str:
    """
    /instances <id> [from] [to]
    """
    if not args:
        return "Usage: /instances <id> [from YYYY-MM-DD] [to YYYY-MM-DD]"
    start = args[1] if len(args) > 1 else None
    end = args[2] if len(args) > 2 else None
    items = task_api.list_series_instances(state, owner, args[0], start=start, end=end)
    if not items:
        return "No instances generated yet."
    return "\n".join(["Instances:"] + [f"  {_format_task(t)}" for t in items])


def cmd_expand(state: AppState, args: list[str], owner: OwnerScope) -> str:
    """
    /expand        -> generate instances for all of your series
    /expand <id>   -> only that series
    """
    task_id = args[0] if args else None
    result = task_api.expand_recurring_for_owner(state, owner, task_id=task_id)
    return (
        f"Created {result.created}, skipped {result.skipped} existing, "
        f"{result.paused_series} paused series."
    )


def cmd_pause(state: AppState, args: list[str], owner: OwnerScope) -> str:
    if not args:
        return "Usage: /pause <id>"
    task = task_api.set_series_paused(state, owner, args[0], True)
    return f"Series #{task.id} paused."


def cmd_resume(state: AppState, args: list[str], owner: OwnerScope) -> str:
    if not args:
        return "Usage: /resume <id>"
    task = task_api.set_series_paused(state, owner, args[0], False)
    return f"Series #{task.id} resumed."


def cmd_commit(state: AppState, args: list[str], owner: OwnerScope) -> str:
    """
    /commit <id> [YYYY-MM-DD] [auto]
    """
    if not args:
        return "Usage: /commit <id> [YYYY-MM-DD] [auto]"
    rest = [a for a in args[1:] if a.lower() != "auto"]
    auto = len(rest) != len(args) - 1
    day = rest[0] if rest else None
    task = task_api.commit_task(state, owner, args[0], day, auto_schedule=auto)
    committed = task.committed_date.isoformat() if task.committed_date else "?"
    return f"Task #{task.id} committed to {committed}" + (" (auto-schedule)" if auto else "") + "."


def cmd_uncommit(state: AppState, args: list[str], owner: OwnerScope) -> str:
    if not args:
        return "Usage: /uncommit <id>"
    task = task_api.uncommit_task(state, owner, args[0])
    return f"Task #{task.id} moved to backlog."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show owner, timezone and store stats.")
registry.register("add", cmd_add, help_text="Add a one-off task: /add <name> [on=YYYY-MM-DD].")
registry.register(
    "recur",
    cmd_recur,
    help_text="Add a series: /recur <preset> [days=MO,WE] [until=...] [start=...] <name>.",
)
registry.register("series", cmd_series, help_text="List your recurring series.")
registry.register("instances", cmd_instances, help_text="List instances: /instances <id> [from] [to].")
registry.register("expand", cmd_expand, help_text="Generate series instances now: /expand [id].")
registry.register("pause", cmd_pause, help_text="Pause a series: /pause <id>.")
registry.register("resume", cmd_resume, help_text="Resume a series: /resume <id>.")
registry.register("commit", cmd_commit, help_text="Commit a task to a day: /commit <id> [date] [auto].")
registry.register("uncommit", cmd_uncommit, help_text="Move a task back to the backlog: /uncommit <id>.")
