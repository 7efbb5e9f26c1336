# tests/test_commands.py

from __future__ import annotations

import logging
from datetime import date

from opsdesk.cli.commands import CommandRegistry, registry
from opsdesk.tasks.task_errors import StoreError, ValidationError
from opsdesk.tasks.task_models import OwnerScope


def test_command_registry_routes_3_and_4_params(state) -> None:
    reg = CommandRegistry()
    called = {"h3": 0, "h4": 0}
    notes: list[str] = []

    def h3(state, args, owner):
        called["h3"] += 1
        return f"h3 {owner.owner_id} {args}"

    def h4(state, args, owner, emit):
        called["h4"] += 1
        if emit is not None:
            emit("note")
        return "h4"

    reg.register("a", h3, "a")
    reg.register("b", h4, "b", aliases=["bee"])

    assert reg.handle(state, "/a x") == "h3 u1 ['x']"
    assert reg.handle(state, "/A x", owner=OwnerScope("t1", "u9")) == "h3 u9 ['x']"
    assert reg.handle(state, "/bee y", emit=notes.append) == "h4"
    assert called == {"h3": 2, "h4": 1}
    assert notes == ["note"]


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_registry_reports_errors(state, caplog) -> None:
    reg = CommandRegistry()

    def bad_input(state, args, owner):
        raise ValidationError("task_id is required")

    def broken_store(state, args, owner):
        raise StoreError("database is locked")

    reg.register("bad", bad_input, "bad")
    reg.register("broken", broken_store, "broken")

    assert reg.handle(state, "/bad") == "Error: task_id is required"
    with caplog.at_level(logging.ERROR, logger="opsdesk.cli.commands"):
        reply = reg.handle(state, "/broken")
    assert reply == "Store error, see the log for details."
    assert "database is locked" in caplog.text


def test_help_lists_every_command(state) -> None:
    text = registry.handle(state, "/help") or ""
    for name in ("status", "add", "recur", "series", "instances", "expand", "pause", "resume", "commit", "uncommit"):
        assert f"/{name}" in text


def test_recur_expand_and_instances_flow(state) -> None:
    emitted: list[str] = []
    reply = registry.handle(state, "/recur weekly days=MO,WE,FR Gym session", emit=emitted.append) or ""
    assert reply.startswith("Created series #")
    assert "(Weekly)" in reply
    assert emitted == ["[SERIES] Rule stored as FREQ=WEEKLY;BYDAY=MO,WE,FR"]

    [root] = state.task_store.list_recurrence_roots()
    assert root.name == "Gym session"
    assert root.do_date == date(2024, 1, 1)

    reply = registry.handle(state, f"/expand {root.id}") or ""
    assert reply.startswith("Created 14, skipped 0")

    reply = registry.handle(state, f"/expand {root.id}") or ""
    assert reply.startswith("Created 0, skipped 14")

    listing = registry.handle(state, f"/instances {root.id} 2024-01-01 2024-01-07") or ""
    assert "2024-01-01 Gym session" in listing
    assert "2024-01-03 Gym session" in listing
    assert "2024-01-05 Gym session" in listing
    assert "2024-01-08" not in listing


def test_recur_rejects_unknown_preset(state) -> None:
    reply = registry.handle(state, "/recur yearly Birthday") or ""
    assert reply.startswith("Error:")
    assert state.task_store.count_tasks() == 0


def test_recur_none_preset_creates_nothing(state) -> None:
    reply = registry.handle(state, "/recur none Something") or ""
    assert "/add" in reply
    assert state.task_store.count_tasks() == 0


def test_pause_resume_and_series_listing(state) -> None:
    registry.handle(state, "/recur daily until=2024-03-01 Stretch")
    [root] = state.task_store.list_recurrence_roots()

    assert registry.handle(state, f"/pause {root.id}") == f"Series #{root.id} paused."
    listing = registry.handle(state, "/series") or ""
    assert "Stretch | Daily until 2024-03-01" in listing
    assert "paused" in listing

    assert "1 paused series" in (registry.handle(state, "/expand") or "")

    assert registry.handle(state, f"/resume {root.id}") == f"Series #{root.id} resumed."
    assert "paused" not in (registry.handle(state, "/series") or "")


def test_commit_and_uncommit(state) -> None:
    reply = registry.handle(state, "/add Renew passport") or ""
    assert reply.startswith("Created task #")
    [task_id] = [int(reply.split("#")[1].split()[0])]

    reply = registry.handle(state, f"/commit {task_id} 2024-01-04 auto")
    assert reply == f"Task #{task_id} committed to 2024-01-04 (auto-schedule)."

    reply = registry.handle(state, f"/commit {task_id}")
    assert reply == f"Task #{task_id} committed to 2024-01-01."

    assert registry.handle(state, f"/uncommit {task_id}") == f"Task #{task_id} moved to backlog."
    assert state.task_store.get_task(task_id).committed_date is None


def test_instances_listing_flags_committed_tasks(state) -> None:
    registry.handle(state, "/recur daily Stretch")
    [root] = state.task_store.list_recurrence_roots()
    registry.handle(state, f"/expand {root.id}")
    first, second = state.task_store.list_instances(
        root.id, start=date(2024, 1, 1), end=date(2024, 1, 2)
    )

    registry.handle(state, f"/commit {second.id} 2024-01-02")
    listing = registry.handle(state, f"/instances {root.id} 2024-01-01 2024-01-02") or ""

    assert f"#{first.id} 2024-01-01 Stretch\n" in listing + "\n"
    assert f"#{second.id} 2024-01-02 Stretch [committed]" in listing


def test_commit_errors_are_text(state) -> None:
    assert registry.handle(state, "/commit") == "Usage: /commit <id> [YYYY-MM-DD] [auto]"
    assert registry.handle(state, "/commit abc") == "Error: task_id must be an integer, got 'abc'"
    assert registry.handle(state, "/commit 999") == "Error: Task not found"
    assert registry.handle(state, "/uncommit 999") == "Error: Task not found"


def test_commands_are_owner_scoped(state) -> None:
    registry.handle(state, "/recur daily Mine")
    [root] = state.task_store.list_recurrence_roots()

    other = OwnerScope("t1", "intruder")
    assert registry.handle(state, f"/pause {root.id}", owner=other) == "Error: Task not found"
    assert registry.handle(state, "/series", owner=other) == "No recurring series."


def test_status(state) -> None:
    text = registry.handle(state, "/status") or ""
    assert "Owner: t1/u1" in text
    assert "Default window: 2024-01-01..2024-01-31" in text
    assert "Periodic reconcile: OFF" in text
