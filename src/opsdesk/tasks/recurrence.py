# src/opsdesk/tasks/recurrence.py

"""
Recurrence rules for task series.

The persisted rule format is a small RRULE subset, semicolon-separated KEY=VALUE pairs:

    FREQ=DAILY | WEEKLY | MONTHLY      (required)
    INTERVAL=<n>                       every n-th day / week / month, counted from the anchor
    BYDAY=MO,WE,FR                     WEEKLY only; default = the anchor's weekday
    BYMONTHDAY=<d>                     MONTHLY only; default = the anchor's day-of-month,
                                       clamped to the last day of shorter months
    UNTIL=20250601T235959Z | 2025-06-01  inclusive last day

Everything works on calendar days (datetime.date); there are no times or zones here.
The caller decides what "today" is.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from enum import StrEnum

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")


class Frequency(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class RecurrenceRuleError(ValueError):
    """The rule string cannot be used to expand occurrences."""


class UnsupportedFrequencyError(RecurrenceRuleError):
    pass


def _parse_until(value: str) -> date:
    try:
        return isoparse(value).date()
    except (ValueError, OverflowError) as e:
        raise RecurrenceRuleError(f"invalid UNTIL value: {value!r}") from e


def _format_until(d: date) -> str:
    return f"{d.strftime('%Y%m%d')}T235959Z"


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    freq: Frequency
    interval: int = 1
    by_day: tuple[str, ...] = ()
    by_month_day: int | None = None
    until: date | None = None

    @classmethod
    def parse(cls, raw: str) -> RecurrenceRule:
        text = (raw or "").strip()
        if text.upper().startswith("RRULE:"):
            text = text[len("RRULE:") :]
        if not text:
            raise RecurrenceRuleError("empty recurrence rule")

        parts: dict[str, str] = {}
        for chunk in text.split(";"):
            chunk = chunk.strip()
            if not chunk:
                continue
            key, sep, value = chunk.partition("=")
            if not sep:
                raise RecurrenceRuleError(f"malformed rule part: {chunk!r}")
            parts[key.strip().upper()] = value.strip()

        freq_raw = parts.get("FREQ", "").upper()
        if not freq_raw:
            raise RecurrenceRuleError("FREQ is required")
        try:
            freq = Frequency(freq_raw)
        except ValueError:
            raise UnsupportedFrequencyError(f"unsupported FREQ: {freq_raw}") from None

        interval = 1
        if "INTERVAL" in parts:
            try:
                interval = int(parts["INTERVAL"])
            except ValueError:
                raise RecurrenceRuleError(f"invalid INTERVAL: {parts['INTERVAL']!r}") from None
            if interval < 1:
                raise RecurrenceRuleError(f"INTERVAL must be positive, got {interval}")

        by_day: tuple[str, ...] = ()
        if parts.get("BYDAY"):
            if freq != Frequency.WEEKLY:
                raise RecurrenceRuleError("BYDAY is only supported with FREQ=WEEKLY")
            codes: list[str] = []
            for code in parts["BYDAY"].upper().split(","):
                code = code.strip()
                if code not in WEEKDAY_CODES:
                    raise RecurrenceRuleError(f"invalid BYDAY code: {code!r}")
                if code not in codes:
                    codes.append(code)
            by_day = tuple(codes)

        by_month_day: int | None = None
        if parts.get("BYMONTHDAY"):
            if freq != Frequency.MONTHLY:
                raise RecurrenceRuleError("BYMONTHDAY is only supported with FREQ=MONTHLY")
            try:
                by_month_day = int(parts["BYMONTHDAY"])
            except ValueError:
                raise RecurrenceRuleError(f"invalid BYMONTHDAY: {parts['BYMONTHDAY']!r}") from None
            if by_month_day == 0 or not -31 <= by_month_day <= 31:
                raise RecurrenceRuleError(f"BYMONTHDAY out of range: {by_month_day}")

        until = _parse_until(parts["UNTIL"]) if parts.get("UNTIL") else None

        return cls(
            freq=freq,
            interval=interval,
            by_day=by_day,
            by_month_day=by_month_day,
            until=until,
        )

    def to_string(self) -> str:
        out = [f"FREQ={self.freq.value}"]
        if self.interval != 1:
            out.append(f"INTERVAL={self.interval}")
        if self.by_day:
            out.append(f"BYDAY={','.join(self.by_day)}")
        if self.by_month_day is not None:
            out.append(f"BYMONTHDAY={self.by_month_day}")
        if self.until is not None:
            out.append(f"UNTIL={_format_until(self.until)}")
        return ";".join(out)

    def __str__(self) -> str:
        return self.to_string()

    # ---- expansion ----

    def occurrences(self, window_start: date, window_end: date, *, anchor: date) -> list[date]:
        """
        Occurrence days inside [window_start, window_end], ascending, never before `anchor`
        and never after UNTIL.
        """
        start = max(window_start, anchor)
        end = window_end if self.until is None else min(window_end, self.until)
        if start > end:
            return []

        if self.freq == Frequency.DAILY:
            return list(self._daily(start, end, anchor))
        if self.freq == Frequency.WEEKLY:
            return list(self._weekly(start, end, anchor))
        return list(self._monthly(start, end, anchor))

    def _daily(self, start: date, end: date, anchor: date) -> Iterable[date]:
        step = self.interval
        lag = (start - anchor).days % step
        d = start + timedelta(days=(step - lag) % step)
        while d <= end:
            yield d
            d += timedelta(days=step)

    def _weekly(self, start: date, end: date, anchor: date) -> Iterable[date]:
        if self.by_day:
            weekdays = {WEEKDAY_CODES.index(c) for c in self.by_day}
        else:
            weekdays = {anchor.weekday()}

        # Weeks run Monday..Sunday; week 0 is the one containing the anchor.
        anchor_week = anchor - timedelta(days=anchor.weekday())
        d = start
        while d <= end:
            week = (d - anchor_week).days // 7
            off_phase = week % self.interval
            if off_phase:
                d = anchor_week + timedelta(weeks=week + self.interval - off_phase)
                continue
            if d.weekday() in weekdays:
                yield d
            d += timedelta(days=1)

    def _monthly(self, start: date, end: date, anchor: date) -> Iterable[date]:
        target = self.by_month_day if self.by_month_day is not None else anchor.day
        first_of_anchor_month = anchor.replace(day=1)

        months = (start.year - anchor.year) * 12 + (start.month - anchor.month)
        months += -months % self.interval
        while True:
            month_start = first_of_anchor_month + relativedelta(months=months)
            d = _day_in_month(month_start, target)
            if d > end:
                return
            if d >= start:
                yield d
            months += self.interval


def _day_in_month(month_start: date, day: int) -> date:
    """
    Resolve a BYMONTHDAY value inside the month starting at `month_start`.

    Positive days past the month end clamp to the last day (31 -> Feb 28/29);
    negative days count back from the end (-1 = last day) and clamp to the 1st.
    """
    if day > 0:
        return month_start + relativedelta(day=day)
    last = month_start + relativedelta(day=31)
    d = last + timedelta(days=day + 1)
    return d if d >= month_start else month_start


def expand(
    rule: str | RecurrenceRule | None,
    window_start: date,
    window_end: date,
    *,
    anchor: date | None = None,
) -> list[date]:
    """
    Occurrence days of `rule` inside [window_start, window_end] (inclusive).

    A rule that cannot be parsed (unknown FREQ, bad INTERVAL, ...) yields [] and a warning,
    so one broken series never fails a whole reconcile pass.
    Without an anchor, the window start is used as the phase reference.
    """
    if rule is None:
        return []
    if isinstance(rule, str):
        if not rule.strip():
            return []
        try:
            parsed = RecurrenceRule.parse(rule)
        except RecurrenceRuleError as e:
            logger.warning("Ignoring recurrence rule %r: %s", rule, e)
            return []
    else:
        parsed = rule

    return parsed.occurrences(
        window_start,
        window_end,
        anchor=anchor if anchor is not None else window_start,
    )


# --------------------------------------------------------------------------------------
# Rule builder (editor presets <-> rule strings)
# --------------------------------------------------------------------------------------


class RepeatPreset(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


@dataclass(frozen=True, slots=True)
class RuleForm:
    """What an editor shows for a stored rule."""

    preset: RepeatPreset
    days: tuple[str, ...] = ()
    until: date | None = None


def _normalize_days(days: Iterable[str]) -> tuple[str, ...]:
    wanted = set()
    for d in days:
        code = str(d).strip().upper()
        if not code:
            continue
        if code not in WEEKDAY_CODES:
            raise RecurrenceRuleError(f"invalid weekday code: {d!r}")
        wanted.add(code)
    return tuple(c for c in WEEKDAY_CODES if c in wanted)


def build_rule(
    preset: RepeatPreset | str,
    *,
    days: Iterable[str] = (),
    until: date | None = None,
    base_date: date | None = None,
) -> str | None:
    """
    Build the persisted rule string for an editor preset.

    "weekly on Mon/Wed/Fri until 2025-06-01" -> FREQ=WEEKLY;BYDAY=MO,WE,FR;UNTIL=20250601T235959Z
    Monthly rules pin BYMONTHDAY to base_date's day (today when omitted).
    Returns None for the "none" preset.
    """
    try:
        p = RepeatPreset(str(preset).strip().lower())
    except ValueError:
        raise RecurrenceRuleError(f"unknown repeat preset: {preset!r}") from None

    if p == RepeatPreset.NONE:
        return None

    day_codes = _normalize_days(days)
    if p == RepeatPreset.DAILY:
        rule = RecurrenceRule(Frequency.DAILY, until=until)
    elif p == RepeatPreset.WEEKDAYS:
        rule = RecurrenceRule(Frequency.WEEKLY, by_day=WEEKDAY_CODES[:5], until=until)
    elif p == RepeatPreset.WEEKLY:
        rule = RecurrenceRule(Frequency.WEEKLY, by_day=day_codes, until=until)
    elif p == RepeatPreset.BIWEEKLY:
        rule = RecurrenceRule(Frequency.WEEKLY, interval=2, by_day=day_codes, until=until)
    else:
        base = base_date or date.today()
        rule = RecurrenceRule(Frequency.MONTHLY, by_month_day=base.day, until=until)
    return rule.to_string()


def read_rule(rule: str | None) -> RuleForm:
    """Inverse of build_rule; rules the editor cannot represent come back as NONE."""
    if not rule or not rule.strip():
        return RuleForm(RepeatPreset.NONE)
    try:
        parsed = RecurrenceRule.parse(rule)
    except RecurrenceRuleError:
        return RuleForm(RepeatPreset.NONE)

    if parsed.freq == Frequency.DAILY:
        preset = RepeatPreset.DAILY
    elif parsed.freq == Frequency.MONTHLY:
        preset = RepeatPreset.MONTHLY
    elif parsed.interval == 2:
        preset = RepeatPreset.BIWEEKLY
    elif parsed.interval == 1 and parsed.by_day == WEEKDAY_CODES[:5]:
        preset = RepeatPreset.WEEKDAYS
    elif parsed.interval == 1:
        preset = RepeatPreset.WEEKLY
    else:
        preset = RepeatPreset.NONE
    return RuleForm(preset=preset, days=parsed.by_day, until=parsed.until)


_PRESET_LABELS = {
    RepeatPreset.DAILY: "Daily",
    RepeatPreset.WEEKDAYS: "Weekdays",
    RepeatPreset.WEEKLY: "Weekly",
    RepeatPreset.BIWEEKLY: "Biweekly",
    RepeatPreset.MONTHLY: "Monthly",
}


def describe_rule(rule: str | None) -> str:
    """Short label for lists: Daily / Weekdays / Weekly / Biweekly / Monthly (+ until)."""
    if not rule or not rule.strip():
        return "Not set"
    form = read_rule(rule)
    label = _PRESET_LABELS.get(form.preset)
    if label is None:
        return rule
    if form.until is not None:
        label += f" until {form.until.isoformat()}"
    return label
