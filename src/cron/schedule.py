"""
Schedule calculator.

Pure functions mapping a job's schedule + last run time to its next due time.
All times are epoch milliseconds.

Schedule kinds:
- every: {"kind": "every", "everyMs": 60000}
- at:    {"kind": "at", "at": "2026-01-01T09:00:00Z"} or {"kind": "at", "atMs": ...}
- cron:  {"kind": "cron", "expr": "0 9 * * 1-5", "tz": "Europe/Berlin"}
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from .errors import ValidationError


SCHEDULE_KINDS = ("every", "at", "cron")


def parse_at_ms(schedule: dict) -> int:
    """
    Resolve a one-shot schedule to epoch milliseconds.

    Accepts "atMs" (int) or "at" (ISO-8601 string; naive values are UTC).

    Raises:
        ValidationError: If neither field is usable
    """
    at_ms = schedule.get("atMs")
    if at_ms is not None:
        if isinstance(at_ms, bool) or not isinstance(at_ms, int):
            raise ValidationError(f"atMs must be an integer, got {at_ms!r}")
        return at_ms

    at = schedule.get("at")
    if not isinstance(at, str) or not at.strip():
        raise ValidationError("'at' schedule requires 'at' (ISO timestamp) or 'atMs'")

    text = at.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(f"Invalid 'at' timestamp {at!r}: {e}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def resolve_timezone(tz: Optional[str]):
    """Return a tzinfo for an IANA zone name (UTC when unset)."""
    if not tz:
        return timezone.utc
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {tz}") from e


def validate_cron_expr(expr: str) -> None:
    """Raise ValidationError unless expr is a valid cron expression."""
    if not isinstance(expr, str) or not croniter.is_valid(expr):
        raise ValidationError(f"Invalid cron expression: {expr!r}")


def _cron_next_ms(expr: str, tz: Optional[str], base_ms: int) -> int:
    base = datetime.fromtimestamp(base_ms / 1000, tz=resolve_timezone(tz))
    next_dt = croniter(expr, base).get_next(datetime)
    return int(next_dt.timestamp() * 1000)


def next_due(schedule: dict, last_run_at: Optional[int], now: int) -> Optional[int]:
    """
    Compute when a job is next due.

    Args:
        schedule: The job's schedule object
        last_run_at: Completion time of the previous run, if any
        now: Current time

    Returns:
        Due time in epoch ms, or None if the schedule is exhausted

    Catch-up policy: when a recurring job has fallen behind by more than one
    occurrence (process was down), it becomes due at `now` exactly once
    instead of replaying every missed occurrence.
    """
    kind = schedule.get("kind")

    if kind == "every":
        every_ms = schedule.get("everyMs")
        if isinstance(every_ms, bool) or not isinstance(every_ms, int) or every_ms <= 0:
            raise ValidationError(f"everyMs must be a positive integer, got {every_ms!r}")

        if last_run_at is None:
            return now

        due = last_run_at + every_ms
        if due < now - every_ms:
            return now
        return due

    if kind == "at":
        at_ms = parse_at_ms(schedule)
        if last_run_at is None or last_run_at < at_ms:
            return at_ms
        return None

    if kind == "cron":
        expr = schedule.get("expr")
        validate_cron_expr(expr)
        tz = schedule.get("tz")

        if last_run_at is None:
            return _cron_next_ms(expr, tz, now)

        due = _cron_next_ms(expr, tz, last_run_at)
        if due <= now and _cron_next_ms(expr, tz, due) <= now:
            return now
        return due

    raise ValidationError(f"Unknown schedule kind: {kind!r}")
