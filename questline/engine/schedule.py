"""
questline.engine.schedule — Reset Instant Calculation
======================================================

Pure date arithmetic for periodic quests.  No database I/O.

Reset instants are computed in the community's configured timezone (so
"daily at 00:00" means local midnight) and returned in UTC for storage.

Day-of-week numbering is 0 = Sunday … 6 = Saturday.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from questline.database.models import ResetType

if TYPE_CHECKING:
    from questline.database.models import Quest

DEFAULT_RESET_TIME = "00:00"

_RESET_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_reset_time(value: str | None) -> tuple[int, int]:
    """Parse ``"HH:MM"`` into ``(hour, minute)``.

    ``None`` or an empty string means midnight.

    Raises
    ------
    ValueError
        If *value* is not a valid 24-hour ``HH:MM`` string.
    """
    if not value:
        value = DEFAULT_RESET_TIME
    match = _RESET_TIME_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid reset time {value!r}; expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def _sunday_based_weekday(moment: datetime) -> int:
    return moment.isoweekday() % 7


def next_reset_at(
    reset_type: str,
    now: datetime,
    *,
    reset_time: str | None = None,
    reset_day_of_week: int | None = None,
    tz: str = "UTC",
) -> datetime | None:
    """Return the next reset instant strictly after *now*, in UTC.

    - ``daily``: today at *reset_time*; tomorrow if that is not after now.
    - ``weekly``: the next *reset_day_of_week* at *reset_time*.  When that
      day is today and the time is not after now, one week later.
    - ``monthly``: 00:00 on the first day of the next calendar month.
    - ``never`` (or an incomplete weekly definition): ``None``.
    """
    if reset_type not in (ResetType.DAILY, ResetType.WEEKLY, ResetType.MONTHLY):
        return None

    zone = ZoneInfo(tz)
    local_now = ensure_utc(now).astimezone(zone)

    if reset_type == ResetType.MONTHLY:
        if local_now.month == 12:
            year, month = local_now.year + 1, 1
        else:
            year, month = local_now.year, local_now.month + 1
        candidate = datetime(year, month, 1, 0, 0, tzinfo=zone)
        return candidate.astimezone(UTC)

    hour, minute = parse_reset_time(reset_time)

    if reset_type == ResetType.DAILY:
        candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if candidate <= local_now:
            candidate = _shift_days(candidate, 1, zone)
        return candidate.astimezone(UTC)

    # weekly
    if reset_day_of_week is None:
        return None
    days_until = (reset_day_of_week - _sunday_based_weekday(local_now) + 7) % 7
    candidate = _shift_days(local_now, days_until, zone).replace(
        hour=hour, minute=minute, second=0, microsecond=0,
    )
    if days_until == 0 and candidate <= local_now:
        candidate = _shift_days(candidate, 7, zone)
    return candidate.astimezone(UTC)


def _shift_days(moment: datetime, days: int, zone: ZoneInfo) -> datetime:
    """Move *moment* by whole calendar days, keeping its wall-clock time."""
    shifted = moment.replace(tzinfo=None) + timedelta(days=days)
    return shifted.replace(tzinfo=zone)


def next_reset_for(quest: Quest, now: datetime, tz: str = "UTC") -> datetime | None:
    """Convenience wrapper reading the reset policy off a :class:`Quest`."""
    return next_reset_at(
        quest.reset_type,
        now,
        reset_time=quest.reset_time,
        reset_day_of_week=quest.reset_day_of_week,
        tz=tz,
    )
