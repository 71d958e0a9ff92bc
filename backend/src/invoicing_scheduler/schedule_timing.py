"""Next-run computation for invoice schedules.

Cadence fields are wall-clock values in the scheduler's local zone. Every
function here takes and returns timezone-aware datetimes; results are always
expressed in UTC so they can be stored and compared directly.

There are two entry points with different reference semantics:

* ``compute_initial_next_run`` is used when a schedule is created, edited or
  reactivated. The reference is "now" and today's slot is still acceptable if
  its hour has not passed yet.
* ``compute_next_run_after`` is used after a run. The reference is the run's
  completion time and the result always lands on a later nominal slot, so a
  late run never re-triggers the slot it just served.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from .models import ScheduleCadence


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _slot(day: date, hour: int, zone: tzinfo) -> datetime:
    return datetime.combine(day, time(hour=hour), tzinfo=zone)


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _following_month(day: date) -> tuple[int, int]:
    if day.month == 12:
        return day.year + 1, 1
    return day.year, day.month + 1


def _clamped_day(year: int, month: int, day_of_month: int) -> date:
    return date(year, month, min(day_of_month, _days_in_month(year, month)))


def _weekday_offset(target: int, current: date) -> int:
    return (target - current.weekday() + 7) % 7


def compute_initial_next_run(cadence: ScheduleCadence, now: datetime, zone: tzinfo) -> datetime:
    local_now = _coerce_utc(now).astimezone(zone)
    today = local_now.date()
    hour = cadence.hour_of_day

    if cadence.cadence == "daily":
        candidate = _slot(today, hour, zone)
        if candidate <= local_now:
            candidate = _slot(today + timedelta(days=1), hour, zone)
    elif cadence.cadence == "weekly":
        diff = _weekday_offset(cadence.weekday or 0, today)
        if diff == 0 and _slot(today, hour, zone) <= local_now:
            diff = 7
        candidate = _slot(today + timedelta(days=diff), hour, zone)
    else:
        day_of_month = cadence.day_of_month or 1
        candidate = _slot(_clamped_day(today.year, today.month, day_of_month), hour, zone)
        if candidate <= local_now:
            year, month = _following_month(today)
            candidate = _slot(_clamped_day(year, month, day_of_month), hour, zone)

    return candidate.astimezone(timezone.utc)


def compute_next_run_after(cadence: ScheduleCadence, reference: datetime, zone: tzinfo) -> datetime:
    base = _coerce_utc(reference).astimezone(zone).date()
    hour = cadence.hour_of_day

    if cadence.cadence == "daily":
        next_day = base + timedelta(days=1)
    elif cadence.cadence == "weekly":
        diff = _weekday_offset(cadence.weekday or 0, base)
        next_day = base + timedelta(days=diff or 7)
    else:
        year, month = _following_month(base)
        next_day = _clamped_day(year, month, cadence.day_of_month or 1)

    return _slot(next_day, hour, zone).astimezone(timezone.utc)
