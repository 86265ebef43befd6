"""Occurrence arithmetic for alarm schedules.

Wall-clock times are resolved in the configured timezone; every instant
returned here is an aware UTC datetime.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterator, Optional

from .models import AlarmSchedule, RecurrenceKind

# One full week plus a day either side covers DST shifts and weekday gaps
_SCAN_DAYS = 9


def occurrence_on(day: date, schedule: AlarmSchedule, tz: tzinfo) -> datetime:
  local = datetime.combine(day, schedule.at).replace(tzinfo=tz)
  return local.astimezone(timezone.utc)


def _matches(schedule: AlarmSchedule, day: date) -> bool:
  rule = schedule.recurrence
  if rule.kind == RecurrenceKind.WEEKDAYS:
    return day.weekday() in rule.days
  return True


def _one_shot_instant(schedule: AlarmSchedule, tz: tzinfo) -> Optional[datetime]:
  on_date = schedule.recurrence.on_date
  if on_date is not None:
    candidate = occurrence_on(on_date, schedule, tz)
    return candidate if candidate > schedule.anchor else None
  return _scan_forward(schedule, schedule.anchor, tz)


def _scan_forward(schedule: AlarmSchedule, after: datetime, tz: tzinfo) -> Optional[datetime]:
  start = after.astimezone(tz).date() - timedelta(days=1)
  for offset in range(_SCAN_DAYS):
    day = start + timedelta(days=offset)
    if not _matches(schedule, day):
      continue
    candidate = occurrence_on(day, schedule, tz)
    if candidate > after:
      return candidate
  return None


def next_occurrence(schedule: AlarmSchedule, tz: tzinfo) -> Optional[datetime]:
  """Earliest occurrence not yet delivered or skipped.

  This may lie in the past when a wake was missed. Returns None once a
  one-shot alarm is spent.
  """
  after = schedule.counted_from()
  if schedule.recurrence.kind == RecurrenceKind.ONCE:
    instant = _one_shot_instant(schedule, tz)
    return instant if instant is not None and instant > after else None
  return _scan_forward(schedule, after, tz)


def pending_occurrences(
  schedule: AlarmSchedule, until: datetime, tz: tzinfo
) -> Iterator[datetime]:
  """Yield undelivered occurrences up to and including `until`, oldest first"""
  current = next_occurrence(schedule, tz)
  while current is not None and current <= until:
    yield current
    if schedule.recurrence.kind == RecurrenceKind.ONCE:
      return
    current = _scan_forward(schedule, current, tz)
