"""
Domain errors for alarm scheduling and delivery
"""

from datetime import datetime
from typing import Optional


class SchedulerError(Exception):
  """Base class for every scheduling/delivery error"""


class StaleOccurrenceError(SchedulerError):
  """An occurrence was already credited to its schedule.

  Expected under duplicate wake delivery; callers treat it as a dedup hit.
  """

  def __init__(self, schedule_id: str, instant: datetime, last_delivered: datetime):
    self.schedule_id = schedule_id
    self.instant = instant
    self.last_delivered = last_delivered
    super().__init__(
      f"Occurrence {instant.isoformat()} of '{schedule_id}' is not after "
      f"last delivery {last_delivered.isoformat()}"
    )


class PastInstantError(SchedulerError):
  """Arming was requested for an instant that is not in the future"""

  def __init__(self, instant: datetime, now: datetime):
    self.instant = instant
    self.now = now
    super().__init__(
      f"Cannot arm timer at {instant.isoformat()}: not after {now.isoformat()}"
    )


class TimerDriverUnavailable(SchedulerError):
  """The host refused or failed to arm/cancel a wake-capable timer"""

  def __init__(self, message: str, caused_by: Optional[BaseException] = None):
    self.caused_by = caused_by
    super().__init__(message)


class StoreUnavailable(SchedulerError):
  """The schedule store could not be read or written"""

  def __init__(self, message: str, caused_by: Optional[BaseException] = None):
    self.caused_by = caused_by
    super().__init__(message)


class ScheduleNotFound(SchedulerError):
  def __init__(self, schedule_id: str):
    self.schedule_id = schedule_id
    super().__init__(f"Alarm schedule '{schedule_id}' not found")


class RecoveryPendingError(SchedulerError):
  """A schedule mutation arrived before start-up recovery finished"""
