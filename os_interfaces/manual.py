"""In-process timer driver.

Nothing wakes the host: callers inspect `armed` and call `fire()`
themselves. Used for dry runs and tests.
"""

import itertools
import logging
from datetime import datetime
from typing import List, Optional

from alarm_schedule.errors import TimerDriverUnavailable
from alarm_schedule.models import TimerHandle, utc_now

from .base import WAKE_ACTION, Clock, TimerDriver

logger = logging.getLogger(__name__)


class ManualTimerDriver(TimerDriver):
  def __init__(self, clock: Clock = utc_now, fail_times: int = 0):
    super().__init__(clock=clock)
    self.armed: Optional[TimerHandle] = None
    self.history: List[TimerHandle] = []
    self.cancelled: List[TimerHandle] = []
    # Number of upcoming arm() calls that should fail, to mimic a host in a
    # restricted power state
    self.fail_times = fail_times
    self._ids = itertools.count(1)

  def _arm(self, instant: datetime) -> TimerHandle:
    if self.fail_times > 0:
      self.fail_times -= 1
      raise TimerDriverUnavailable("Manual driver configured to refuse arming")
    handle = TimerHandle(timer_id=f"manual-{next(self._ids)}", instant=instant)
    self.armed = handle
    self.history.append(handle)
    logger.debug(f"Armed {handle.timer_id} at {instant.isoformat()}")
    return handle

  def cancel(self, handle: TimerHandle) -> None:
    if self.armed is not None and self.armed.timer_id == handle.timer_id:
      self.armed = None
    self.cancelled.append(handle)

  def cancel_all(self) -> None:
    if self.armed is not None:
      self.cancel(self.armed)

  def fire(self, action: str = WAKE_ACTION) -> None:
    """Simulate the host delivering the wake broadcast"""
    # A native one-shot timer is spent once its instant has passed
    if self.armed is not None and self.armed.instant <= self.clock():
      self.armed = None
    self.dispatch_wake(action)
