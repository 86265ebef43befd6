"""Abstract base classes for OS-specific interfaces"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from alarm_schedule.errors import PastInstantError
from alarm_schedule.models import TimerHandle, utc_now

logger = logging.getLogger(__name__)

# Opaque action the host broadcasts when an armed timer goes off
WAKE_ACTION = "ALARM_RING"

WakeCallback = Callable[[str], None]
Clock = Callable[[], datetime]


class TimerDriver(ABC):
  """Abstract base class for the host's wake-capable timer.

  Drivers hold a single native slot: arming again replaces the previous
  timer. The host wakes the process at or after the armed instant, possibly
  several minutes late under power-saving policies.
  """

  def __init__(self, clock: Clock = utc_now):
    self.clock = clock
    self._wake_callback: Optional[WakeCallback] = None

  def on_wake(self, callback: Optional[WakeCallback]) -> None:
    """Register the single entry point that receives host wake events"""
    self._wake_callback = callback

  def dispatch_wake(self, action: str = WAKE_ACTION) -> None:
    """Route a native wake event into the registered callback"""
    if self._wake_callback is None:
      logger.warning(f"Wake '{action}' received with no handler registered")
      return
    self._wake_callback(action)

  def arm(self, instant: datetime) -> TimerHandle:
    """Arm the wake timer at `instant`.

    Raises:
      PastInstantError: If `instant` is not in the future
      TimerDriverUnavailable: If the host refuses the timer
    """
    now = self.clock()
    if instant <= now:
      raise PastInstantError(instant, now)
    return self._arm(instant)

  @abstractmethod
  def _arm(self, instant: datetime) -> TimerHandle:
    raise NotImplementedError

  @abstractmethod
  def cancel(self, handle: TimerHandle) -> None:
    """Cancel a previously armed timer

    Args:
      handle: Handle returned by `arm`
    """
    raise NotImplementedError

  @abstractmethod
  def cancel_all(self) -> None:
    """Cancel the native timer slot regardless of which process armed it"""
    raise NotImplementedError


class HostSurface(ABC):
  """Screen, foreground view and notification facilities of the host"""

  @abstractmethod
  def wake_screen(self, seconds: int) -> bool:
    """Turn the screen on for roughly `seconds`. Returns False if refused."""
    raise NotImplementedError

  @abstractmethod
  def can_reach_foreground(self) -> bool:
    """Whether the main view can be launched/foregrounded right now"""
    raise NotImplementedError

  @abstractmethod
  def bring_to_foreground(self, extras: Dict[str, Any]) -> None:
    """Launch or reorder the main view to the front, passing `extras`"""
    raise NotImplementedError

  @abstractmethod
  async def show_alarm_notification(
    self, title: str, body: str, extras: Dict[str, Any]
  ) -> None:
    """Show a high-priority alarm notification that opens the main view"""
    raise NotImplementedError


@dataclass
class OSImplementations:
  """Bundle of platform classes injected by the per-platform entry points"""

  timer_driver_cls: Callable[..., TimerDriver]
  host_surface_cls: Callable[..., HostSurface]

  def timer_driver(self, **kwargs: Any) -> TimerDriver:
    return self.timer_driver_cls(**kwargs)

  def host_surface(self, **kwargs: Any) -> HostSurface:
    return self.host_surface_cls(**kwargs)
