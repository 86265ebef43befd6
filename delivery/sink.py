"""Delivery sinks: where fired occurrences are handed off.

`DeliveryHub` is what the coordinator talks to. UI-side consumers
subscribe to it and own their subscription lifetime; `AlarmLauncher` is the
subscriber that wakes the screen and brings the reminder view up.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from threading import Lock, Thread
from typing import Any, Callable, Deque, Dict, Optional

from alarm_schedule.models import Occurrence
from os_interfaces.base import HostSurface

logger = logging.getLogger(__name__)


class DeliverySink(ABC):
  """Receiver of fired occurrences.

  Called from wake-triggered contexts while the coordinator holds its lock,
  so implementations must return quickly and must not call back into the
  coordinator synchronously.
  """

  @abstractmethod
  def on_alarm_fired(self, schedule_id: str, instant: datetime) -> None:
    raise NotImplementedError

  def on_degraded(self, reason: Optional[str]) -> None:
    """Timer arming is failing (`reason`) or has recovered (None)"""


@dataclass(frozen=True)
class Subscription:
  token: int


class DeliveryHub(DeliverySink):
  """Fans deliveries out to subscribers.

  Events fired while nobody is subscribed are kept in a bounded backlog
  and replayed to the next subscriber.
  """

  def __init__(self, backlog_size: int = 16):
    self._subscribers: Dict[int, DeliverySink] = {}
    self._backlog: Deque[Occurrence] = deque(maxlen=backlog_size)
    self._degraded_reason: Optional[str] = None
    self._tokens = itertools.count(1)
    self._lock = Lock()

  def subscribe(self, sink: DeliverySink) -> Subscription:
    with self._lock:
      subscription = Subscription(token=next(self._tokens))
      self._subscribers[subscription.token] = sink
      backlog = list(self._backlog)
      self._backlog.clear()
      degraded = self._degraded_reason

    logger.info(f"Delivery subscriber {subscription.token} added")
    if degraded is not None:
      self._notify(sink, "on_degraded", degraded)
    for occurrence in backlog:
      logger.info(
        f"Replaying alarm '{occurrence.schedule_id}' at "
        f"{occurrence.instant.isoformat()} to subscriber {subscription.token}"
      )
      self._notify(sink, "on_alarm_fired", occurrence.schedule_id, occurrence.instant)
    return subscription

  def unsubscribe(self, subscription: Subscription) -> None:
    with self._lock:
      removed = self._subscribers.pop(subscription.token, None)
    if removed is None:
      logger.warning(f"Unsubscribe for unknown subscriber {subscription.token}")
    else:
      logger.info(f"Delivery subscriber {subscription.token} removed")

  @property
  def subscriber_count(self) -> int:
    with self._lock:
      return len(self._subscribers)

  def on_alarm_fired(self, schedule_id: str, instant: datetime) -> None:
    with self._lock:
      sinks = list(self._subscribers.values())
      if not sinks:
        self._backlog.append(Occurrence(schedule_id, instant))
    if not sinks:
      logger.warning(f"No subscriber for alarm '{schedule_id}'; queued for replay")
      return
    for sink in sinks:
      self._notify(sink, "on_alarm_fired", schedule_id, instant)

  def on_degraded(self, reason: Optional[str]) -> None:
    with self._lock:
      self._degraded_reason = reason
      sinks = list(self._subscribers.values())
    for sink in sinks:
      self._notify(sink, "on_degraded", reason)

  def _notify(self, sink: DeliverySink, method: str, *args: Any) -> None:
    try:
      getattr(sink, method)(*args)
    except Exception:
      logger.exception(f"Delivery subscriber failed in {method}")


class LaunchTier(str, Enum):
  FOREGROUND = "foreground"
  NOTIFICATION = "notification"


@dataclass(frozen=True)
class LaunchResult:
  tier: LaunchTier
  occurrence: Occurrence
  # Why this tier was used, and whether the screen was woken
  detail: str


class AlarmLauncher(DeliverySink):
  """Wakes the screen and surfaces the reminder view for a fired alarm.

  The main view is brought to the foreground when the host says it is
  reachable. When it is not, or the launch itself fails, a full-screen alarm
  notification is posted instead. Work runs on a small thread pool so the
  coordinator is never blocked; notifications are sent on an event loop
  owned by the launcher, which stays alive so click callbacks still run
  after the notification is shown.
  """

  def __init__(
    self,
    surface: HostSurface,
    wake_lock_seconds: int = 30,
    title: str = "🌙 Time for bed!",
    body: str = "Tap to open your sleep reminder",
    on_result: Optional[Callable[[LaunchResult], None]] = None,
    executor: Optional[ThreadPoolExecutor] = None,
    notification_timeout: float = 30.0,
  ):
    self.surface = surface
    self.wake_lock_seconds = wake_lock_seconds
    self.title = title
    self.body = body
    self.on_result = on_result
    self.notification_timeout = notification_timeout
    self.executor = executor or ThreadPoolExecutor(
      max_workers=1, thread_name_prefix="alarm-launch"
    )
    self._loop: Optional[asyncio.AbstractEventLoop] = None
    self._loop_thread: Optional[Thread] = None
    self._loop_lock = Lock()

  def on_alarm_fired(self, schedule_id: str, instant: datetime) -> None:
    self.submit(Occurrence(schedule_id, instant))

  def on_degraded(self, reason: Optional[str]) -> None:
    if reason is not None:
      logger.warning(f"Alarm timers degraded: {reason}")

  def submit(self, occurrence: Occurrence) -> Future:
    return self.executor.submit(self._launch_logged, occurrence)

  def _launch_logged(self, occurrence: Occurrence) -> Optional[LaunchResult]:
    try:
      return self.launch(occurrence)
    except Exception:
      logger.exception(f"Failed to surface alarm '{occurrence.schedule_id}'")
      return None

  def _event_loop(self) -> asyncio.AbstractEventLoop:
    with self._loop_lock:
      if self._loop is None:
        self._loop = asyncio.new_event_loop()
        self._loop_thread = Thread(
          target=self._loop.run_forever, name="alarm-notify-loop", daemon=True
        )
        self._loop_thread.start()
      return self._loop

  def _post_notification(self, extras: Dict[str, Any]) -> None:
    future = asyncio.run_coroutine_threadsafe(
      self.surface.show_alarm_notification(self.title, self.body, extras),
      self._event_loop(),
    )
    future.result(timeout=self.notification_timeout)

  def launch(self, occurrence: Occurrence) -> LaunchResult:
    woken = self.surface.wake_screen(self.wake_lock_seconds)
    screen = "screen woken" if woken else "screen wake refused"
    extras = {
      "alarm_triggered": True,
      "show_alarm_overlay": True,
      "schedule_id": occurrence.schedule_id,
      "occurrence": occurrence.instant.isoformat(),
    }

    tier = LaunchTier.NOTIFICATION
    try:
      if self.surface.can_reach_foreground():
        self.surface.bring_to_foreground(extras)
        tier, reason = LaunchTier.FOREGROUND, "foreground reachable"
      else:
        reason = "foreground not reachable"
    except Exception as e:
      logger.warning(
        f"Foreground launch failed for alarm '{occurrence.schedule_id}': {e}; "
        "falling back to notification"
      )
      reason = f"foreground launch failed: {e}"

    if tier is LaunchTier.NOTIFICATION:
      self._post_notification(extras)
    return self._finish(LaunchResult(tier, occurrence, f"{reason}; {screen}"))

  def _finish(self, result: LaunchResult) -> LaunchResult:
    logger.info(
      f"Alarm '{result.occurrence.schedule_id}' surfaced via {result.tier.value} "
      f"({result.detail})"
    )
    if self.on_result:
      self.on_result(result)
    return result

  def shutdown(self) -> None:
    self.executor.shutdown(wait=True)
    with self._loop_lock:
      loop, thread = self._loop, self._loop_thread
      self._loop = self._loop_thread = None
    if loop is not None:
      loop.call_soon_threadsafe(loop.stop)
      if thread is not None:
        thread.join(timeout=5)
      if not loop.is_running():
        loop.close()
