"""
Delivery coordinator
Keeps exactly one wake timer armed for the soonest pending occurrence and turns
host wakes into at-most-once deliveries.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Callable, Dict, List, Optional

from alarm_schedule.config_parser import SchedulerSettings
from alarm_schedule.errors import (
  PastInstantError,
  RecoveryPendingError,
  ScheduleNotFound,
  StaleOccurrenceError,
  StoreUnavailable,
  TimerDriverUnavailable,
)
from alarm_schedule.models import (
  AlarmSchedule,
  ArmedTimer,
  DeliveryRecord,
  Occurrence,
  utc_now,
)
from alarm_schedule.recurrence import next_occurrence
from alarm_schedule.store import ScheduleStore
from os_interfaces.base import WAKE_ACTION, Clock, TimerDriver

from .recovery import plan_missed
from .retry import RetryPolicy, call_with_backoff
from .sink import DeliverySink

logger = logging.getLogger(__name__)

# Bound on deliver-then-recompute rounds in a single pass
MAX_PASSES = 8

EDITABLE_FIELDS = {"at", "recurrence", "label", "enabled"}


@dataclass(frozen=True)
class CoordinatorStatus:
  armed_instant: Optional[datetime]
  degraded_reason: Optional[str]
  enabled_count: int
  recovered: bool
  # Armed instant is further in the past than the host's usual deferral
  overdue: bool = False

  @property
  def degraded(self) -> bool:
    return self.degraded_reason is not None


class DeliveryCoordinator:
  """Single logical writer for schedules, the wake timer and deliveries.

  Every entry point runs under one re-entrant lock and recomputes what is
  due from the store, so a wake arriving during a schedule edit (or a
  redundant host broadcast) sees fresh state.
  """

  def __init__(
    self,
    store: ScheduleStore,
    driver: TimerDriver,
    sink: DeliverySink,
    settings: Optional[SchedulerSettings] = None,
    clock: Clock = utc_now,
    sleep: Callable[[float], None] = time.sleep,
  ):
    self.store = store
    self.driver = driver
    self.sink = sink
    self.settings = settings or SchedulerSettings()
    self.clock = clock
    self.sleep = sleep
    self.tz = self.settings.tz
    self.retry_policy = RetryPolicy(
      attempts=self.settings.retry_attempts,
      base_delay=self.settings.retry_base_delay_seconds,
      max_delay=self.settings.retry_max_delay_seconds,
    )
    self.lock = RLock()
    self._armed: Optional[ArmedTimer] = None
    self._records: Dict[Occurrence, DeliveryRecord] = {}
    self._degraded_reason: Optional[str] = None
    self._recovered = False
    driver.on_wake(self.handle_wake)

  @property
  def armed(self) -> Optional[ArmedTimer]:
    return self._armed

  @property
  def recovered(self) -> bool:
    return self._recovered

  def mark_recovered(self) -> None:
    self._recovered = True

  # ---- host entry point ----
  def handle_wake(self, action: str = WAKE_ACTION) -> List[Occurrence]:
    """Deliver whatever is due now, then re-arm.

    The wake payload is never trusted: only the action is checked and the
    due set is derived from the store. Store failures are logged and left
    for the next wake or mutation to retry.
    """
    if action != WAKE_ACTION:
      logger.warning(f"Ignoring wake with unexpected action '{action}'")
      return []

    with self.lock:
      now = self.clock()
      logger.info(f"Wake received at {now.isoformat()}")
      self._drop_spent_timer(now)
      try:
        delivered = self.deliver_due(now)
        self.reconcile(now)
      except StoreUnavailable as e:
        logger.error(f"Schedule store unavailable during wake: {e}")
        return []
      return delivered

  # ---- core passes ----
  def deliver_due(self, now: datetime) -> List[Occurrence]:
    """Deliver every due occurrence once, applying the missed policy"""
    with self.lock:
      self._expire_records(now)
      delivered = []
      for schedule in self.store.list_enabled():
        plan = plan_missed(schedule, now, self.settings, self.tz)
        if plan.skip_through is not None:
          try:
            self.store.mark_skipped(schedule.id, plan.skip_through)
          except ScheduleNotFound:
            continue
          logger.info(
            f"Skipped {plan.missed} missed occurrence(s) of '{schedule.id}' "
            f"through {plan.skip_through.isoformat()}"
          )
        if plan.deliver_at is not None and self._deliver(schedule.id, plan.deliver_at, now):
          delivered.append(Occurrence(schedule.id, plan.deliver_at))
      return delivered

  def reconcile(self, now: Optional[datetime] = None) -> Optional[datetime]:
    """Arm the single wake timer at the soonest pending occurrence.

    Occurrences that turn out to be due are delivered first, so the timer
    is never asked to arm in the past. Returns the instant actually armed:
    None when nothing is pending, or when the host refused every timer.
    """
    with self.lock:
      now = now or self.clock()
      for _ in range(MAX_PASSES):
        upcoming = self._soonest_pending()
        if upcoming is None:
          self._disarm()
          return None

        if upcoming <= now + self.settings.early_fire_tolerance:
          self.deliver_due(now)
          continue

        try:
          self._arm(upcoming)
        except PastInstantError as e:
          # Clock moved past the target while computing; treat as due
          logger.warning(f"{e}; re-evaluating")
          now = self.clock()
          continue
        return self._armed.instant if self._armed else None

      logger.error("Reconcile did not settle; leaving current timer in place")
      return self._armed.instant if self._armed else None

  def _soonest_pending(self) -> Optional[datetime]:
    instants = [
      instant
      for instant in (next_occurrence(s, self.tz) for s in self.store.list_enabled())
      if instant is not None
    ]
    return min(instants, default=None)

  def _deliver(self, schedule_id: str, instant: datetime, now: datetime) -> bool:
    occurrence = Occurrence(schedule_id, instant)
    if occurrence in self._records:
      logger.info(f"Duplicate wake for '{schedule_id}' at {instant.isoformat()}; skipping")
      return False

    try:
      self.store.mark_delivered(schedule_id, instant)
    except StaleOccurrenceError as e:
      logger.info(f"Already delivered: {e}")
      return False
    except ScheduleNotFound:
      logger.info(f"Schedule '{schedule_id}' removed before delivery")
      return False

    self._records[occurrence] = DeliveryRecord(
      occurrence=occurrence,
      expires_at=max(instant, now) + self.settings.firing_window,
    )
    logger.info(f"Delivering alarm '{schedule_id}' for {instant.isoformat()}")
    try:
      self.sink.on_alarm_fired(schedule_id, instant)
    except Exception:
      logger.exception(f"Delivery sink failed for '{schedule_id}'")
    return True

  def _expire_records(self, now: datetime) -> None:
    expired = [occ for occ, record in self._records.items() if record.expires_at <= now]
    for occ in expired:
      del self._records[occ]

  # ---- timer management ----
  def _drop_spent_timer(self, now: datetime) -> None:
    if self._armed and self._armed.instant <= now + self.settings.early_fire_tolerance:
      logger.debug(f"Timer {self._armed.handle.timer_id} has fired")
      self._armed = None

  def _arm(self, instant: datetime) -> None:
    if self._armed is not None and self._armed.instant == instant:
      return

    # Arm before cancelling so a refused arm leaves the previous timer in place
    previous = self._armed
    try:
      handle = call_with_backoff(
        lambda: self.driver.arm(instant),
        self.retry_policy,
        f"Arming wake at {instant.isoformat()}",
        sleep=self.sleep,
      )
    except TimerDriverUnavailable as e:
      self._set_degraded(str(e))
      return

    # Single-slot drivers reuse the id; arming already replaced that timer
    if previous is not None and previous.handle.timer_id != handle.timer_id:
      self._cancel(previous)
    self._armed = ArmedTimer(handle=handle, instant=instant)
    logger.info(f"Armed wake timer {handle.timer_id} at {instant.isoformat()}")
    self._set_degraded(None)

  def _cancel(self, armed: ArmedTimer) -> None:
    self._armed = None
    try:
      call_with_backoff(
        lambda: self.driver.cancel(armed.handle),
        self.retry_policy,
        f"Cancelling wake timer {armed.handle.timer_id}",
        sleep=self.sleep,
      )
      logger.info(f"Cancelled wake timer {armed.handle.timer_id}")
    except TimerDriverUnavailable as e:
      logger.warning(f"Could not cancel wake timer {armed.handle.timer_id}: {e}")

  def _disarm(self) -> None:
    if self._armed is not None:
      self._cancel(self._armed)
    self._set_degraded(None)

  def _set_degraded(self, reason: Optional[str]) -> None:
    if reason == self._degraded_reason:
      return
    self._degraded_reason = reason
    if reason is None:
      logger.info("Wake timer healthy again")
    else:
      logger.error(f"Wake timer degraded: {reason}")
    try:
      self.sink.on_degraded(reason)
    except Exception:
      logger.exception("Delivery sink failed to take degraded-state signal")

  def reset_timer(self) -> None:
    """Forget and cancel whatever native timer a previous process left"""
    with self.lock:
      try:
        call_with_backoff(
          self.driver.cancel_all,
          self.retry_policy,
          "Clearing stale wake timer",
          sleep=self.sleep,
        )
      except TimerDriverUnavailable as e:
        logger.warning(f"Could not clear stale wake timer: {e}")
      self._armed = None

  # ---- schedule mutations ----
  def _require_recovered(self) -> None:
    if not self._recovered:
      raise RecoveryPendingError("Start-up recovery has not completed yet")

  def create_schedule(self, schedule: AlarmSchedule) -> AlarmSchedule:
    """Store a new schedule and re-arm. Its occurrences count from now."""
    with self.lock:
      self._require_recovered()
      now = self.clock()
      if any(s.id == schedule.id for s in self.store.list_all()):
        raise ValueError(f"Alarm schedule '{schedule.id}' already exists")
      stored = self.store.upsert(
        schedule.model_copy(
          update={"anchor": now, "last_delivered": None, "skipped_through": None}
        )
      )
      self.reconcile(now)
      return stored

  def update_schedule(self, schedule_id: str, **changes) -> AlarmSchedule:
    """Apply field changes (at, recurrence, label, enabled) and re-arm.

    Anything already due is delivered under the old definition first, so an
    edit racing a wake neither loses nor repeats that occurrence. Changing
    the timing, or re-enabling, counts occurrences from now.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
      raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    with self.lock:
      self._require_recovered()
      now = self.clock()
      self.deliver_due(now)
      current = self.store.get(schedule_id)

      data = current.model_dump()
      data.update({k: v for k, v in changes.items() if v is not None})
      data["id"] = schedule_id
      updated = AlarmSchedule.model_validate(data)

      if updated.timing_differs(current) or (updated.enabled and not current.enabled):
        updated = updated.model_copy(update={"anchor": now})

      stored = self.store.upsert(updated)
      self.reconcile(now)
      return stored

  def set_enabled(self, schedule_id: str, enabled: bool) -> AlarmSchedule:
    return self.update_schedule(schedule_id, enabled=enabled)

  def cancel_schedule(self, schedule_id: str) -> None:
    with self.lock:
      self._require_recovered()
      self.store.remove(schedule_id)
      for occ in [o for o in self._records if o.schedule_id == schedule_id]:
        del self._records[occ]
      self.reconcile()

  def list_schedules(self) -> List[AlarmSchedule]:
    return self.store.list_all()

  def next_occurrence_of(self, schedule: AlarmSchedule) -> Optional[datetime]:
    return next_occurrence(schedule, self.tz) if schedule.enabled else None

  def status(self) -> CoordinatorStatus:
    with self.lock:
      armed_instant = self._armed.instant if self._armed else None
      return CoordinatorStatus(
        armed_instant=armed_instant,
        degraded_reason=self._degraded_reason,
        enabled_count=len(self.store.list_enabled()),
        recovered=self._recovered,
        overdue=armed_instant is not None
        and self.clock() > armed_instant + self.settings.timer_slack,
      )
