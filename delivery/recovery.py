"""
Reboot and deferral recovery

Decides what happens to occurrences whose wake never came (process dead,
device off, doze deferral) and re-arms the true next occurrence at start-up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING, Dict, List, Optional

from alarm_schedule.config_parser import AlarmDefinition, SchedulerSettings
from alarm_schedule.errors import ScheduleNotFound
from alarm_schedule.models import AlarmSchedule, MissedPolicy, Occurrence
from alarm_schedule.recurrence import pending_occurrences

if TYPE_CHECKING:
  from .coordinator import DeliveryCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MissedPlan:
  """What to do with a schedule's due occurrences right now"""

  deliver_at: Optional[datetime] = None
  skip_through: Optional[datetime] = None
  missed: int = 0


def plan_missed(
  schedule: AlarmSchedule, now: datetime, settings: SchedulerSettings, tz: tzinfo
) -> MissedPlan:
  """Collapse a schedule's due occurrences into at most one delivery.

  Occurrences older than `now - catch_up_window` are missed. Under
  `deliver_once` the latest due occurrence is delivered and everything
  before it is covered by that single delivery. Under `skip` missed
  occurrences are skipped; one still inside the window is delivered.
  """
  due = list(pending_occurrences(schedule, now + settings.early_fire_tolerance, tz))
  if not due:
    return MissedPlan()

  cutoff = now - settings.catch_up_window
  missed = [instant for instant in due if instant < cutoff]
  timely = len(due) > len(missed)

  skip_through = None
  if missed and settings.missed_policy == MissedPolicy.SKIP:
    skip_through = missed[-1]

  deliver_at = None
  if timely or settings.missed_policy == MissedPolicy.DELIVER_ONCE:
    deliver_at = due[-1]

  return MissedPlan(deliver_at=deliver_at, skip_through=skip_through, missed=len(missed))


@dataclass
class RecoveryReport:
  seeded: List[str] = field(default_factory=list)
  delivered: List[Occurrence] = field(default_factory=list)
  skipped: Dict[str, datetime] = field(default_factory=dict)
  armed_instant: Optional[datetime] = None


class Recovery:
  """Start-up pass. Must run before the coordinator accepts mutations."""

  def __init__(
    self,
    coordinator: "DeliveryCoordinator",
    seeds: Optional[Dict[str, AlarmDefinition]] = None,
  ):
    self.coordinator = coordinator
    self.seeds = seeds or {}

  def _seed(self, now: datetime) -> List[str]:
    """Add config-file alarms that the store does not know yet"""
    store = self.coordinator.store
    seeded = []
    for name, definition in self.seeds.items():
      try:
        store.get(name)
      except ScheduleNotFound:
        store.upsert(definition.to_schedule(name).model_copy(update={"anchor": now}))
        seeded.append(name)
    if seeded:
      logger.info(f"Seeded alarms from config: {', '.join(seeded)}")
    return seeded

  def run(self) -> RecoveryReport:
    """Seed, clear any stale native timer, settle missed occurrences, re-arm.

    Raises:
      StoreUnavailable: If the schedule store cannot be read; the
        coordinator then keeps refusing mutations until a later run succeeds
    """
    c = self.coordinator
    with c.lock:
      now = c.clock()
      logger.info(f"Running start-up recovery at {now.isoformat()}")
      report = RecoveryReport(seeded=self._seed(now))

      c.reset_timer()

      for schedule in c.store.list_enabled():
        plan = plan_missed(schedule, now, c.settings, c.tz)
        if plan.missed:
          logger.info(
            f"Schedule '{schedule.id}' missed {plan.missed} occurrence(s) "
            f"(policy: {c.settings.missed_policy.value})"
          )
        if plan.skip_through is not None:
          report.skipped[schedule.id] = plan.skip_through

      report.delivered = c.deliver_due(now)
      report.armed_instant = c.reconcile(now)
      c.mark_recovered()

    logger.info(
      f"Recovery complete: {len(report.delivered)} delivered, "
      f"{len(report.skipped)} skipped, next wake "
      f"{report.armed_instant.isoformat() if report.armed_instant else 'none'}"
    )
    return report
