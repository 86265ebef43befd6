"""Tests for the delivery coordinator: single timer, dedup, edits, degraded state"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from alarm_schedule.errors import RecoveryPendingError, ScheduleNotFound
from alarm_schedule.models import AlarmSchedule, Recurrence
from delivery.coordinator import DeliveryCoordinator
from os_interfaces.manual import ManualTimerDriver

UTC = timezone.utc


def at(day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
  return datetime(2025, 1, day, hour, minute, second, tzinfo=UTC)


def daily(schedule_id: str, time_of_day: str) -> AlarmSchedule:
  return AlarmSchedule(id=schedule_id, at=time_of_day, recurrence=Recurrence.daily())


class TestArming:
  def test_arms_soonest_occurrence_only(self, make_coordinator, driver):
    c = make_coordinator()
    c.create_schedule(daily("late", "22:30"))
    assert driver.armed.instant == at(6, 22, 30)

    c.create_schedule(daily("early", "21:00"))

    assert c.armed.instant == at(6, 21, 0)
    assert driver.armed.instant == at(6, 21, 0)
    # The 22:30 timer was replaced, not kept alongside
    assert [h.instant for h in driver.cancelled] == [at(6, 22, 30)]

  def test_same_instant_is_not_rearmed(self, make_coordinator, driver):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    c.create_schedule(daily("b", "22:30"))
    c.reconcile()

    assert len(driver.history) == 1
    assert driver.cancelled == []

  def test_nothing_enabled_leaves_no_timer(self, make_coordinator, driver):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    c.set_enabled("a", False)

    assert c.armed is None
    assert driver.armed is None
    assert c.status().armed_instant is None

  def test_disable_moves_timer_to_next_schedule(self, make_coordinator, driver):
    c = make_coordinator()
    c.create_schedule(daily("early", "21:00"))
    c.create_schedule(daily("late", "22:30"))

    c.set_enabled("early", False)
    assert driver.armed.instant == at(6, 22, 30)

    c.set_enabled("early", True)
    assert driver.armed.instant == at(6, 21, 0)

  def test_cancel_schedule(self, make_coordinator, driver, store):
    c = make_coordinator()
    c.create_schedule(daily("early", "21:00"))
    c.create_schedule(daily("late", "22:30"))

    c.cancel_schedule("early")

    assert [s.id for s in store.list_all()] == ["late"]
    assert driver.armed.instant == at(6, 22, 30)
    with pytest.raises(ScheduleNotFound):
      c.cancel_schedule("early")

  def test_create_duplicate_id_rejected(self, make_coordinator):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    with pytest.raises(ValueError, match="already exists"):
      c.create_schedule(daily("a", "21:00"))

  def test_create_ignores_client_supplied_marks(self, make_coordinator, clock):
    c = make_coordinator()
    schedule = daily("a", "22:30").model_copy(
      update={"anchor": at(1, 0), "last_delivered": at(9, 22, 30)}
    )
    stored = c.create_schedule(schedule)

    assert stored.anchor == clock()
    assert stored.last_delivered is None
    assert c.armed.instant == at(6, 22, 30)


class TestWake:
  def test_wake_delivers_and_rearms(self, make_coordinator, driver, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    clock.set(at(6, 22, 30))
    driver.fire()

    assert sink.fired == [("a", at(6, 22, 30))]
    assert driver.armed.instant == at(7, 22, 30)

  def test_duplicate_wake_delivers_once(self, make_coordinator, driver, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    clock.set(at(6, 22, 30))
    driver.fire()
    clock.advance(seconds=1)
    driver.fire()
    c.handle_wake()

    assert sink.fired == [("a", at(6, 22, 30))]

  def test_second_process_does_not_redeliver(self, make_coordinator, store, sink, clock, driver):
    """A wake handled by another coordinator over the same store"""
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    clock.set(at(6, 22, 30, 5))
    driver.fire()

    other = DeliveryCoordinator(
      store=store,
      driver=ManualTimerDriver(clock=clock),
      sink=sink,
      settings=c.settings,
      clock=clock,
      sleep=lambda _: None,
    )
    other.mark_recovered()
    assert other.handle_wake() == []
    assert len(sink.fired) == 1

  def test_early_wake_within_tolerance(self, make_coordinator, driver, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    clock.set(at(6, 22, 29, 59))
    c.handle_wake()

    assert sink.fired == [("a", at(6, 22, 30))]
    assert c.armed.instant == at(7, 22, 30)

  def test_early_wake_beyond_tolerance_waits(self, make_coordinator, driver, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    clock.set(at(6, 22, 29))
    driver.fire()

    assert sink.fired == []
    assert driver.armed.instant == at(6, 22, 30)
    assert len(driver.history) == 1

  def test_deferred_wake_delivers_original_occurrence(self, make_coordinator, driver, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    # Host deferred the wake by three minutes
    clock.set(at(6, 22, 33))
    driver.fire()

    assert sink.fired == [("a", at(6, 22, 30))]

  def test_coinciding_schedules_both_delivered(self, make_coordinator, driver, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    c.create_schedule(daily("b", "22:30"))

    clock.set(at(6, 22, 30))
    driver.fire()

    assert sorted(sink.fired) == [("a", at(6, 22, 30)), ("b", at(6, 22, 30))]

  def test_one_shot_leaves_no_timer(self, make_coordinator, driver, sink, clock):
    c = make_coordinator()
    c.create_schedule(AlarmSchedule(id="nap", at="22:30", recurrence=Recurrence.once()))

    clock.set(at(6, 22, 30))
    driver.fire()

    assert sink.fired == [("nap", at(6, 22, 30))]
    assert driver.armed is None
    assert c.next_occurrence_of(c.store.get("nap")) is None

  def test_unexpected_action_ignored(self, make_coordinator, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    clock.set(at(6, 22, 30))

    assert c.handle_wake("SOMETHING_ELSE") == []
    assert sink.fired == []

  def test_unreadable_store_during_wake(self, make_coordinator, store, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    store.path.write_text("schedules: [oops\n")
    clock.set(at(6, 22, 30))

    assert c.handle_wake() == []
    assert sink.fired == []

  def test_sink_failure_does_not_break_wake(self, make_coordinator, driver, sink, clock):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    sink.on_alarm_fired = MagicMock(side_effect=RuntimeError("ui gone"))

    clock.set(at(6, 22, 30))
    driver.fire()

    assert driver.armed.instant == at(7, 22, 30)
    assert c.store.get("a").last_delivered == at(6, 22, 30)


class TestEdits:
  def test_edit_time_rearms(self, make_coordinator, driver):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    c.update_schedule("a", at="21:15")

    assert driver.armed.instant == at(6, 21, 15)

  def test_edit_label_keeps_timer(self, make_coordinator, driver):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    updated = c.update_schedule("a", label="Lights out")

    assert updated.label == "Lights out"
    assert len(driver.history) == 1

  def test_edit_racing_a_wake(self, make_coordinator, driver, sink, clock):
    """Edit lands after the timer fired but before the wake was handled"""
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    clock.set(at(6, 22, 30, 30))
    c.update_schedule("a", at="23:00")
    driver.fire()

    assert sink.fired == [("a", at(6, 22, 30))]
    assert driver.armed.instant == at(6, 23, 0)

    clock.set(at(6, 23, 0))
    driver.fire()
    assert sink.fired == [("a", at(6, 22, 30)), ("a", at(6, 23, 0))]

  def test_edit_recurrence(self, make_coordinator, driver):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))

    # 2025-01-06 is a Monday
    c.update_schedule("a", recurrence=Recurrence.weekdays("wed"))

    assert driver.armed.instant == at(8, 22, 30)

  def test_edit_rejects_unknown_fields(self, make_coordinator):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    with pytest.raises(ValueError, match="last_delivered"):
      c.update_schedule("a", last_delivered=at(9, 0))

  def test_edit_unknown_schedule(self, make_coordinator):
    c = make_coordinator()
    with pytest.raises(ScheduleNotFound):
      c.update_schedule("ghost", label="x")

  def test_mutations_refused_before_recovery(self, make_coordinator):
    c = make_coordinator(recovered=False)
    with pytest.raises(RecoveryPendingError):
      c.create_schedule(daily("a", "22:30"))


class TestDegraded:
  def test_transient_failure_retried_with_backoff(self, make_coordinator, driver, sink):
    c = make_coordinator()
    sleeps = []
    c.sleep = sleeps.append
    driver.fail_times = 2

    c.create_schedule(daily("a", "22:30"))

    assert driver.armed.instant == at(6, 22, 30)
    assert sleeps == [0.5, 1.0]
    assert sink.degraded == []
    assert not c.status().degraded

  def test_persistent_failure_signals_degraded(self, make_coordinator, driver, sink):
    c = make_coordinator()
    driver.fail_times = 3

    c.create_schedule(daily("a", "22:30"))

    status = c.status()
    assert status.degraded
    assert status.armed_instant is None
    assert len(sink.degraded) == 1 and sink.degraded[0]

    # Host accepts timers again on the next pass
    c.reconcile()
    assert driver.armed.instant == at(6, 22, 30)
    assert sink.degraded[-1] is None
    assert not c.status().degraded

  def test_refused_rearm_keeps_previous_timer(self, make_coordinator, driver, sink):
    c = make_coordinator()
    c.create_schedule(daily("late", "23:00"))
    previous = driver.armed

    driver.fail_times = 10
    c.create_schedule(daily("early", "22:00"))

    # The 23:00 timer still wakes us; 22:00 is caught up on that wake
    assert driver.armed == previous
    assert driver.cancelled == []
    assert c.armed.instant == at(6, 23)
    assert c.reconcile() == at(6, 23)
    status = c.status()
    assert status.degraded
    assert status.armed_instant == at(6, 23)
    assert sink.degraded and sink.degraded[-1]

    driver.fail_times = 0
    assert c.reconcile() == at(6, 22)
    assert driver.armed.instant == at(6, 22)
    assert [h.instant for h in driver.cancelled] == [at(6, 23)]
    assert not c.status().degraded

  def test_status_counts_enabled(self, make_coordinator):
    c = make_coordinator()
    c.create_schedule(daily("a", "22:30"))
    c.create_schedule(daily("b", "21:00"))
    c.set_enabled("b", False)

    status = c.status()
    assert status.enabled_count == 1
    assert status.recovered
    assert status.armed_instant == at(6, 22, 30)

  def test_missing_wake_reported_overdue(self, make_coordinator, clock):
    c = make_coordinator(timer_slack_seconds=180)
    c.create_schedule(daily("a", "22:30"))

    clock.set(at(6, 22, 32))
    assert not c.status().overdue

    # No wake arrived well past the host's usual deferral
    clock.set(at(6, 22, 34))
    assert c.status().overdue
