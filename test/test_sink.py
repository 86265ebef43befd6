"""Tests for the delivery hub and the alarm launcher"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from alarm_schedule.models import Occurrence
from delivery.sink import AlarmLauncher, DeliveryHub, LaunchTier
from os_interfaces.base import HostSurface

from conftest import RecordingSink

T0 = datetime(2025, 1, 6, 22, 30, tzinfo=timezone.utc)


class TestDeliveryHub:
  def test_fans_out_to_subscribers(self):
    hub = DeliveryHub()
    first, second = RecordingSink(), RecordingSink()
    hub.subscribe(first)
    hub.subscribe(second)

    hub.on_alarm_fired("bedtime", T0)

    assert first.fired == [("bedtime", T0)]
    assert second.fired == [("bedtime", T0)]

  def test_backlog_replayed_to_next_subscriber(self):
    hub = DeliveryHub()
    hub.on_alarm_fired("bedtime", T0)

    late = RecordingSink()
    hub.subscribe(late)
    assert late.fired == [("bedtime", T0)]

    # Replayed once only
    another = RecordingSink()
    hub.subscribe(another)
    assert another.fired == []

  def test_backlog_is_bounded(self):
    hub = DeliveryHub(backlog_size=2)
    for schedule_id in ("a", "b", "c"):
      hub.on_alarm_fired(schedule_id, T0)

    listener = RecordingSink()
    hub.subscribe(listener)
    assert [s for s, _ in listener.fired] == ["b", "c"]

  def test_unsubscribe_stops_delivery(self):
    hub = DeliveryHub()
    listener = RecordingSink()
    subscription = hub.subscribe(listener)
    hub.unsubscribe(subscription)

    hub.on_alarm_fired("bedtime", T0)

    assert listener.fired == []
    assert hub.subscriber_count == 0

  def test_failing_subscriber_does_not_starve_others(self):
    hub = DeliveryHub()
    broken = MagicMock()
    broken.on_alarm_fired.side_effect = RuntimeError("boom")
    healthy = RecordingSink()
    hub.subscribe(broken)
    hub.subscribe(healthy)

    hub.on_alarm_fired("bedtime", T0)

    assert healthy.fired == [("bedtime", T0)]

  def test_degraded_state_reaches_late_subscriber(self):
    hub = DeliveryHub()
    hub.on_degraded("AlarmManager refused alarm")

    listener = RecordingSink()
    hub.subscribe(listener)
    assert listener.degraded == ["AlarmManager refused alarm"]

    hub.on_degraded(None)
    assert listener.degraded == ["AlarmManager refused alarm", None]


@pytest.fixture
def surface():
  mock = MagicMock(spec=HostSurface)
  mock.wake_screen.return_value = True
  mock.show_alarm_notification = AsyncMock()
  return mock


class TestAlarmLauncher:
  def test_foreground_tier(self, surface):
    surface.can_reach_foreground.return_value = True
    launcher = AlarmLauncher(surface, wake_lock_seconds=30)

    result = launcher.launch(Occurrence("bedtime", T0))

    assert result.tier == LaunchTier.FOREGROUND
    assert result.detail == "foreground reachable; screen woken"
    surface.wake_screen.assert_called_once_with(30)
    extras = surface.bring_to_foreground.call_args[0][0]
    assert extras["alarm_triggered"] is True
    assert extras["show_alarm_overlay"] is True
    assert extras["schedule_id"] == "bedtime"
    surface.show_alarm_notification.assert_not_called()

  def test_notification_tier_when_foreground_blocked(self, surface):
    surface.can_reach_foreground.return_value = False
    launcher = AlarmLauncher(surface, title="Bed", body="Now")

    result = launcher.launch(Occurrence("bedtime", T0))
    launcher.shutdown()

    assert result.tier == LaunchTier.NOTIFICATION
    assert result.detail.startswith("foreground not reachable")
    surface.bring_to_foreground.assert_not_called()
    surface.show_alarm_notification.assert_awaited_once()
    title, body, extras = surface.show_alarm_notification.call_args[0]
    assert (title, body) == ("Bed", "Now")
    assert extras["occurrence"] == T0.isoformat()

  def test_screen_wake_refused_still_launches(self, surface):
    surface.wake_screen.return_value = False
    surface.can_reach_foreground.return_value = True
    launcher = AlarmLauncher(surface)

    result = launcher.launch(Occurrence("bedtime", T0))

    assert result.tier == LaunchTier.FOREGROUND
    assert result.detail.endswith("screen wake refused")

  def test_fired_event_runs_on_executor(self, surface):
    surface.can_reach_foreground.return_value = True
    results = []
    launcher = AlarmLauncher(
      surface, on_result=results.append, executor=ThreadPoolExecutor(max_workers=1)
    )

    launcher.on_alarm_fired("bedtime", T0)
    launcher.shutdown()

    assert [r.occurrence for r in results] == [Occurrence("bedtime", T0)]

  def test_foreground_failure_falls_back_to_notification(self, surface):
    surface.can_reach_foreground.return_value = True
    surface.bring_to_foreground.side_effect = RuntimeError("activity start blocked")
    launcher = AlarmLauncher(surface)

    result = launcher.submit(Occurrence("bedtime", T0)).result(timeout=5)
    launcher.shutdown()

    assert result.tier == LaunchTier.NOTIFICATION
    assert "activity start blocked" in result.detail
    surface.show_alarm_notification.assert_awaited_once()
    extras = surface.show_alarm_notification.call_args[0][2]
    assert extras["alarm_triggered"] is True

  def test_foreground_check_failure_falls_back_to_notification(self, surface):
    surface.can_reach_foreground.side_effect = RuntimeError("no activity")
    launcher = AlarmLauncher(surface)

    result = launcher.launch(Occurrence("bedtime", T0))
    launcher.shutdown()

    assert result.tier == LaunchTier.NOTIFICATION
    surface.bring_to_foreground.assert_not_called()
    surface.show_alarm_notification.assert_awaited_once()

  def test_both_tiers_failing_is_logged_not_raised(self, surface):
    surface.can_reach_foreground.return_value = False
    surface.show_alarm_notification.side_effect = RuntimeError("no notification service")
    launcher = AlarmLauncher(surface)

    future = launcher.submit(Occurrence("bedtime", T0))

    assert future.result(timeout=5) is None
    launcher.shutdown()

  def test_notification_loop_outlives_send(self, surface):
    # Click callbacks registered during send run on this loop later
    loops = []

    async def record_loop(title, body, extras):
      loops.append(asyncio.get_running_loop())

    surface.can_reach_foreground.return_value = False
    surface.show_alarm_notification.side_effect = record_loop
    launcher = AlarmLauncher(surface)

    launcher.launch(Occurrence("bedtime", T0))
    launcher.launch(Occurrence("bedtime", T0))

    assert loops[0] is loops[1]
    assert loops[0].is_running()
    launcher.shutdown()
    assert loops[0].is_closed()
