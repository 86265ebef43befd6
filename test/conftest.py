"""Shared fixtures: a controllable clock and an in-process coordinator"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytest

from alarm_schedule.config_parser import SchedulerSettings
from alarm_schedule.store import ScheduleStore
from delivery.coordinator import DeliveryCoordinator
from delivery.sink import DeliverySink
from os_interfaces.manual import ManualTimerDriver

# A Monday
START = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


class FakeClock:
  def __init__(self, now: datetime = START):
    self.now = now

  def __call__(self) -> datetime:
    return self.now

  def advance(self, **kwargs) -> datetime:
    self.now += timedelta(**kwargs)
    return self.now

  def set(self, now: datetime) -> datetime:
    self.now = now
    return now


class RecordingSink(DeliverySink):
  def __init__(self):
    self.fired: List[Tuple[str, datetime]] = []
    self.degraded: List[Optional[str]] = []

  def on_alarm_fired(self, schedule_id: str, instant: datetime) -> None:
    self.fired.append((schedule_id, instant))

  def on_degraded(self, reason: Optional[str]) -> None:
    self.degraded.append(reason)


@pytest.fixture
def clock():
  return FakeClock()


@pytest.fixture
def store(tmp_path):
  return ScheduleStore(tmp_path / "schedules.yaml")


@pytest.fixture
def sink():
  return RecordingSink()


@pytest.fixture
def driver(clock):
  return ManualTimerDriver(clock=clock)


@pytest.fixture
def make_coordinator(store, driver, sink, clock):
  """Build a coordinator over the shared store/driver/sink; UTC by default"""

  def _make(recovered: bool = True, **settings) -> DeliveryCoordinator:
    settings.setdefault("timezone", "UTC")
    coordinator = DeliveryCoordinator(
      store=store,
      driver=driver,
      sink=sink,
      settings=SchedulerSettings(**settings),
      clock=clock,
      sleep=lambda _: None,
    )
    if recovered:
      coordinator.mark_recovered()
    return coordinator

  return _make
