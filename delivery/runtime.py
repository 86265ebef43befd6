"""Wiring of store, timer driver, sinks and coordinator for one process.

Contract:
- Inputs: an os-interface bundle `os_impl` whose factories build the timer
  driver (given `clock=`) and the host surface.
- Behavior: builds everything but runs nothing; callers invoke
  `Runtime.recover()` once before accepting schedule mutations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from alarm_schedule.config_parser import AlarmConfig, load_alarm_config
from alarm_schedule.models import utc_now
from alarm_schedule.store import ScheduleStore
from os_interfaces.base import Clock, HostSurface, OSImplementations, TimerDriver

from .coordinator import DeliveryCoordinator
from .recovery import Recovery, RecoveryReport
from .sink import AlarmLauncher, DeliveryHub, Subscription

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
  config: AlarmConfig
  store: ScheduleStore
  driver: TimerDriver
  hub: DeliveryHub
  coordinator: DeliveryCoordinator
  recovery: Recovery
  surface: Optional[HostSurface] = None
  launcher: Optional[AlarmLauncher] = None
  launcher_subscription: Optional[Subscription] = None

  def recover(self) -> RecoveryReport:
    return self.recovery.run()

  def shutdown(self) -> None:
    """Detach the launcher and wait for in-flight launches to finish"""
    if self.launcher_subscription is not None:
      self.hub.unsubscribe(self.launcher_subscription)
      self.launcher_subscription = None
    if self.launcher is not None:
      self.launcher.shutdown()
    self.driver.on_wake(None)


def build_runtime(
  os_impl: OSImplementations,
  *,
  app_name: str,
  config_path: Optional[Path] = None,
  data_dir: Optional[Path | str] = None,
  with_launcher: bool = True,
  clock: Clock = utc_now,
) -> Runtime:
  config = load_alarm_config(config_path)
  logger.info(
    f"Loaded alarm config from {config_path} ({len(config.alarms)} seed alarms)"
    if config_path and config_path.exists()
    else "No alarm config file; using default settings"
  )

  store = ScheduleStore.for_app(app_name, data_dir)
  driver = os_impl.timer_driver(clock=clock)
  hub = DeliveryHub()
  coordinator = DeliveryCoordinator(
    store=store, driver=driver, sink=hub, settings=config.settings, clock=clock
  )

  runtime = Runtime(
    config=config,
    store=store,
    driver=driver,
    hub=hub,
    coordinator=coordinator,
    recovery=Recovery(coordinator, seeds=config.alarms),
  )

  if with_launcher:
    runtime.surface = os_impl.host_surface()
    runtime.launcher = AlarmLauncher(
      runtime.surface,
      wake_lock_seconds=config.settings.receiver_wake_lock_seconds,
    )
    runtime.launcher_subscription = hub.subscribe(runtime.launcher)

  return runtime
