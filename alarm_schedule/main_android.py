"""Android entrypoint for the `nightcap` command.

Manages alarms through Android AlarmManager via the injected Android
TimerDriver.
"""

import sys

from alarm_schedule.main import main
from os_interfaces.base import OSImplementations
from os_interfaces.android import AndroidHostSurface, AndroidTimerDriver


def android_implementations() -> OSImplementations:
  return OSImplementations(
    timer_driver_cls=AndroidTimerDriver,
    host_surface_cls=AndroidHostSurface,
  )


def run() -> None:
  sys.exit(main(os_impl=android_implementations()))


if __name__ == "__main__":
  run()
