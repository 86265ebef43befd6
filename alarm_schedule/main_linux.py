"""Linux entrypoint for the `nightcap` command."""

import sys
from functools import partial

from alarm_schedule.main import main
from backend.config import AppConfig
from os_interfaces.base import OSImplementations
from os_interfaces.linux import LinuxHostSurface, LinuxTimerDriver


def linux_implementations() -> OSImplementations:
  return OSImplementations(
    timer_driver_cls=partial(
      LinuxTimerDriver, app_name=AppConfig.APP_NAME, command=AppConfig.WAKE_COMMAND
    ),
    host_surface_cls=partial(
      LinuxHostSurface, app_name=AppConfig.APP_NAME, app_url=AppConfig.APP_URL
    ),
  )


def run() -> None:
  sys.exit(main(os_impl=linux_implementations()))


if __name__ == "__main__":
  run()
