"""Android entrypoint for the Nightcap backend service.

Injects AlarmManager-backed timers and the PyJNIus host surface. The alarm
broadcast receiver lives as long as this process.
"""

from __future__ import annotations

from alarm_schedule.main_android import android_implementations
from entrypoints.nightcap_core import serve


def main() -> None:
  serve(android_implementations())


if __name__ == "__main__":
  main()
