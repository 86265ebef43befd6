"""Linux entrypoint for the Nightcap backend service.

Injects the systemd timer driver and desktop host surface.
"""

from __future__ import annotations

from alarm_schedule.main_linux import linux_implementations
from entrypoints.nightcap_core import serve


def main() -> None:
  serve(linux_implementations())


if __name__ == "__main__":
  main()
