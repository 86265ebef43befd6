"""Linux-specific implementations of OS interfaces"""

import logging
import os
import shutil
import subprocess
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict
from urllib.parse import urlencode

from desktop_notifier import DesktopNotifier, Urgency
from pystemd.dbuslib import DBus
from pystemd.systemd1 import Manager

from alarm_schedule.errors import TimerDriverUnavailable
from alarm_schedule.models import TimerHandle, utc_now

from .base import Clock, HostSurface, TimerDriver

logger = logging.getLogger(__name__)


class LinuxTimerDriver(TimerDriver):
  """Wake timer backed by one persistent systemd user timer.

  The timer unit runs `<command> wake` when it elapses. `Persistent=true`
  makes systemd fire it at boot if the instant passed while powered off, and
  `WakeSystem=true` resumes a suspended machine.
  """

  def __init__(self, app_name: str, command: str = "nightcap", clock: Clock = utc_now):
    super().__init__(clock=clock)
    self.app_name = app_name
    self.command = command
    self.unit_base = f"{app_name}-alarm-wake"

  # ---- helpers ----
  @contextmanager
  def _connect_systemd(self):
    with DBus(user_mode=True) as bus:
      manager = Manager(bus=bus)
      manager.load()
      yield manager

  def _user_unit_dir(self) -> Path:
    return Path.home() / ".config/systemd/user"

  def _write_unit(self, name: str, content: str) -> Path:
    d = self._user_unit_dir()
    d.mkdir(parents=True, exist_ok=True)
    p = d / name
    p.write_text(content)
    return p

  def _service_content(self) -> str:
    return (
      "[Unit]\n"
      f"Description={self.app_name} alarm wake handler\n"
      "\n[Service]\n"
      "Type=oneshot\n"
      f"ExecStart={self.command} wake\n"
    )

  def _timer_content(self, instant: datetime) -> str:
    on_calendar = instant.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    return (
      "[Unit]\n"
      f"Description={self.app_name} alarm wake timer\n"
      "\n[Timer]\n"
      f"OnCalendar={on_calendar}\n"
      "AccuracySec=1s\n"
      "Persistent=true\n"
      "WakeSystem=true\n"
      f"Unit={self.unit_base}.service\n"
      "\n[Install]\n"
      "WantedBy=timers.target\n"
    )

  # ---- public API ----
  def _arm(self, instant: datetime) -> TimerHandle:
    timer = f"{self.unit_base}.timer".encode()
    try:
      self._write_unit(f"{self.unit_base}.service", self._service_content())
      self._write_unit(f"{self.unit_base}.timer", self._timer_content(instant))
      with self._connect_systemd() as m:
        m.Manager.Reload()
        m.Manager.EnableUnitFiles([timer], False, True)
        # Restart so a changed OnCalendar takes effect on an active timer
        m.Manager.RestartUnit(timer, b"replace")
    except Exception as e:
      raise TimerDriverUnavailable(f"systemd refused timer {self.unit_base}: {e}", e) from e

    logger.info(f"Armed {self.unit_base}.timer for {instant.isoformat()}")
    return TimerHandle(timer_id=self.unit_base, instant=instant)

  def cancel(self, handle: TimerHandle) -> None:
    """Stop and disable the timer. timer_id is the base unit name."""
    timer = f"{handle.timer_id}.timer".encode()
    try:
      with self._connect_systemd() as m:
        m.Manager.StopUnit(timer, b"replace")
        m.Manager.DisableUnitFiles([timer], False)
    except Exception as e:
      raise TimerDriverUnavailable(f"Could not cancel timer {handle.timer_id}: {e}", e) from e
    logger.info(f"Cancelled timer {handle.timer_id}")

  def cancel_all(self) -> None:
    if not (self._user_unit_dir() / f"{self.unit_base}.timer").exists():
      return
    self.cancel(TimerHandle(timer_id=self.unit_base, instant=self.clock()))


class LinuxHostSurface(HostSurface):
  """Desktop session glue: DPMS wake, xdg-open and desktop-notifier"""

  def __init__(self, app_name: str, app_url: str = "http://127.0.0.1:8000"):
    self.app_name = app_name
    self.app_url = app_url
    self.notifier = DesktopNotifier(app_name=app_name)

  def _has_display(self) -> bool:
    return bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))

  def wake_screen(self, seconds: int) -> bool:
    if not self._has_display() or shutil.which("xset") is None:
      return False
    try:
      subprocess.run(["xset", "dpms", "force", "on"], check=True, timeout=5)
      subprocess.run(["xset", "s", "reset"], check=False, timeout=5)
    except (OSError, subprocess.SubprocessError) as e:
      logger.warning(f"Failed to wake screen: {e}")
      return False
    logger.debug(f"Screen woken (requested {seconds}s)")
    return True

  def can_reach_foreground(self) -> bool:
    return self._has_display() and shutil.which("xdg-open") is not None

  def _view_url(self, extras: Dict[str, Any]) -> str:
    query = {k: str(v).lower() if isinstance(v, bool) else str(v) for k, v in extras.items()}
    return f"{self.app_url}/?{urlencode(query)}"

  def bring_to_foreground(self, extras: Dict[str, Any]) -> None:
    subprocess.Popen(
      ["xdg-open", self._view_url(extras)],
      stdout=subprocess.DEVNULL,
      stderr=subprocess.DEVNULL,
    )
    logger.info("Opened reminder view")

  async def show_alarm_notification(
    self, title: str, body: str, extras: Dict[str, Any]
  ) -> None:
    def on_clicked():
      if self.can_reach_foreground():
        self.bring_to_foreground(extras)

    await self.notifier.send(
      title=title,
      message=body,
      urgency=Urgency.Critical,
      on_clicked=on_clicked,
    )
    logger.info(f"Alarm notification sent: {title}")
