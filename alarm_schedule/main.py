"""
Nightcap command-line program.

Every invocation is a fresh process, so it runs start-up recovery before
doing anything else. The systemd wake timer runs `nightcap wake`.

Usage:
    nightcap list
    nightcap add --at 22:30 --days mon,tue,wed,thu,fri --label "Bedtime"
    nightcap wake
"""

import argparse
import logging
import sys
from datetime import date
from typing import Callable, List, Optional

from backend.config import AppConfig, alarm_config_path, setup_logging
from delivery.runtime import Runtime, build_runtime
from os_interfaces.base import WAKE_ACTION, OSImplementations

from .errors import SchedulerError
from .models import AlarmSchedule, Recurrence

logger = logging.getLogger(__name__)


def _recurrence_from_args(args: argparse.Namespace) -> Optional[Recurrence]:
  if args.daily:
    return Recurrence.daily()
  if args.days:
    return Recurrence.weekdays(*[d.strip() for d in args.days.split(",") if d.strip()])
  if args.date:
    return Recurrence.once(date.fromisoformat(args.date))
  if args.once:
    return Recurrence.once()
  return None


def _format_schedule(runtime: Runtime, schedule: AlarmSchedule) -> str:
  upcoming = runtime.coordinator.next_occurrence_of(schedule)
  upcoming_str = (
    upcoming.astimezone(runtime.coordinator.tz).strftime("%Y-%m-%d %H:%M")
    if upcoming
    else "-"
  )
  state = "on " if schedule.enabled else "off"
  return (
    f"{schedule.id:<20} {state} {schedule.at.strftime('%H:%M')}  "
    f"{schedule.recurrence.describe():<28} next: {upcoming_str}  {schedule.label}"
  )


def cmd_wake(runtime: Runtime, args: argparse.Namespace) -> None:
  delivered = runtime.coordinator.handle_wake(args.action)
  logger.info(f"Wake handled, {len(delivered)} alarm(s) delivered")


def cmd_recover(runtime: Runtime, args: argparse.Namespace) -> None:
  # Recovery already ran at start-up; report what the store looks like now
  cmd_status(runtime, args)


def cmd_list(runtime: Runtime, args: argparse.Namespace) -> None:
  schedules = runtime.coordinator.list_schedules()
  if not schedules:
    print("No alarms configured.")
    return
  for schedule in schedules:
    print(_format_schedule(runtime, schedule))


def cmd_add(runtime: Runtime, args: argparse.Namespace) -> None:
  fields = {
    "at": args.at,
    "label": args.label or "Bedtime",
    "recurrence": _recurrence_from_args(args) or Recurrence.once(),
    "enabled": not args.disabled,
  }
  if args.id:
    fields["id"] = args.id
  schedule = runtime.coordinator.create_schedule(AlarmSchedule(**fields))
  print(_format_schedule(runtime, schedule))


def cmd_update(runtime: Runtime, args: argparse.Namespace) -> None:
  schedule = runtime.coordinator.update_schedule(
    args.id, at=args.at, label=args.label, recurrence=_recurrence_from_args(args)
  )
  print(_format_schedule(runtime, schedule))


def cmd_remove(runtime: Runtime, args: argparse.Namespace) -> None:
  runtime.coordinator.cancel_schedule(args.id)
  print(f"Removed {args.id}")


def cmd_enable(runtime: Runtime, args: argparse.Namespace) -> None:
  print(_format_schedule(runtime, runtime.coordinator.set_enabled(args.id, True)))


def cmd_disable(runtime: Runtime, args: argparse.Namespace) -> None:
  print(_format_schedule(runtime, runtime.coordinator.set_enabled(args.id, False)))


def cmd_status(runtime: Runtime, args: argparse.Namespace) -> None:
  status = runtime.coordinator.status()
  armed = status.armed_instant.isoformat() if status.armed_instant else "none"
  print(f"Enabled alarms: {status.enabled_count}")
  print(f"Next wake:      {armed}")
  if status.degraded:
    print(f"DEGRADED:       {status.degraded_reason}")
  if status.overdue:
    print("OVERDUE:        armed wake has not arrived; host may be deferring it")


def _add_recurrence_flags(parser: argparse.ArgumentParser) -> None:
  group = parser.add_mutually_exclusive_group()
  group.add_argument("--daily", action="store_true", help="Repeat every day")
  group.add_argument("--days", help="Repeat on weekdays, e.g. mon,tue,fri")
  group.add_argument("--once", action="store_true", help="Fire once at the next HH:MM")
  group.add_argument("--date", help="Fire once on YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    prog="nightcap", description="Manage and deliver bedtime reminder alarms."
  )
  parser.add_argument("--config", help="Path to alarm config file (default: ~/.config/nightcap/alarms.yaml)")
  parser.add_argument("--data-dir", help="Directory holding the schedule store")
  parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
  sub = parser.add_subparsers(dest="command", required=True)

  wake = sub.add_parser("wake", help="Handle a host wake: deliver due alarms and re-arm")
  wake.add_argument("--action", default=WAKE_ACTION, help=argparse.SUPPRESS)
  wake.set_defaults(func=cmd_wake)

  sub.add_parser("recover", help="Run start-up recovery and show status").set_defaults(func=cmd_recover)
  sub.add_parser("list", help="List alarms").set_defaults(func=cmd_list)
  sub.add_parser("status", help="Show armed wake timer").set_defaults(func=cmd_status)

  add = sub.add_parser("add", help="Create an alarm")
  add.add_argument("--at", required=True, help="Time of day, HH:MM")
  add.add_argument("--label")
  add.add_argument("--id", help="Stable id (default: generated)")
  add.add_argument("--disabled", action="store_true")
  _add_recurrence_flags(add)
  add.set_defaults(func=cmd_add)

  update = sub.add_parser("update", help="Change an alarm")
  update.add_argument("id")
  update.add_argument("--at", help="Time of day, HH:MM")
  update.add_argument("--label")
  _add_recurrence_flags(update)
  update.set_defaults(func=cmd_update)

  for name, func in (("remove", cmd_remove), ("enable", cmd_enable), ("disable", cmd_disable)):
    p = sub.add_parser(name, help=f"{name.capitalize()} an alarm")
    p.add_argument("id")
    p.set_defaults(func=func)

  return parser


def main(
  os_impl: OSImplementations | None = None,
  argv: Optional[List[str]] = None,
  runtime_factory: Callable[..., Runtime] = build_runtime,
) -> int:
  """Main entrypoint for the nightcap CLI."""
  args = build_parser().parse_args(argv)
  setup_logging(args.log_level)

  if os_impl is None:
    from .main_linux import linux_implementations

    os_impl = linux_implementations()

  runtime = runtime_factory(
    os_impl,
    app_name=AppConfig.APP_NAME,
    config_path=alarm_config_path(args.config),
    data_dir=args.data_dir or AppConfig.DATA_DIR,
  )

  try:
    runtime.recover()
    args.func(runtime, args)
  except SchedulerError as e:
    logger.error(str(e))
    return 1
  except ValueError as e:
    logger.error(f"Invalid input: {e}")
    return 2
  finally:
    runtime.shutdown()
  return 0


if __name__ == "__main__":
  sys.exit(main())
