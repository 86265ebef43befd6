"""Alarm schedule model, configuration and storage"""

from .config_parser import (
  AlarmConfig,
  AlarmDefinition,
  SchedulerSettings,
  load_alarm_config,
  parse_alarm_config,
)
from .models import AlarmSchedule, MissedPolicy, Occurrence, Recurrence, RecurrenceKind
from .store import ScheduleStore

__all__ = [
  "AlarmConfig",
  "AlarmDefinition",
  "AlarmSchedule",
  "MissedPolicy",
  "Occurrence",
  "Recurrence",
  "RecurrenceKind",
  "ScheduleStore",
  "SchedulerSettings",
  "load_alarm_config",
  "parse_alarm_config",
]
