"""
Alarm configuration parser
Parses YAML config files with scheduler settings and seed alarm definitions
"""

from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import AlarmSchedule, MissedPolicy, Recurrence, parse_time_of_day

RECURRENCE_KEYS = ("once", "daily", "weekdays")


class SchedulerSettings(BaseModel):
  """Delivery policy knobs. Durations are minutes or seconds as named."""

  timezone: Optional[str] = None
  catch_up_window_minutes: float = Field(default=5.0, ge=0)
  missed_policy: MissedPolicy = MissedPolicy.DELIVER_ONCE
  firing_window_seconds: float = Field(default=120.0, gt=0)
  early_fire_tolerance_seconds: float = Field(default=2.0, ge=0)
  timer_slack_seconds: float = Field(default=180.0, ge=0)
  retry_attempts: int = Field(default=3, ge=1)
  retry_base_delay_seconds: float = Field(default=0.5, ge=0)
  retry_max_delay_seconds: float = Field(default=8.0, ge=0)
  receiver_wake_lock_seconds: int = Field(default=30, ge=0)
  foreground_wake_lock_seconds: int = Field(default=10, ge=0)

  @field_validator("timezone")
  @classmethod
  def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
    if v is None:
      return v
    try:
      ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError) as e:
      raise ValueError(f"Unknown timezone: {v}") from e
    return v

  @property
  def tz(self) -> tzinfo:
    if self.timezone:
      return ZoneInfo(self.timezone)
    return datetime.now().astimezone().tzinfo

  @property
  def catch_up_window(self) -> timedelta:
    return timedelta(minutes=self.catch_up_window_minutes)

  @property
  def firing_window(self) -> timedelta:
    return timedelta(seconds=self.firing_window_seconds)

  @property
  def timer_slack(self) -> timedelta:
    return timedelta(seconds=self.timer_slack_seconds)

  @property
  def early_fire_tolerance(self) -> timedelta:
    return timedelta(seconds=self.early_fire_tolerance_seconds)


class AlarmDefinition(BaseModel):
  """A seed alarm as written in the config file"""

  hour: str
  label: Optional[str] = None
  enabled: bool = True
  recurrence: Recurrence

  @field_validator("hour", mode="before")
  @classmethod
  def validate_hour(cls, v) -> str:
    return parse_time_of_day(v).strftime("%H:%M")

  def to_schedule(self, schedule_id: str) -> AlarmSchedule:
    return AlarmSchedule(
      id=schedule_id,
      label=self.label or schedule_id,
      at=self.hour,  # type: ignore[arg-type]
      recurrence=self.recurrence,
      enabled=self.enabled,
    )


class AlarmConfig(BaseModel):
  """Complete alarm configuration file"""

  settings: SchedulerSettings = Field(default_factory=SchedulerSettings)
  alarms: Dict[str, AlarmDefinition] = Field(default_factory=dict)


def _recurrence_from(name: str, config: dict) -> Recurrence:
  present = [k for k in RECURRENCE_KEYS if k in config]
  if len(present) > 1:
    raise ValueError(
      f"Alarm '{name}': {' and '.join(present)} specified. "
      "Only one recurrence field is allowed."
    )

  match config:
    case {"daily": True}:
      return Recurrence.daily()
    case {"weekdays": days}:
      return Recurrence.weekdays(*(days if isinstance(days, list) else [days]))
    case {"once": True, "date": on_date}:
      if isinstance(on_date, str):
        on_date = date.fromisoformat(on_date)
      return Recurrence.once(on_date)
    case _:
      return Recurrence.once()


def parse_alarm_config(config_path: Path | str) -> AlarmConfig:
  """
  Parse alarm configuration from YAML file

  Args:
      config_path: Path to the YAML configuration file

  Returns:
      AlarmConfig with scheduler settings and seed alarms

  Raises:
      FileNotFoundError: If config file doesn't exist
      yaml.YAMLError: If YAML is malformed
      pydantic.ValidationError: If config doesn't match schema
  """
  config_path = Path(config_path)

  if not config_path.exists():
    raise FileNotFoundError(f"Configuration file not found: {config_path}")

  with open(config_path, "r") as f:
    raw_config = yaml.safe_load(f) or {}

  alarms = {}
  for name, config in (raw_config.get("alarms") or {}).items():
    if "hour" not in config:
      raise ValueError(f"Alarm '{name}': 'hour' is required")
    rest = {k: v for k, v in config.items() if k not in (*RECURRENCE_KEYS, "date")}
    alarms[name] = AlarmDefinition(**rest, recurrence=_recurrence_from(name, config))

  return AlarmConfig(
    settings=SchedulerSettings(**(raw_config.get("settings") or {})),
    alarms=alarms,
  )


def load_alarm_config(config_path: Path | str | None) -> AlarmConfig:
  """Like `parse_alarm_config`, but a missing file yields defaults"""
  if config_path is None or not Path(config_path).exists():
    return AlarmConfig()
  return parse_alarm_config(config_path)
