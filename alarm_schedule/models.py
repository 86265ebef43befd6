"""Alarm schedule data model.

`AlarmSchedule` rows are owned by the schedule store. `Occurrence`,
`ArmedTimer` and `DeliveryRecord` are derived, in-memory values.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def utc_now() -> datetime:
  return datetime.now(timezone.utc)


def parse_time_of_day(v: Any) -> time:
  """Parse time string in HH:MM format"""
  if isinstance(v, time):
    return v.replace(second=0, microsecond=0, tzinfo=None)
  try:
    hours, minutes, *_ = str(v).split(":")
    return time(int(hours), int(minutes))
  except (ValueError, AttributeError) as e:
    raise ValueError(f"Time must be in HH:MM format, got: {v}") from e


def parse_weekday(v: Any) -> int:
  match v:
    case int() if 0 <= v <= 6:
      return v
    case str() if v.strip().lower()[:3] in WEEKDAY_NAMES:
      return WEEKDAY_NAMES.index(v.strip().lower()[:3])
    case _:
      raise ValueError(f"Weekday must be 0-6 or one of {', '.join(WEEKDAY_NAMES)}, got: {v}")


class RecurrenceKind(str, Enum):
  ONCE = "once"
  DAILY = "daily"
  WEEKDAYS = "weekdays"


class MissedPolicy(str, Enum):
  """What to do with an occurrence found later than the catch-up window"""

  DELIVER_ONCE = "deliver_once"
  SKIP = "skip"


class Recurrence(BaseModel):
  """Recurrence rule: one-shot, every day, or specific weekdays (0=Mon)"""

  kind: RecurrenceKind = RecurrenceKind.ONCE
  days: List[int] = Field(default_factory=list)
  on_date: Optional[date] = None

  @field_validator("days", mode="before")
  @classmethod
  def parse_days(cls, v):
    if v is None:
      return []
    if isinstance(v, (str, int)):
      v = [v]
    return sorted({parse_weekday(d) for d in v})

  @model_validator(mode="after")
  def validate_rule(self):
    if self.kind == RecurrenceKind.WEEKDAYS and not self.days:
      raise ValueError("Weekday recurrence needs at least one day")
    if self.kind != RecurrenceKind.WEEKDAYS and self.days:
      raise ValueError(f"'{self.kind.value}' recurrence does not take days")
    if self.kind != RecurrenceKind.ONCE and self.on_date is not None:
      raise ValueError("on_date is only valid for one-shot alarms")
    return self

  @classmethod
  def once(cls, on_date: Optional[date] = None) -> "Recurrence":
    return cls(kind=RecurrenceKind.ONCE, on_date=on_date)

  @classmethod
  def daily(cls) -> "Recurrence":
    return cls(kind=RecurrenceKind.DAILY)

  @classmethod
  def weekdays(cls, *days: int | str) -> "Recurrence":
    return cls(kind=RecurrenceKind.WEEKDAYS, days=list(days))

  def describe(self) -> str:
    match self.kind:
      case RecurrenceKind.DAILY:
        return "daily"
      case RecurrenceKind.WEEKDAYS:
        return ",".join(WEEKDAY_NAMES[d] for d in self.days)
      case _:
        return f"once {self.on_date.isoformat()}" if self.on_date else "once"


class AlarmSchedule(BaseModel):
  """Durable alarm definition.

  `anchor` is the instant occurrences are counted from; it moves forward
  whenever the time or the recurrence changes. `last_delivered` and
  `skipped_through` only ever move forward.
  """

  id: str = Field(default_factory=lambda: uuid.uuid4().hex)
  label: str = "Bedtime"
  at: time
  recurrence: Recurrence = Field(default_factory=Recurrence)
  enabled: bool = True
  anchor: datetime = Field(default_factory=utc_now)
  last_delivered: Optional[datetime] = None
  skipped_through: Optional[datetime] = None

  @field_validator("at", mode="before")
  @classmethod
  def parse_at(cls, v):
    return parse_time_of_day(v)

  @field_validator("anchor", "last_delivered", "skipped_through")
  @classmethod
  def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is None:
      return v.replace(tzinfo=timezone.utc)
    return v

  def counted_from(self) -> datetime:
    """Occurrences at or before this instant are done with"""
    marks = [m for m in (self.anchor, self.last_delivered, self.skipped_through) if m]
    return max(marks)

  def timing_differs(self, other: "AlarmSchedule") -> bool:
    return self.at != other.at or self.recurrence != other.recurrence

  def to_file_dict(self) -> Dict[str, Any]:
    """Convert to dictionary for file storage"""
    return self.model_dump(mode="json")

  @classmethod
  def from_file_dict(cls, data: Dict[str, Any]) -> "AlarmSchedule":
    """Create from file dictionary"""
    return cls.model_validate(data)


@dataclass(frozen=True)
class Occurrence:
  schedule_id: str
  instant: datetime


@dataclass(frozen=True)
class TimerHandle:
  """Opaque reference to a native wake-capable timer"""

  timer_id: str
  instant: datetime


@dataclass(frozen=True)
class ArmedTimer:
  handle: TimerHandle
  instant: datetime


@dataclass(frozen=True)
class DeliveryRecord:
  occurrence: Occurrence
  expires_at: datetime
