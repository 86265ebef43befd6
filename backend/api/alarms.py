"""
Alarm API endpoints
Schedule mutations go through the delivery coordinator so the wake timer is
re-armed after every change.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from alarm_schedule.models import AlarmSchedule, Occurrence, Recurrence, parse_time_of_day
from delivery.coordinator import DeliveryCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/alarms", tags=["alarms"])


class AlarmCreate(BaseModel):
  """Request body for a new alarm"""

  id: Optional[str] = None
  label: str = "Bedtime"
  at: str = Field(..., description="Time of day, HH:MM")
  recurrence: Recurrence = Field(default_factory=Recurrence)
  enabled: bool = True

  @field_validator("at")
  @classmethod
  def validate_at(cls, v: str) -> str:
    parse_time_of_day(v)
    return v


class AlarmUpdate(BaseModel):
  """Partial update; omitted fields keep their value"""

  label: Optional[str] = None
  at: Optional[str] = None
  recurrence: Optional[Recurrence] = None
  enabled: Optional[bool] = None

  @field_validator("at")
  @classmethod
  def validate_at(cls, v: Optional[str]) -> Optional[str]:
    if v is not None:
      parse_time_of_day(v)
    return v


class AlarmView(BaseModel):
  id: str
  label: str
  at: str
  recurrence: Recurrence
  enabled: bool
  next_occurrence: Optional[datetime] = None
  last_delivered: Optional[datetime] = None


class SchedulerStatus(BaseModel):
  armed_instant: Optional[datetime]
  degraded: bool
  degraded_reason: Optional[str]
  enabled_count: int
  recovered: bool
  overdue: bool


class DeliveredAlarm(BaseModel):
  schedule_id: str
  instant: datetime


class WakeResult(BaseModel):
  delivered: List[DeliveredAlarm]


def get_coordinator(request: Request) -> DeliveryCoordinator:
  return request.app.state.runtime.coordinator


def _view(coordinator: DeliveryCoordinator, schedule: AlarmSchedule) -> AlarmView:
  return AlarmView(
    id=schedule.id,
    label=schedule.label,
    at=schedule.at.strftime("%H:%M"),
    recurrence=schedule.recurrence,
    enabled=schedule.enabled,
    next_occurrence=coordinator.next_occurrence_of(schedule),
    last_delivered=schedule.last_delivered,
  )


# Handlers are sync so blocking store/timer I/O runs in the threadpool
@router.get("/", response_model=List[AlarmView])
def list_alarms(coordinator: DeliveryCoordinator = Depends(get_coordinator)) -> List[AlarmView]:
  return [_view(coordinator, s) for s in coordinator.list_schedules()]


@router.post("/", response_model=AlarmView, status_code=201)
def create_alarm(
  body: AlarmCreate, coordinator: DeliveryCoordinator = Depends(get_coordinator)
) -> AlarmView:
  fields = body.model_dump(exclude_none=True)
  schedule = coordinator.create_schedule(AlarmSchedule(**fields))
  logger.info(f"Created alarm '{schedule.id}' at {body.at}")
  return _view(coordinator, schedule)


@router.get("/status", response_model=SchedulerStatus)
def get_status(coordinator: DeliveryCoordinator = Depends(get_coordinator)) -> SchedulerStatus:
  status = coordinator.status()
  return SchedulerStatus(
    armed_instant=status.armed_instant,
    degraded=status.degraded,
    degraded_reason=status.degraded_reason,
    enabled_count=status.enabled_count,
    recovered=status.recovered,
    overdue=status.overdue,
  )


@router.post("/wake", response_model=WakeResult)
def wake(coordinator: DeliveryCoordinator = Depends(get_coordinator)) -> WakeResult:
  """
  Run the wake handler now, as if the host timer had fired.
  Only what is actually due gets delivered.
  """
  delivered: List[Occurrence] = coordinator.handle_wake()
  return WakeResult(
    delivered=[DeliveredAlarm(schedule_id=o.schedule_id, instant=o.instant) for o in delivered]
  )


@router.put("/{alarm_id}", response_model=AlarmView)
def update_alarm(
  alarm_id: str,
  body: AlarmUpdate,
  coordinator: DeliveryCoordinator = Depends(get_coordinator),
) -> AlarmView:
  changes = body.model_dump(exclude_none=True)
  if "recurrence" in changes:
    changes["recurrence"] = body.recurrence
  schedule = coordinator.update_schedule(alarm_id, **changes)
  return _view(coordinator, schedule)


@router.delete("/{alarm_id}", status_code=204)
def delete_alarm(alarm_id: str, coordinator: DeliveryCoordinator = Depends(get_coordinator)) -> None:
  coordinator.cancel_schedule(alarm_id)
  logger.info(f"Deleted alarm '{alarm_id}'")


@router.post("/{alarm_id}/enable", response_model=AlarmView)
def enable_alarm(alarm_id: str, coordinator: DeliveryCoordinator = Depends(get_coordinator)) -> AlarmView:
  return _view(coordinator, coordinator.set_enabled(alarm_id, True))


@router.post("/{alarm_id}/disable", response_model=AlarmView)
def disable_alarm(alarm_id: str, coordinator: DeliveryCoordinator = Depends(get_coordinator)) -> AlarmView:
  return _view(coordinator, coordinator.set_enabled(alarm_id, False))
