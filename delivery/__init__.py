"""Alarm delivery: coordinator, recovery and sinks"""

from .coordinator import CoordinatorStatus, DeliveryCoordinator
from .recovery import MissedPlan, Recovery, RecoveryReport, plan_missed
from .sink import (
  AlarmLauncher,
  DeliveryHub,
  DeliverySink,
  LaunchResult,
  LaunchTier,
  Subscription,
)

__all__ = [
  "AlarmLauncher",
  "CoordinatorStatus",
  "DeliveryCoordinator",
  "DeliveryHub",
  "DeliverySink",
  "LaunchResult",
  "LaunchTier",
  "MissedPlan",
  "Recovery",
  "RecoveryReport",
  "Subscription",
  "plan_missed",
]
