"""
Host surface endpoints used by the reminder view: wake the screen and bring
the app to the foreground.
"""

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.exceptions import AppError
from os_interfaces.base import HostSurface

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/host", tags=["host"])


class HostActionResult(BaseModel):
  ok: bool


def _surface(request: Request) -> HostSurface:
  surface = request.app.state.runtime.surface
  if surface is None:
    raise AppError(
      description="No host surface configured in this process",
      name="HOST_SURFACE_UNAVAILABLE",
      source="host",
    )
  return surface


@router.post("/wake-screen", response_model=HostActionResult)
def wake_screen(request: Request) -> HostActionResult:
  seconds = request.app.state.runtime.config.settings.foreground_wake_lock_seconds
  return HostActionResult(ok=_surface(request).wake_screen(seconds))


@router.post("/foreground", response_model=HostActionResult)
def bring_to_foreground(request: Request) -> HostActionResult:
  surface = _surface(request)
  if not surface.can_reach_foreground():
    logger.info("Foreground launch not permitted right now")
    return HostActionResult(ok=False)
  try:
    surface.bring_to_foreground({})
  except Exception as e:
    raise AppError.from_exception(
      e, name="FOREGROUND_FAILED", source="host", context="Could not bring app to front"
    )
  return HostActionResult(ok=True)
