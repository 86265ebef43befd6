"""
Middleware for error mapping, request logging and correlation ids
"""

import time
import logging
import traceback

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send
from asgi_correlation_id import CorrelationIdMiddleware
from slowapi.errors import RateLimitExceeded

from alarm_schedule.errors import SchedulerError
from backend.exceptions import AppError, get_status_code

logger = logging.getLogger(__name__)


class ErrorHandlingMiddleware:
  def __init__(self, app: ASGIApp):
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send):
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    response_started = False

    async def send_wrapper(message):
      nonlocal response_started
      if message["type"] == "http.response.start":
        response_started = True
      await send(message)

    try:
      await self.app(scope, receive, send_wrapper)
    except Exception as e:
      response = error_handler(e)
      if not response_started:
        await response(scope, receive, send_wrapper)
      else:
        logger.error("Can't send error - response already started")


def _json(error: AppError, status_code: int | None = None) -> JSONResponse:
  return JSONResponse(
    status_code=status_code or get_status_code(error.source),
    content=error.to_response().model_dump(),
  )


def _log_app_error(error: AppError) -> None:
  # Client errors at warning, unavailable store/timer/host at error
  level = logging.WARNING if get_status_code(error.source) < 500 else logging.ERROR
  logger.log(level, f"[{error.source}] {error.name}: {error.description}")


def error_handler(exc: Exception) -> JSONResponse:
  """
  Handle errors consistently
  Converts all exceptions to AppError format for uniform error responses.
  """
  match exc:
    case AppError() as e:
      _log_app_error(e)
      return _json(e)

    case SchedulerError() as e:
      app_error = AppError.from_scheduler_error(e)
      _log_app_error(app_error)
      return _json(app_error)

    case RateLimitExceeded() as e:
      logger.warning(f"Rate limit exceeded: {e}")
      return _json(
        AppError(
          description="Rate limit exceeded. Please try again later.",
          name="RATE_LIMIT_EXCEEDED",
          source="rate_limiter",
          caused_by=str(e),
        )
      )

    case HTTPException() as e:
      logger.error(f"HTTP error {e.status_code}: {e.detail}")
      return _json(
        AppError(description=str(e.detail), name=f"HTTP_{e.status_code}", source="http"),
        status_code=e.status_code,
      )

    case RequestValidationError() | ValueError() as e:
      logger.error(f"Validation error: {e}")
      return _json(
        AppError(
          description=str(e),
          name="VALIDATION_ERROR",
          source="validation",
          caused_by=f"{e.__class__.__name__}: {str(e)}",
        )
      )

    case Exception() as e:
      logger.error(f"Unhandled error: {e}", exc_info=True)
      tb = traceback.format_exc()
      return _json(
        AppError(
          description=str(e),
          name="INTERNAL_ERROR",
          source="unknown",
          caused_by=f"{e.__class__.__name__}: {str(e)}\n\nTraceback:\n{tb}",
        )
      )


# Polled by the UI; logged at debug so alarm mutations stand out
QUIET_METHODS = {"GET", "HEAD", "OPTIONS"}


class LoggingMiddleware:
  def __init__(self, app: ASGIApp):
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send):
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    start_time = time.perf_counter()
    method = scope["method"]
    path = scope["path"]
    client = (scope.get("client") or ("unknown", 0))[0]
    level = logging.DEBUG if method in QUIET_METHODS else logging.INFO

    logger.log(level, f"Request: {method} {path} from {client}")

    status_code = None

    async def send_wrapper(message):
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message["status"]
      await send(message)

    await self.app(scope, receive, send_wrapper)

    duration = time.perf_counter() - start_time
    if status_code is not None and status_code >= 500:
      level = logging.ERROR
    logger.log(level, f"Response: {status_code} for {method} {path} (took {duration:.3f}s)")


def setup_logging_middleware(app):
  """
  Add the request logging and correlation id middleware

  Args:
    app: FastAPI application instance
  """
  # Logging should be outermost to log all requests
  app.add_middleware(LoggingMiddleware)

  app.add_middleware(CorrelationIdMiddleware)

  logger.info("Middleware configured successfully")
