"""
Nightcap backend - FastAPI server for alarm schedule mutations
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from asgi_correlation_id import CorrelationIdFilter
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool

from backend.api.alarms import router as alarms_router
from backend.api.host import router as host_router
from backend.config import AppConfig
from backend.middleware import ErrorHandlingMiddleware, error_handler, setup_logging_middleware
from delivery.runtime import Runtime

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def install_correlation_filter() -> None:
  """Add correlation ID filter to all root handlers"""
  for handler in logging.root.handlers:
    handler.addFilter(CorrelationIdFilter(uuid_length=4))


def create_app(runtime: Runtime, run_recovery: bool = True) -> FastAPI:
  """Build the API around an already wired runtime.

  Recovery runs in the lifespan unless the caller already ran it; until then
  mutations answer 409.
  """

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    logger.info("Starting Nightcap backend...")
    if run_recovery and not runtime.coordinator.recovered:
      report = await run_in_threadpool(runtime.recover)
      logger.info(
        f"Recovery: seeded {len(report.seeded)}, delivered {len(report.delivered)}, "
        f"skipped {len(report.skipped)}"
      )
    yield
    logger.info("Shutting down Nightcap backend...")
    runtime.shutdown()

  app = FastAPI(
    title="Nightcap",
    description="Bedtime reminder alarms with reliable delivery",
    version=VERSION,
    lifespan=lifespan,
  )
  app.state.runtime = runtime

  @app.exception_handler(RequestValidationError)
  async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_handler(exc)

  # innermost
  app.add_middleware(ErrorHandlingMiddleware)

  app.add_middleware(
    CORSMiddleware,
    allow_origins=AppConfig.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
  )

  limiter = Limiter(key_func=get_remote_address, default_limits=[AppConfig.RATE_LIMIT])
  app.state.limiter = limiter
  app.add_middleware(SlowAPIMiddleware)

  # outermost
  setup_logging_middleware(app)

  app.include_router(alarms_router)
  app.include_router(host_router)

  @app.get("/health")
  async def health_check():
    """Health check endpoint"""
    status = runtime.coordinator.status()
    return {
      "status": "degraded" if status.degraded else "healthy",
      "service": "nightcap-backend",
      "version": VERSION,
      "recovered": status.recovered,
    }

  return app
