"""Platform-agnostic backend bootstrap.

The platform-specific entrypoints (Linux/Android) import this module and
provide the correct OS-interface implementations.

Contract:
- Inputs: an os-interface bundle `os_impl` with `timer_driver()` and
  `host_surface()`.
- Behavior: wires the runtime, runs start-up recovery in the app lifespan,
  then serves the FastAPI backend until interrupted.
"""

from __future__ import annotations

import logging
import sys

import uvicorn

from backend.config import AppConfig, alarm_config_path, setup_logging
from backend.main import create_app, install_correlation_filter
from delivery.runtime import build_runtime
from os_interfaces.base import OSImplementations

logger = logging.getLogger(__name__)


def serve(os_impl: OSImplementations) -> None:
  setup_logging()
  install_correlation_filter()

  try:
    runtime = build_runtime(
      os_impl,
      app_name=AppConfig.APP_NAME,
      config_path=alarm_config_path(),
      data_dir=AppConfig.DATA_DIR,
    )
  except Exception:
    logger.exception("Failed to wire alarm runtime")
    sys.exit(1)

  app = create_app(runtime)
  logger.info(f"Starting Nightcap backend on {AppConfig.HOST}:{AppConfig.PORT}")
  uvicorn.run(
    app,
    host=AppConfig.HOST,
    port=AppConfig.PORT,
    log_level=AppConfig.LOG_LEVEL.lower(),
    access_log=True,
  )
