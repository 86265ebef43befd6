"""
Configuration module for Nightcap
Process-level settings come from the environment (optionally a .env file);
alarm policy lives in the YAML alarm config.
"""

import os
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from platformdirs import user_config_dir

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ALARM_CONFIG_FILENAME = "alarms.yaml"


# Configuration class for other settings
class AppConfig:
  """Application configuration settings"""

  APP_NAME = os.getenv("NIGHTCAP_APP_NAME", "nightcap")

  # Server settings
  HOST = os.getenv("HOST", "127.0.0.1")
  PORT = int(os.getenv("PORT", "8000"))

  # CORS settings
  CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:5173,http://localhost:8000"
  ).split(",")

  # Rate limiting for the schedule API
  RATE_LIMIT = os.getenv("RATE_LIMIT", "600/hour")

  # Alarm config file and schedule store location (None means platform default)
  CONFIG_PATH = os.getenv("NIGHTCAP_CONFIG")
  DATA_DIR = os.getenv("NIGHTCAP_DATA_DIR")

  # Program the systemd wake timer runs on Linux
  WAKE_COMMAND = os.getenv("NIGHTCAP_WAKE_COMMAND", "nightcap")

  # URL of the reminder view opened when an alarm fires on desktop
  APP_URL = os.getenv("NIGHTCAP_APP_URL", f"http://{HOST}:{PORT}")

  # Logging
  LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def alarm_config_path(override: Optional[str | Path] = None) -> Path:
  """Resolve the alarm YAML path: explicit override, env, then user config dir"""
  if override:
    return Path(override)
  if AppConfig.CONFIG_PATH:
    return Path(AppConfig.CONFIG_PATH)
  return Path(user_config_dir(AppConfig.APP_NAME, ensure_exists=True)) / ALARM_CONFIG_FILENAME


def setup_logging(level: Optional[str] = None) -> None:
  logging.basicConfig(
    level=getattr(logging, (level or AppConfig.LOG_LEVEL).upper(), logging.INFO),
    format=LOG_FORMAT,
  )
