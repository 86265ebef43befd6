"""
Durable alarm schedule store
Keeps every AlarmSchedule in a single YAML file in the user data directory
"""

import fcntl
import logging
import os
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, Iterator, List

import yaml
from platformdirs import user_data_dir
from pydantic import ValidationError

from .errors import ScheduleNotFound, StaleOccurrenceError, StoreUnavailable
from .models import AlarmSchedule

logger = logging.getLogger(__name__)

STORE_FILENAME = "schedules.yaml"
STORE_VERSION = 1


class ScheduleStore:
  """Single-writer schedule storage.

  Every operation reads the file, applies its change and replaces the file
  atomically while holding the store lock, so a crash leaves either the old
  or the new contents on disk.
  """

  def __init__(self, path: Path | str):
    self.path = Path(path)
    self._lock = Lock()

  @classmethod
  def for_app(cls, app_name: str, data_dir: Path | str | None = None) -> "ScheduleStore":
    base = Path(data_dir) if data_dir else Path(user_data_dir(app_name, ensure_exists=True))
    return cls(base / STORE_FILENAME)

  # ---- helpers ----
  @contextmanager
  def _locked(self) -> Iterator[None]:
    """Hold the in-process lock plus an advisory file lock.

    The file lock keeps the CLI wake handler and a running backend from
    interleaving read-modify-write cycles.
    """
    lock_path = self.path.with_name(self.path.name + ".lock")
    with self._lock:
      try:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(lock_path, "a")
      except OSError as e:
        raise StoreUnavailable(f"Failed to open store lock {lock_path}", e) from e
      with lock_file:
        fcntl.flock(lock_file, fcntl.LOCK_EX)
        try:
          yield
        finally:
          fcntl.flock(lock_file, fcntl.LOCK_UN)

  def _read(self) -> Dict[str, AlarmSchedule]:
    if not self.path.exists():
      return {}
    try:
      with open(self.path, "r") as f:
        raw = yaml.safe_load(f) or {}
      rows = [AlarmSchedule.from_file_dict(item) for item in raw.get("schedules", [])]
    except (OSError, yaml.YAMLError, ValidationError, AttributeError) as e:
      raise StoreUnavailable(f"Failed to read schedules from {self.path}", e) from e
    return {row.id: row for row in rows}

  def _write(self, rows: Dict[str, AlarmSchedule]) -> None:
    payload = {
      "version": STORE_VERSION,
      "schedules": [row.to_file_dict() for row in rows.values()],
    }
    tmp_path = self.path.with_name(self.path.name + ".tmp")
    try:
      self.path.parent.mkdir(parents=True, exist_ok=True)
      with open(tmp_path, "w") as f:
        yaml.safe_dump(payload, f, default_flow_style=False, sort_keys=False)
        f.flush()
        os.fsync(f.fileno())
      os.replace(tmp_path, self.path)
    except OSError as e:
      raise StoreUnavailable(f"Failed to write schedules to {self.path}", e) from e
    logger.debug(f"Saved {len(rows)} schedules to {self.path}")

  # ---- public API ----
  def get(self, schedule_id: str) -> AlarmSchedule:
    with self._locked():
      rows = self._read()
    if schedule_id not in rows:
      raise ScheduleNotFound(schedule_id)
    return rows[schedule_id]

  def list_all(self) -> List[AlarmSchedule]:
    with self._locked():
      rows = self._read()
    return sorted(rows.values(), key=lambda s: (s.at, s.id))

  def list_enabled(self) -> List[AlarmSchedule]:
    return [s for s in self.list_all() if s.enabled]

  def upsert(self, schedule: AlarmSchedule) -> AlarmSchedule:
    """Insert or replace a schedule.

    Delivery marks never move backwards: an incoming row carrying an older
    `last_delivered`/`skipped_through` keeps the stored values.
    """
    with self._locked():
      rows = self._read()
      existing = rows.get(schedule.id)
      if existing is not None:
        keep = {}
        for field in ("last_delivered", "skipped_through"):
          old = getattr(existing, field)
          new = getattr(schedule, field)
          if old is not None and (new is None or new < old):
            keep[field] = old
        if keep:
          schedule = schedule.model_copy(update=keep)
      rows[schedule.id] = schedule
      self._write(rows)
    logger.info(f"Stored schedule '{schedule.id}' ({schedule.at.strftime('%H:%M')}, "
                f"{schedule.recurrence.describe()}, enabled={schedule.enabled})")
    return schedule

  def remove(self, schedule_id: str) -> None:
    with self._locked():
      rows = self._read()
      if rows.pop(schedule_id, None) is None:
        raise ScheduleNotFound(schedule_id)
      self._write(rows)
    logger.info(f"Removed schedule '{schedule_id}'")

  def mark_delivered(self, schedule_id: str, instant: datetime) -> AlarmSchedule:
    """Credit an occurrence to its schedule.

    Raises:
      StaleOccurrenceError: If `instant` is not after the last delivery
      ScheduleNotFound: If the schedule was removed meanwhile
    """
    with self._locked():
      rows = self._read()
      schedule = rows.get(schedule_id)
      if schedule is None:
        raise ScheduleNotFound(schedule_id)
      if schedule.last_delivered is not None and instant <= schedule.last_delivered:
        raise StaleOccurrenceError(schedule_id, instant, schedule.last_delivered)
      schedule = schedule.model_copy(update={"last_delivered": instant})
      rows[schedule_id] = schedule
      self._write(rows)
    return schedule

  def mark_skipped(self, schedule_id: str, through: datetime) -> AlarmSchedule:
    """Record that occurrences up to `through` will never be delivered"""
    with self._locked():
      rows = self._read()
      schedule = rows.get(schedule_id)
      if schedule is None:
        raise ScheduleNotFound(schedule_id)
      if schedule.skipped_through is not None and through <= schedule.skipped_through:
        return schedule
      schedule = schedule.model_copy(update={"skipped_through": through})
      rows[schedule_id] = schedule
      self._write(rows)
    return schedule
