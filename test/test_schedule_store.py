"""Tests for the durable schedule store"""

from datetime import datetime, timedelta, timezone

import pytest

from alarm_schedule.errors import ScheduleNotFound, StaleOccurrenceError, StoreUnavailable
from alarm_schedule.models import AlarmSchedule, Recurrence
from alarm_schedule.store import ScheduleStore

T0 = datetime(2025, 1, 6, 22, 30, tzinfo=timezone.utc)


@pytest.fixture
def bedtime():
  return AlarmSchedule(id="bedtime", at="22:30", recurrence=Recurrence.daily())


def test_empty_store(store):
  assert store.list_all() == []
  with pytest.raises(ScheduleNotFound):
    store.get("bedtime")


def test_upsert_and_get(store, bedtime):
  store.upsert(bedtime)
  assert store.get("bedtime") == bedtime


def test_survives_new_instance(tmp_path, bedtime):
  """A fresh store over the same file sees everything, marks included"""
  path = tmp_path / "schedules.yaml"
  first = ScheduleStore(path)
  first.upsert(bedtime)
  first.mark_delivered("bedtime", T0)

  reloaded = ScheduleStore(path).get("bedtime")
  assert reloaded.last_delivered == T0
  assert reloaded.recurrence == Recurrence.daily()
  assert reloaded.anchor == bedtime.anchor


def test_list_enabled_and_ordering(store):
  store.upsert(AlarmSchedule(id="late", at="23:00"))
  store.upsert(AlarmSchedule(id="early", at="21:00"))
  store.upsert(AlarmSchedule(id="off", at="20:00", enabled=False))

  assert [s.id for s in store.list_all()] == ["off", "early", "late"]
  assert [s.id for s in store.list_enabled()] == ["early", "late"]


def test_remove(store, bedtime):
  store.upsert(bedtime)
  store.remove("bedtime")
  assert store.list_all() == []
  with pytest.raises(ScheduleNotFound):
    store.remove("bedtime")


def test_mark_delivered_rejects_stale_instant(store, bedtime):
  store.upsert(bedtime)
  store.mark_delivered("bedtime", T0)

  with pytest.raises(StaleOccurrenceError):
    store.mark_delivered("bedtime", T0)
  with pytest.raises(StaleOccurrenceError):
    store.mark_delivered("bedtime", T0 - timedelta(days=1))

  store.mark_delivered("bedtime", T0 + timedelta(days=1))
  assert store.get("bedtime").last_delivered == T0 + timedelta(days=1)


def test_mark_delivered_unknown_schedule(store):
  with pytest.raises(ScheduleNotFound):
    store.mark_delivered("ghost", T0)


def test_upsert_never_moves_marks_backwards(store, bedtime):
  store.upsert(bedtime)
  store.mark_delivered("bedtime", T0)
  store.mark_skipped("bedtime", T0 + timedelta(days=1))

  # An edit built from an old snapshot
  store.upsert(bedtime.model_copy(update={"label": "Lights out"}))

  stored = store.get("bedtime")
  assert stored.label == "Lights out"
  assert stored.last_delivered == T0
  assert stored.skipped_through == T0 + timedelta(days=1)


def test_mark_skipped_is_monotonic(store, bedtime):
  store.upsert(bedtime)
  store.mark_skipped("bedtime", T0)
  store.mark_skipped("bedtime", T0 - timedelta(days=2))
  assert store.get("bedtime").skipped_through == T0


def test_write_is_atomic_replace(store, bedtime):
  store.upsert(bedtime)
  assert store.path.exists()
  assert not store.path.with_name(store.path.name + ".tmp").exists()


def test_corrupt_file_is_store_unavailable(store):
  store.path.write_text("schedules:\n  - id: [unclosed\n")
  with pytest.raises(StoreUnavailable):
    store.list_all()


def test_invalid_row_is_store_unavailable(store):
  store.path.write_text("schedules:\n  - id: x\n    at: never\n")
  with pytest.raises(StoreUnavailable):
    store.list_all()


def test_for_app_uses_data_dir(tmp_path):
  store = ScheduleStore.for_app("nightcap", tmp_path)
  assert store.path == tmp_path / "schedules.yaml"
