import threading
from unittest import mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from clinic_scheduling.app.errors import InvalidState, SlotConflict, StoreFailure
from clinic_scheduling.app.locks import InProcessTimelineLocks, RedisTimelineLocks, doctor_lock_key
from clinic_scheduling.app.models import Base
from clinic_scheduling.app.scheduling import SchedulingEngine
from clinic_scheduling.tests.conftest import ADMIN, DOCTOR, OTHER_DOCTOR, at


@pytest.fixture
def file_scheduler(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield SchedulingEngine(sessionmaker(autocommit=False, autoflush=False, bind=engine),
                           InProcessTimelineLocks(wait_seconds=5))
    engine.dispose()


def test_racing_overlapping_creates_book_once(file_scheduler):
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []
    outcomes_lock = threading.Lock()

    def book(minute):
        barrier.wait()
        try:
            file_scheduler.create_slot(ADMIN, "doc-1", at(10, minute), 30, patient_id=f"pat-{minute}")
            result = "ok"
        except SlotConflict:
            result = "conflict"
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=book, args=(minute,)) for minute in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["conflict"] * (workers - 1) + ["ok"]
    assert len(file_scheduler.list_slots(ADMIN, doctor_id="doc-1")) == 1


def test_racing_reservations_of_one_slot_book_once(file_scheduler):
    slot = file_scheduler.create_slot(DOCTOR, "doc-1", at(10), 30)
    workers = 6
    barrier = threading.Barrier(workers)
    winners = []
    rejected = []

    def reserve(patient_id):
        barrier.wait()
        try:
            file_scheduler.reserve_slot(ADMIN, slot["id"], patient_id=patient_id)
            winners.append(patient_id)
        except InvalidState:
            rejected.append(patient_id)

    threads = [threading.Thread(target=reserve, args=(f"pat-{i}",)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(rejected) == workers - 1
    assert file_scheduler.get_slot(ADMIN, slot["id"])["patient_id"] == winners[0]


def test_busy_timeline_times_out(scheduler, locks):
    with locks.hold("doc-1"):
        with pytest.raises(StoreFailure):
            scheduler.create_slot(DOCTOR, "doc-1", at(10), 30)
        # another doctor's timeline is unaffected
        created = scheduler.create_slot(OTHER_DOCTOR, "doc-2", at(10), 30)
    assert created["doctor_id"] == "doc-2"


def test_try_hold_skips_busy_timeline():
    locks = InProcessTimelineLocks()
    with locks.hold("doc-1"):
        assert locks.try_hold("doc-1") is None
    held = locks.try_hold("doc-1")
    with held:
        assert locks.try_hold("doc-1") is None
    assert locks.try_hold("doc-2") is not None


def test_redis_locks_use_per_doctor_keys():
    redis_client = mock.MagicMock()
    redis_lock = redis_client.lock.return_value
    redis_lock.acquire.return_value = True
    locks = RedisTimelineLocks(redis_client, ttl_seconds=3, wait_seconds=1)

    with locks.hold("doc-1"):
        pass

    redis_client.lock.assert_called_once_with(doctor_lock_key("doc-1"), timeout=3, blocking_timeout=1)
    redis_lock.release.assert_called_once()


def test_redis_lock_timeout_is_a_store_failure():
    redis_client = mock.MagicMock()
    redis_client.lock.return_value.acquire.return_value = False
    locks = RedisTimelineLocks(redis_client)

    with pytest.raises(StoreFailure):
        with locks.hold("doc-1"):
            pass


def test_clear_removes_timeline_lock_keys():
    redis_client = mock.MagicMock()
    redis_client.scan_iter.return_value = ["lock:doctor:doc-1", "lock:doctor:doc-2"]
    redis_client.delete.return_value = 1

    assert RedisTimelineLocks(redis_client).clear() == 2
    redis_client.scan_iter.assert_called_once_with(match="lock:doctor:*")
