# locks.py
import logging
import threading
from contextlib import contextmanager

from redis.exceptions import LockError, RedisError

from .errors import StoreFailure


def doctor_lock_key(doctor_id):
    return f"lock:doctor:{doctor_id}"


class InProcessTimelineLocks:
    """One lock per doctor timeline, valid inside a single process."""

    def __init__(self, wait_seconds: float = 5):
        self.wait_seconds = wait_seconds
        self._guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, doctor_id):
        with self._guard:
            lock = self._locks.get(doctor_id)
            if lock is None:
                lock = self._locks[doctor_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, doctor_id):
        lock = self._lock_for(doctor_id)
        if not lock.acquire(timeout=self.wait_seconds):
            logging.warning(f"Timed out waiting for timeline lock of doctor {doctor_id}")
            raise StoreFailure(f"Timeline of doctor {doctor_id} is busy, try again")
        try:
            yield
        finally:
            lock.release()

    def try_hold(self, doctor_id):
        """Non-blocking variant; returns a context manager or None when busy."""
        lock = self._lock_for(doctor_id)
        if not lock.acquire(blocking=False):
            return None
        return _released_on_exit(lock.release)


class RedisTimelineLocks:
    """Doctor timeline locks shared by every worker through Redis."""

    def __init__(self, redis_client, ttl_seconds: float = 10, wait_seconds: float = 5):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self.wait_seconds = wait_seconds

    @contextmanager
    def hold(self, doctor_id):
        lock = self.redis_client.lock(
            doctor_lock_key(doctor_id),
            timeout=self.ttl_seconds,
            blocking_timeout=self.wait_seconds,
        )
        try:
            acquired = lock.acquire()
        except RedisError as e:
            logging.error(f"Redis lock error for doctor {doctor_id}: {str(e)}")
            raise StoreFailure("Timeline lock service is unavailable") from e
        if not acquired:
            logging.warning(f"Timed out waiting for timeline lock of doctor {doctor_id}")
            raise StoreFailure(f"Timeline of doctor {doctor_id} is busy, try again")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # TTL expired while held; the key is already gone.
                logging.warning(f"Timeline lock of doctor {doctor_id} expired before release")

    def try_hold(self, doctor_id):
        lock = self.redis_client.lock(doctor_lock_key(doctor_id), timeout=self.ttl_seconds)
        if not lock.acquire(blocking=False):
            return None
        return _released_on_exit(lock.release)

    def clear(self):
        removed = 0
        for key in self.redis_client.scan_iter(match=doctor_lock_key("*")):
            removed += self.redis_client.delete(key)
        return removed


@contextmanager
def _released_on_exit(release):
    try:
        yield
    finally:
        release()
