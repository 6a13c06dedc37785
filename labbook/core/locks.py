from contextlib import contextmanager
from threading import Lock


class KeyedLocks:
    """One mutex per resource key, created on first use.

    Keys are acquired in sorted order so two writers that need the same pair
    of resources cannot deadlock. Locks are never evicted: there is one per
    service id and one per normalized worker name, so the registry is bounded
    by the lab's equipment list and staff roster.
    """

    def __init__(self):
        self._guard = Lock()
        self._locks: dict[str, Lock] = {}

    def _lock_for(self, key: str) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str):
        ordered = sorted({k for k in keys if k})
        acquired: list[Lock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


def service_key(service_id: int) -> str:
    return f"service:{int(service_id)}"


def worker_key(normalized_name: str | None) -> str | None:
    if not normalized_name:
        return None
    return f"worker:{normalized_name}"


resource_locks = KeyedLocks()
