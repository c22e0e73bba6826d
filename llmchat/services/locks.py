import threading
from contextlib import contextmanager


class ResourceLocks:
    """
    One re-entrant lock per logical resource name ("queue", "conversations",
    "conversations/<id>/messages", ...). Stores share one instance so a
    read-modify-write on a resource is serialized across every writer of it,
    while unrelated resources never wait on each other.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, name: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.RLock()
                self._locks[name] = lock
            return lock

    @contextmanager
    def hold(self, name: str):
        lock = self.get(name)
        with lock:
            yield

