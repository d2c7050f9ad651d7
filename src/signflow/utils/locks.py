import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class LockRegistry:
    """Un RLock por clave (``envelope:<id>``, ``document:<id>``).

    Serializa las mutaciones de un mismo sobre/documento dentro del proceso;
    las claves se adquieren siempre en el orden en que se pasan.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        acquired = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


registry = LockRegistry()
