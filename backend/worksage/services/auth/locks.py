"""Per-principal mutexes for single-node serialization."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class PrincipalLocks:
    """Hands out one lock per principal id, dropping it once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # principal_id -> [lock, holders]

    @contextmanager
    def hold(self, principal_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(principal_id)
            if entry is None:
                entry = self._locks[principal_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[principal_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


principal_locks = PrincipalLocks()
