from __future__ import annotations

import threading


class LifecycleTracker:
    """Launch-ordered record of every container obtained in one invocation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._launches: list[tuple[str, str]] = []

    def register(self, suite_id: str, container_id: str) -> None:
        with self._lock:
            self._launches.append((suite_id, container_id))

    def pairs(self) -> tuple[tuple[str, str], ...]:
        with self._lock:
            return tuple(self._launches)

    def container_ids(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(container_id for _, container_id in self._launches)

    def container_for(self, suite_id: str) -> str | None:
        with self._lock:
            for tracked_suite, container_id in self._launches:
                if tracked_suite == suite_id:
                    return container_id
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._launches)
