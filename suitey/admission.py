from __future__ import annotations

import itertools
import logging
import os
import threading
import time
from dataclasses import dataclass, field

LOGGER = logging.getLogger("suitey.admission")

DEFAULT_CAPACITY = 1


class AdmissionImpossible(Exception):
    """Raised when a request can never fit in the pool, however long it waits."""

    def __init__(self, cores: int, capacity: int) -> None:
        super().__init__(f"requested {cores} core(s) but capacity is {capacity}")
        self.cores = cores
        self.capacity = capacity


@dataclass(frozen=True)
class PoolStatus:
    capacity: int
    available: int
    in_use: int
    peak_in_use: int


@dataclass(eq=False)
class Reservation:
    """Cores held by one admitted suite until released."""

    cores: int
    token: int
    released: bool = field(default=False, repr=False)


def detect_cpu_capacity() -> int:
    """Return the number of CPU cores usable by this process."""
    try:
        count = len(os.sched_getaffinity(0))
    except (AttributeError, OSError):
        count = os.cpu_count() or 0
    if count < 1:
        LOGGER.warning(
            "unable to detect CPU core count; defaulting to %d", DEFAULT_CAPACITY
        )
        return DEFAULT_CAPACITY
    return count


def resolve_capacity(detected: int, explicit_limit: int | None = None) -> int:
    """Apply an optional explicit limit on top of the detected core count.

    The limit can only narrow the budget; a limit above the detected count is
    capped to it and a non-positive limit is ignored.
    """
    capacity = max(detected, DEFAULT_CAPACITY)
    if explicit_limit is None or explicit_limit <= 0:
        return capacity
    if explicit_limit > capacity:
        LOGGER.info(
            "requested parallelism %d exceeds available cores; limited to %d",
            explicit_limit,
            capacity,
        )
        return capacity
    return explicit_limit


class ResourcePool:
    """CPU-core budget shared by every suite of one invocation."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"pool capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._available = capacity
        self._peak_in_use = 0
        self._generation = 0
        self._tokens = itertools.count(1)
        self._cond = threading.Condition()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def generation(self) -> int:
        """Counter bumped on every release or wake-up."""
        with self._cond:
            return self._generation

    def fits(self, cores: int) -> bool:
        return 0 < cores <= self._capacity

    def try_reserve(self, cores: int) -> Reservation | None:
        if cores < 1:
            raise ValueError(f"cores must be >= 1, got {cores}")
        with self._cond:
            return self._reserve_locked(cores)

    def reserve(self, cores: int, timeout: float | None = None) -> Reservation | None:
        if not self.fits(cores):
            raise AdmissionImpossible(cores, self._capacity)
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                reservation = self._reserve_locked(cores)
                if reservation is not None:
                    return reservation
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(timeout=remaining)

    def release(self, reservation: Reservation) -> bool:
        with self._cond:
            if reservation.released:
                LOGGER.debug("reservation %d already released", reservation.token)
                return False
            reservation.released = True
            self._available = min(self._available + reservation.cores, self._capacity)
            self._generation += 1
            self._cond.notify_all()
            return True

    def wait_for_release(self, generation: int, timeout: float | None = None) -> bool:
        """Block until the generation moves past ``generation``.

        Returns False if the timeout expired first.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self._generation != generation, timeout=timeout
            )

    def wake(self) -> None:
        with self._cond:
            self._generation += 1
            self._cond.notify_all()

    def status(self) -> PoolStatus:
        with self._cond:
            return PoolStatus(
                capacity=self._capacity,
                available=self._available,
                in_use=self._capacity - self._available,
                peak_in_use=self._peak_in_use,
            )

    def _reserve_locked(self, cores: int) -> Reservation | None:
        if cores > self._available:
            return None
        self._available -= cores
        self._peak_in_use = max(self._peak_in_use, self._capacity - self._available)
        return Reservation(cores=cores, token=next(self._tokens))


__all__ = [
    "DEFAULT_CAPACITY",
    "AdmissionImpossible",
    "PoolStatus",
    "Reservation",
    "ResourcePool",
    "detect_cpu_capacity",
    "resolve_capacity",
]
