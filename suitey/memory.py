from __future__ import annotations

import logging
import os
from pathlib import Path

LOGGER = logging.getLogger("suitey.memory")

GIB = 1024**3
DEFAULT_MEMORY_HEADROOM = 0.2
FALLBACK_TOTAL_MEMORY_BYTES = 4 * GIB
MIN_CONTAINER_MEMORY_BYTES = int(0.1 * GIB)
LOW_CONTAINER_MEMORY_BYTES = int(0.2 * GIB)

MEMINFO_PATH = Path("/proc/meminfo")


def _meminfo_kib(path: Path, key: str) -> int:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return 0
    for line in lines:
        name, _, rest = line.partition(":")
        if name == key:
            fields = rest.split()
            if fields and fields[0].isdigit():
                return int(fields[0])
    return 0


def detect_total_memory(meminfo: Path = MEMINFO_PATH) -> int:
    """Return total system memory in bytes, or a 4 GiB estimate."""
    total = _meminfo_kib(meminfo, "MemTotal") * 1024
    if total <= 0:
        try:
            total = os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
        except (AttributeError, ValueError, OSError):
            total = 0
    if total <= 0:
        LOGGER.warning(
            "unable to detect system memory; assuming %.1f GiB",
            FALLBACK_TOTAL_MEMORY_BYTES / GIB,
        )
        return FALLBACK_TOTAL_MEMORY_BYTES
    return total


def validate_headroom(headroom: float) -> float:
    if not 0.0 <= headroom < 1.0:
        raise ValueError(f"memory headroom must be in [0.0, 1.0), got {headroom}")
    return headroom


def memory_per_container(total_bytes: int, parallel_slots: int, headroom: float) -> int:
    """Split memory left after ``headroom`` evenly over ``parallel_slots``.

    The result never drops below ``MIN_CONTAINER_MEMORY_BYTES``.
    """
    if total_bytes <= 0:
        raise ValueError(f"total memory must be positive, got {total_bytes}")
    if parallel_slots < 1:
        raise ValueError(f"parallel slots must be >= 1, got {parallel_slots}")
    validate_headroom(headroom)

    share = int(total_bytes * (1.0 - headroom) / parallel_slots)
    if share < MIN_CONTAINER_MEMORY_BYTES:
        LOGGER.warning(
            "memory per container limited to minimum of %.1f GiB",
            MIN_CONTAINER_MEMORY_BYTES / GIB,
        )
        return MIN_CONTAINER_MEMORY_BYTES
    if share < LOW_CONTAINER_MEMORY_BYTES:
        LOGGER.warning(
            "low memory per container (%.2f GiB) may slow suites down", share / GIB
        )
    return share


def resolve_memory_limit(
    parallel_slots: int,
    headroom: float = DEFAULT_MEMORY_HEADROOM,
    total_limit_gb: float | None = None,
    max_per_container_gb: float | None = None,
    total_bytes: int | None = None,
) -> int:
    """Per-container memory limit in bytes.

    ``total_limit_gb`` replaces the detected system total and
    ``max_per_container_gb`` caps the computed share.
    """
    if total_limit_gb is not None:
        total = int(total_limit_gb * GIB)
    elif total_bytes is not None:
        total = total_bytes
    else:
        total = detect_total_memory()

    limit = memory_per_container(total, parallel_slots, headroom)
    if max_per_container_gb is not None:
        limit = min(limit, max(int(max_per_container_gb * GIB), MIN_CONTAINER_MEMORY_BYTES))
    LOGGER.info(
        "memory limit %.2f GiB per container (%d slot(s), headroom %.0f%%)",
        limit / GIB,
        parallel_slots,
        headroom * 100,
    )
    return limit


__all__ = [
    "DEFAULT_MEMORY_HEADROOM",
    "GIB",
    "MIN_CONTAINER_MEMORY_BYTES",
    "detect_total_memory",
    "memory_per_container",
    "resolve_memory_limit",
    "validate_headroom",
]
