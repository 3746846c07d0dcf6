from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Callable, Mapping, TypeVar

from .docker_control import DEFAULT_CONTAINER_PREFIX
from .memory import DEFAULT_MEMORY_HEADROOM, validate_headroom

T = TypeVar("T")

DEFAULT_STOP_TIMEOUT_SECONDS = 10.0
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass(frozen=True)
class Settings:
    max_parallel: int | None = None
    timeout_seconds: float | None = None
    container_prefix: str = DEFAULT_CONTAINER_PREFIX
    stop_timeout_seconds: float = DEFAULT_STOP_TIMEOUT_SECONDS
    log_level: str = DEFAULT_LOG_LEVEL
    memory_headroom: float = DEFAULT_MEMORY_HEADROOM
    max_memory_per_container_gb: float | None = None
    total_memory_limit_gb: float | None = None


def _positive(convert: Callable[[str], T]) -> Callable[[str], T]:
    def parse(raw: str) -> T:
        value = convert(raw)
        if value <= 0:  # type: ignore[operator]
            raise ValueError("non-positive value")
        return value

    return parse


def parse_headroom(raw: str) -> float:
    return validate_headroom(float(raw))


def _read(env: Mapping[str, str], name: str, convert: Callable[[str], T], default: T) -> T:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return convert(raw.strip())
    except ValueError:
        print(
            f"invalid {name} value {raw!r}; defaulting to {default}",
            file=sys.stderr,
        )
        return default


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env
    return Settings(
        max_parallel=_read(env, "SUITEY_MAX_PARALLEL", _positive(int), None),
        timeout_seconds=_read(env, "SUITEY_TIMEOUT_SECONDS", _positive(float), None),
        container_prefix=_read(
            env, "SUITEY_CONTAINER_PREFIX", str, DEFAULT_CONTAINER_PREFIX
        ),
        stop_timeout_seconds=_read(
            env,
            "SUITEY_STOP_TIMEOUT_SECONDS",
            _positive(float),
            DEFAULT_STOP_TIMEOUT_SECONDS,
        ),
        log_level=_read(env, "SUITEY_LOG_LEVEL", str.upper, DEFAULT_LOG_LEVEL),
        memory_headroom=_read(
            env, "SUITEY_MEMORY_HEADROOM", parse_headroom, DEFAULT_MEMORY_HEADROOM
        ),
        max_memory_per_container_gb=_read(
            env, "SUITEY_MAX_MEMORY_PER_CONTAINER_GB", _positive(float), None
        ),
        total_memory_limit_gb=_read(
            env, "SUITEY_TOTAL_MEMORY_LIMIT_GB", _positive(float), None
        ),
    )
