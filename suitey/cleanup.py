from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from .docker_control import ContainerRuntime, ContainerRuntimeError

LOGGER = logging.getLogger("suitey.cleanup")


@dataclass
class CleanupSummary:
    cleaned: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        return "\n".join(
            [
                f"containers_cleaned={len(self.cleaned)}",
                f"containers_failed={len(self.failed)}",
                f"cleanup_status={'success' if not self.failed else 'partial'}",
            ]
        )


def terminate_containers(
    runtime: ContainerRuntime,
    container_ids: Iterable[str],
    force: bool = False,
    stop_timeout: float = 10.0,
) -> int:
    """Stop (or kill when ``force``) the given containers without removing them."""
    terminated = 0
    for container_id in container_ids:
        try:
            if force:
                LOGGER.info("force killing container %s", container_id)
                runtime.kill(container_id)
            else:
                LOGGER.info("gracefully stopping container %s", container_id)
                runtime.stop(container_id, timeout=stop_timeout)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("could not terminate container %s: %s", container_id, exc)
            continue
        terminated += 1
    return terminated


def cleanup_containers(
    runtime: ContainerRuntime,
    container_ids: Iterable[str],
    stop_timeout: float = 10.0,
) -> CleanupSummary:
    """Stop and remove containers handed back in an execution report."""
    summary = CleanupSummary()
    for container_id in container_ids:
        try:
            runtime.stop(container_id, timeout=stop_timeout)
            runtime.remove(container_id)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("failed to clean up container %s: %s", container_id, exc)
            summary.failed[container_id] = str(exc)
            continue
        summary.cleaned.append(container_id)
    LOGGER.info(
        "cleaned up %d container(s), %d failure(s)",
        len(summary.cleaned),
        len(summary.failed),
    )
    return summary


def cleanup_stale_containers(
    runtime: ContainerRuntime,
    name_prefix: str,
    stop_timeout: float = 10.0,
) -> CleanupSummary:
    """Remove every container left behind by earlier invocations."""
    try:
        container_ids = runtime.list_containers(name_prefix)
    except ContainerRuntimeError:
        LOGGER.exception("unable to list containers with prefix %s", name_prefix)
        raise
    LOGGER.info("found %d container(s) named %s*", len(container_ids), name_prefix)
    return cleanup_containers(runtime, container_ids, stop_timeout=stop_timeout)


__all__ = [
    "CleanupSummary",
    "terminate_containers",
    "cleanup_containers",
    "cleanup_stale_containers",
]
