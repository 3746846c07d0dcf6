from __future__ import annotations

import logging
import re
import threading
import uuid

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from .descriptors import SuiteConfig

LOGGER = logging.getLogger("suitey.docker")

DEFAULT_CONTAINER_PREFIX = "suitey-test"
SUITE_LABEL = "suitey.suite_id"
NANO_CPUS_PER_CORE = 1_000_000_000

_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_.-]+")


class ContainerRuntimeError(Exception):
    """Base class for container runtime failures."""


class RuntimeUnavailableError(ContainerRuntimeError):
    """The container runtime cannot be reached at all."""


class LaunchError(ContainerRuntimeError):
    """The runtime refused to start one suite's container."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def new_run_token() -> str:
    """Short random token that keeps container names unique across runs."""
    return uuid.uuid4().hex[:8]


def container_name(prefix: str, suite_id: str, index: int, run_token: str) -> str:
    """Docker-safe name for the ``index``-th record of one run.

    Suite ids that sanitize to the same text still get distinct names because
    the record index is part of the name.
    """
    safe_id = _NAME_UNSAFE.sub("-", suite_id).strip("-.") or "suite"
    return f"{prefix}-{safe_id}-{index}-{run_token}"


class ContainerRuntime:
    """Narrow interface the scheduler needs from a container runtime."""

    def ping(self) -> None:
        raise NotImplementedError

    def run(self, config: SuiteConfig, name: str, memory_limit: int | None = None) -> str:
        """Start a detached container for ``config`` and return its id.

        ``memory_limit`` is a byte count; ``None`` leaves memory unrestricted.
        """
        raise NotImplementedError

    def wait(self, container_id: str) -> int:
        """Block until the container exits and return its exit code."""
        raise NotImplementedError

    def stop(self, container_id: str, timeout: float = 10.0) -> None:
        raise NotImplementedError

    def kill(self, container_id: str) -> None:
        raise NotImplementedError

    def remove(self, container_id: str) -> None:
        raise NotImplementedError

    def list_containers(self, name_prefix: str) -> list[str]:
        raise NotImplementedError


class DockerRuntime(ContainerRuntime):
    """Run suite containers through the Docker Engine API."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        with self._client_lock:
            if self._client is None:
                try:
                    self._client = docker.from_env()
                except DockerException as exc:
                    raise RuntimeUnavailableError(
                        f"unable to connect to the Docker daemon: {exc}"
                    ) from exc
            return self._client

    def ping(self) -> None:
        try:
            self.client.ping()
        except (requests.exceptions.ConnectionError, APIError) as exc:
            raise RuntimeUnavailableError(f"Docker daemon did not answer ping: {exc}") from exc

    def run(self, config: SuiteConfig, name: str, memory_limit: int | None = None) -> str:
        client = self.client
        try:
            client.images.get(config.test_image)
        except ImageNotFound as exc:
            raise LaunchError(
                "image_not_found", f"test image not found: {config.test_image}"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise RuntimeUnavailableError(str(exc)) from exc
        except APIError as exc:
            raise LaunchError("rejected", f"image lookup failed: {exc}") from exc

        options = {}
        if memory_limit is not None:
            # Equal swap limit means no swap on top of the memory cap.
            options["mem_limit"] = memory_limit
            options["memswap_limit"] = memory_limit

        LOGGER.debug(
            "starting container %s (image=%s, workdir=%s, cpus=%d, memory=%s)",
            name,
            config.test_image,
            config.working_directory,
            config.cpu_cores,
            memory_limit,
        )
        try:
            container = client.containers.run(
                config.test_image,
                command=["sh", "-c", config.test_command],
                name=name,
                detach=True,
                working_dir=config.working_directory,
                nano_cpus=config.cpu_cores * NANO_CPUS_PER_CORE,
                labels={SUITE_LABEL: config.suite_id},
                **options,
            )
        except requests.exceptions.ConnectionError as exc:
            raise RuntimeUnavailableError(str(exc)) from exc
        except ImageNotFound as exc:
            raise LaunchError(
                "image_not_found", f"test image not found: {config.test_image}"
            ) from exc
        except APIError as exc:
            raise LaunchError("rejected", f"failed to launch container: {exc}") from exc

        return container.short_id

    def wait(self, container_id: str) -> int:
        result = self.client.containers.get(container_id).wait()
        return int(result.get("StatusCode", -1))

    def stop(self, container_id: str, timeout: float = 10.0) -> None:
        try:
            self.client.containers.get(container_id).stop(timeout=int(timeout))
        except NotFound:
            LOGGER.debug("container %s already gone", container_id)

    def kill(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).kill()
        except NotFound:
            LOGGER.debug("container %s already gone", container_id)

    def remove(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).remove(force=True)
        except NotFound:
            LOGGER.debug("container %s already removed", container_id)

    def list_containers(self, name_prefix: str) -> list[str]:
        containers = self.client.containers.list(all=True, filters={"name": name_prefix})
        # The engine's name filter is a substring match.
        return [
            container.short_id
            for container in containers
            if container.name.startswith(name_prefix)
        ]


__all__ = [
    "DEFAULT_CONTAINER_PREFIX",
    "SUITE_LABEL",
    "ContainerRuntimeError",
    "RuntimeUnavailableError",
    "LaunchError",
    "ContainerRuntime",
    "DockerRuntime",
    "container_name",
    "new_run_token",
]
