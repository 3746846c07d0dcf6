import sys
import threading
import time
import uuid
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from suitey.docker_control import (  # noqa: E402
    ContainerRuntime,
    LaunchError,
    RuntimeUnavailableError,
)


class FakeRuntime(ContainerRuntime):
    """In-memory container runtime that records concurrency as it goes.

    Containers "run" for ``duration`` seconds, or until stopped when ``hold``
    is set.
    """

    def __init__(
        self,
        duration: float = 0.0,
        hold: bool = False,
        failing_images=(),
        reachable: bool = True,
        unavailable_on_run: bool = False,
        exit_codes=None,
    ) -> None:
        self.duration = duration
        self.hold = hold
        self.failing_images = set(failing_images)
        self.reachable = reachable
        self.unavailable_on_run = unavailable_on_run
        self.exit_codes = dict(exit_codes or {})

        self._lock = threading.Lock()
        self._events: dict[str, threading.Event] = {}
        self._running: dict[str, object] = {}
        self.launch_order: list[str] = []
        self.names: list[str] = []
        # Names stay taken until removed, as with a real daemon.
        self._names_in_use: set[str] = set()
        self._name_of: dict[str, str] = {}
        self.memory_limits: list = []
        self.suite_of: dict[str, str] = {}
        self.max_running = 0
        self.max_running_cores = 0
        self.stopped: list[str] = []
        self.killed: list[str] = []
        self.removed: list[str] = []
        self.listed: list[str] = []

    def ping(self) -> None:
        if not self.reachable:
            raise RuntimeUnavailableError("daemon down")

    def run(self, config, name, memory_limit=None):
        if self.unavailable_on_run:
            raise RuntimeUnavailableError("connection refused")
        if config.test_image in self.failing_images:
            raise LaunchError("image_not_found", f"test image not found: {config.test_image}")
        container_id = uuid.uuid4().hex[:12]
        with self._lock:
            if name in self._names_in_use:
                raise LaunchError(
                    "rejected", f'Conflict. The container name "/{name}" is already in use'
                )
            self._names_in_use.add(name)
            self.memory_limits.append(memory_limit)
            self._events[container_id] = threading.Event()
            self._running[container_id] = config
            self.launch_order.append(config.suite_id)
            self.names.append(name)
            self._name_of[container_id] = name
            self.suite_of[container_id] = config.suite_id
            self.max_running = max(self.max_running, len(self._running))
            cores = sum(c.cpu_cores for c in self._running.values())
            self.max_running_cores = max(self.max_running_cores, cores)
        return container_id

    def wait(self, container_id):
        event = self._events[container_id]
        if self.hold:
            event.wait()
        else:
            event.wait(timeout=self.duration)
        with self._lock:
            config = self._running.pop(container_id, None)
        suite_id = config.suite_id if config is not None else None
        return self.exit_codes.get(suite_id, 0)

    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    def finish_all(self) -> None:
        with self._lock:
            events = list(self._events.values())
        for event in events:
            event.set()

    def stop(self, container_id, timeout=10.0):
        self.stopped.append(container_id)
        event = self._events.get(container_id)
        if event is not None:
            event.set()

    def kill(self, container_id):
        self.killed.append(container_id)
        event = self._events.get(container_id)
        if event is not None:
            event.set()

    def remove(self, container_id):
        self.removed.append(container_id)
        with self._lock:
            self._names_in_use.discard(self._name_of.pop(container_id, ""))

    def list_containers(self, name_prefix):
        return list(self.listed)


def suite_record(
    suite_id: str,
    cpu_cores: int = 1,
    image: str = "alpine:3.19",
    command: str = "echo ok",
    workdir: str = "/app",
) -> str:
    return "\n".join(
        [
            f"suite_id={suite_id}",
            f"test_command={command}",
            f"test_image={image}",
            f"working_directory={workdir}",
            f"cpu_cores={cpu_cores}",
        ]
    )


def descriptor_blob(*records: str) -> str:
    return "\n\n".join(records) + "\n"


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def fake_runtime():
    runtime = FakeRuntime()
    yield runtime
    runtime.finish_all()
