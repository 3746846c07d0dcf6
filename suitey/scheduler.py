"""
Parallel execution of test suites in containers.

The coordinator admits suites against a CPU-core budget, launches each
admitted suite on its own thread, and holds the suite's cores until its
container exits. Suites that do not fit yet stay pending and are retried
whenever a running suite releases its cores.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from .admission import (
    Reservation,
    ResourcePool,
    detect_cpu_capacity,
    resolve_capacity,
)
from .descriptors import InvalidSuite, ParsedDescriptors, SuiteConfig, parse_descriptors
from .docker_control import (
    DEFAULT_CONTAINER_PREFIX,
    ContainerRuntime,
    DockerRuntime,
    LaunchError,
    RuntimeUnavailableError,
    container_name,
    new_run_token,
)
from .report import (
    STATUS_FAILURE,
    STATUS_SUCCESS,
    ExecutionReport,
    SuiteOutcome,
    SuiteState,
)
from .tracker import LifecycleTracker

LOGGER = logging.getLogger("suitey.scheduler")


@dataclass
class _SuiteRecord:
    suite_id: str
    state: SuiteState
    cpu_cores: int | None = None
    container_id: str | None = None
    exit_code: int | None = None
    error: str | None = None

    def freeze(self) -> SuiteOutcome:
        return SuiteOutcome(
            suite_id=self.suite_id,
            state=self.state,
            cpu_cores=self.cpu_cores,
            container_id=self.container_id,
            exit_code=self.exit_code,
            error=self.error,
        )


@dataclass
class RunningSuite:
    index: int
    config: SuiteConfig
    reservation: Reservation
    container_id: str | None = None
    launch_done: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None


class ExecutionCoordinator:
    """Schedule one batch of suites onto a container runtime.

    A coordinator is single-use: its tracker and outcomes describe exactly one
    call to :meth:`run`. Create a new coordinator for every batch.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        capacity: int,
        container_prefix: str = DEFAULT_CONTAINER_PREFIX,
        wait_timeout: float | None = None,
        memory_limit: int | None = None,
    ) -> None:
        self._runtime = runtime
        self._pool = ResourcePool(capacity)
        self._prefix = container_prefix
        self._wait_timeout = wait_timeout
        self._memory_limit = memory_limit
        self._run_token = new_run_token()
        self._tracker = LifecycleTracker()
        self._cancelled = threading.Event()
        self._started = False

        self._lock = threading.Condition()
        self._records: dict[int, _SuiteRecord] = {}
        self._running: list[RunningSuite] = []
        self._active = 0
        self._attempted = 0
        self._unavailable = 0
        self._runtime_down = False

    @property
    def tracker(self) -> LifecycleTracker:
        return self._tracker

    @property
    def pool(self) -> ResourcePool:
        return self._pool

    def cancel(self) -> None:
        """Stop admitting suites and return as soon as pending launches settle."""
        if self._cancelled.is_set():
            return
        LOGGER.info("cancellation requested; no further suites will be admitted")
        self._cancelled.set()
        self._pool.wake()
        with self._lock:
            self._lock.notify_all()

    def run(self, descriptors: str | ParsedDescriptors) -> ExecutionReport:
        with self._lock:
            if self._started:
                raise RuntimeError(
                    "ExecutionCoordinator.run() can only be called once; "
                    "create a new coordinator for each batch"
                )
            self._started = True

        if isinstance(descriptors, ParsedDescriptors):
            parsed = descriptors
        else:
            parsed = parse_descriptors(descriptors)
        if parsed.total == 0:
            LOGGER.info("no suite records found; nothing to schedule")
            return ExecutionReport.empty()

        deadline = None
        if self._wait_timeout is not None:
            deadline = time.monotonic() + self._wait_timeout

        LOGGER.info(
            "scheduling %d suite(s) on a budget of %d core(s)",
            parsed.total,
            self._pool.capacity,
        )
        pending = self._classify(parsed)
        if pending and not self._runtime_ready():
            for index, _ in pending:
                self._fail(index, "container runtime unavailable")
            pending = []

        pending = self._admit_until_drained(pending, deadline)
        if pending:
            reason = "cancelled" if self._cancelled.is_set() else "timed out waiting for admission"
            for index, _ in pending:
                self._fail(index, reason)

        self._await_workers(deadline)
        return self._build_report(parsed.total)

    def _classify(self, parsed: ParsedDescriptors) -> list[tuple[int, SuiteConfig]]:
        pending: list[tuple[int, SuiteConfig]] = []
        for index, result in enumerate(parsed.results):
            if isinstance(result, InvalidSuite):
                self._records[index] = _SuiteRecord(
                    suite_id=result.suite_id,
                    state=SuiteState.FAILED,
                    error=result.reason,
                )
                continue
            self._records[index] = _SuiteRecord(
                suite_id=result.suite_id,
                state=SuiteState.PENDING,
                cpu_cores=result.cpu_cores,
            )
            if not self._pool.fits(result.cpu_cores):
                LOGGER.warning(
                    "suite %s needs %d core(s) but only %d exist; skipping",
                    result.suite_id,
                    result.cpu_cores,
                    self._pool.capacity,
                )
                self._fail(
                    index,
                    f"requires {result.cpu_cores} core(s), capacity is {self._pool.capacity}",
                )
                continue
            pending.append((index, result))
        return pending

    def _runtime_ready(self) -> bool:
        try:
            self._runtime.ping()
        except RuntimeUnavailableError as exc:
            LOGGER.error("container runtime unavailable: %s", exc)
            self._runtime_down = True
            return False
        return True

    def _admit_until_drained(
        self,
        pending: list[tuple[int, SuiteConfig]],
        deadline: float | None,
    ) -> list[tuple[int, SuiteConfig]]:
        while pending and not self._cancelled.is_set():
            generation = self._pool.generation
            waiting: list[tuple[int, SuiteConfig]] = []
            for index, config in pending:
                reservation = self._pool.try_reserve(config.cpu_cores)
                if reservation is None:
                    waiting.append((index, config))
                    continue
                self._dispatch(index, config, reservation)
            pending = waiting
            if not pending:
                break

            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                LOGGER.warning("timed out with %d suite(s) still pending", len(pending))
                break
            LOGGER.debug("%d suite(s) waiting for free cores", len(pending))
            self._pool.wait_for_release(generation, timeout=remaining)
        return pending

    def _dispatch(self, index: int, config: SuiteConfig, reservation: Reservation) -> None:
        running = RunningSuite(index=index, config=config, reservation=reservation)
        with self._lock:
            self._records[index].state = SuiteState.ADMITTED
            self._running.append(running)
            self._active += 1
            self._attempted += 1
        thread = threading.Thread(
            target=self._execute,
            args=(running,),
            name=f"suitey-{config.suite_id}",
            daemon=True,
        )
        running.thread = thread
        thread.start()

    def _execute(self, running: RunningSuite) -> None:
        config = running.config
        try:
            container_id = self._launch(running)
            if container_id is None:
                return
            try:
                exit_code = self._runtime.wait(container_id)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("lost track of container %s", container_id)
                self._update(running.index, state=SuiteState.DONE, error=f"wait failed: {exc}")
                return
            LOGGER.info(
                "suite %s finished in container %s with exit code %d",
                config.suite_id,
                container_id,
                exit_code,
            )
            self._update(running.index, state=SuiteState.DONE, exit_code=exit_code)
        finally:
            running.launch_done.set()
            self._pool.release(running.reservation)
            with self._lock:
                self._active -= 1
                self._lock.notify_all()

    def _launch(self, running: RunningSuite) -> str | None:
        config = running.config
        name = container_name(self._prefix, config.suite_id, running.index, self._run_token)
        try:
            container_id = self._runtime.run(config, name, memory_limit=self._memory_limit)
        except RuntimeUnavailableError as exc:
            LOGGER.error("suite %s not launched, runtime unavailable: %s", config.suite_id, exc)
            with self._lock:
                self._unavailable += 1
            self._fail(running.index, f"runtime unavailable: {exc}")
            return None
        except LaunchError as exc:
            LOGGER.warning("suite %s failed to launch (%s): %s", config.suite_id, exc.reason, exc)
            self._fail(running.index, str(exc))
            return None
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("unexpected error launching suite %s", config.suite_id)
            self._fail(running.index, f"launch error: {exc!r}")
            return None

        running.container_id = container_id
        self._tracker.register(config.suite_id, container_id)
        self._update(running.index, state=SuiteState.LAUNCHED, container_id=container_id)
        running.launch_done.set()
        LOGGER.info(
            "launched suite %s in container %s (%d core(s))",
            config.suite_id,
            container_id,
            config.cpu_cores,
        )
        return container_id

    def _await_workers(self, deadline: float | None) -> None:
        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        with self._lock:
            settled = self._lock.wait_for(
                lambda: self._active == 0 or self._cancelled.is_set(),
                timeout=remaining,
            )
            running = list(self._running)
            all_done = self._active == 0

        if all_done:
            for suite in running:
                if suite.thread is not None:
                    suite.thread.join()
            return

        if not settled:
            LOGGER.warning("timed out waiting for running suites; reporting early")
        # Containers may still be running; make sure every launch call has
        # returned so the tracker holds all of their ids.
        for suite in running:
            suite.launch_done.wait()

    def _fail(self, index: int, reason: str) -> None:
        self._update(index, state=SuiteState.FAILED, error=reason)

    def _update(self, index: int, **changes) -> None:
        with self._lock:
            record = self._records[index]
            for key, value in changes.items():
                setattr(record, key, value)

    def _build_report(self, total: int) -> ExecutionReport:
        with self._lock:
            outcomes = tuple(self._records[index].freeze() for index in sorted(self._records))
            systemic = self._runtime_down or (
                self._attempted > 0 and self._unavailable == self._attempted
            )

        launches = self._tracker.pairs()
        report = ExecutionReport(
            execution_status=STATUS_FAILURE if systemic else STATUS_SUCCESS,
            total_suites=total,
            launched_suites=len(launches),
            container_ids=tuple(container_id for _, container_id in launches),
            launches=launches,
            outcomes=outcomes,
            capacity=self._pool.capacity,
            peak_cores_in_use=self._pool.status().peak_in_use,
        )
        LOGGER.info(
            "execution %s: %d/%d suite(s) launched",
            report.execution_status,
            report.launched_suites,
            report.total_suites,
        )
        return report


def launch_test_suites_parallel(
    raw_descriptors: str,
    runtime: ContainerRuntime | None = None,
    capacity: int | None = None,
    max_parallel: int | None = None,
    timeout: float | None = None,
    container_prefix: str = DEFAULT_CONTAINER_PREFIX,
    memory_limit: int | None = None,
) -> ExecutionReport:
    """Launch every suite described in ``raw_descriptors`` and report the outcome.

    Every call schedules on a fresh coordinator; ``memory_limit`` (bytes) is
    applied to each container when given.
    """
    parsed = parse_descriptors(raw_descriptors)
    if parsed.total == 0:
        return ExecutionReport.empty()

    if capacity is None:
        capacity = resolve_capacity(detect_cpu_capacity(), max_parallel)
    coordinator = ExecutionCoordinator(
        runtime=runtime or DockerRuntime(),
        capacity=capacity,
        container_prefix=container_prefix,
        wait_timeout=timeout,
        memory_limit=memory_limit,
    )
    return coordinator.run(parsed)


__all__ = ["ExecutionCoordinator", "RunningSuite", "launch_test_suites_parallel"]
