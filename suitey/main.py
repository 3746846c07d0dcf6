from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from . import __version__
from .admission import detect_cpu_capacity, resolve_capacity
from .cleanup import cleanup_containers, cleanup_stale_containers, terminate_containers
from .config import Settings, load_settings, parse_headroom
from .descriptors import parse_descriptors
from .docker_control import ContainerRuntime, ContainerRuntimeError, DockerRuntime
from .memory import resolve_memory_limit
from .report import ExecutionReport
from .scheduler import ExecutionCoordinator

LOGGER = logging.getLogger("suitey")

PROG = "suitey"
COMMANDS = ("run", "cleanup")
TOP_LEVEL_FLAGS = ("-h", "--help", "-v", "--version")


class SuiteyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        prefix = "unrecognized arguments: "
        if message.startswith(prefix):
            option = message[len(prefix):].split()[0]
            print(f"Error: Unknown option {option}", file=sys.stderr)
        else:
            print(f"Error: {message}", file=sys.stderr)
        print(f"Run '{PROG} --help' for usage information.", file=sys.stderr)
        raise SystemExit(2)


def _headroom(raw: str) -> float:
    try:
        return parse_headroom(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"must be a number in [0.0, 1.0): {raw!r}") from None


def _positive_gb(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive number of GB: {raw!r}")
    return value


def with_implicit_run(argv: list[str]) -> list[str]:
    """Treat ``suitey [options] FILE`` as ``suitey run [options] FILE``."""
    index = 0
    while index < len(argv):
        arg = argv[index]
        if arg == "--log-level":
            index += 2
            continue
        if arg.startswith("--log-level="):
            index += 1
            continue
        if arg in COMMANDS or arg in TOP_LEVEL_FLAGS:
            return argv
        return argv[:index] + ["run"] + argv[index:]
    return argv


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = SuiteyArgumentParser(
        prog=PROG,
        description="Run independent test suites in parallel Docker containers",
    )
    parser.add_argument("-v", "--version", action="version", version=f"{PROG} {__version__}")
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (env SUITEY_LOG_LEVEL)",
    )
    commands = parser.add_subparsers(dest="command")

    run = commands.add_parser("run", help="Launch the suites described in FILE or stdin")
    run.add_argument(
        "descriptors",
        nargs="?",
        default="-",
        help="File with suite records (key=value lines); '-' reads stdin",
    )
    run.add_argument(
        "--max-parallel",
        type=int,
        default=settings.max_parallel,
        help="Upper bound on the core budget, capped at the detected core count",
    )
    run.add_argument(
        "--timeout",
        type=float,
        default=settings.timeout_seconds,
        help="Seconds to wait before reporting with suites still running",
    )
    run.add_argument(
        "--results-csv",
        help="Write a per-suite outcome table to this CSV file",
    )
    run.add_argument(
        "--memory-headroom",
        type=_headroom,
        default=settings.memory_headroom,
        help="Fraction of memory kept free for the host, 0.0-0.99 (env SUITEY_MEMORY_HEADROOM)",
    )
    run.add_argument(
        "--max-memory-per-container",
        type=_positive_gb,
        default=settings.max_memory_per_container_gb,
        metavar="GB",
        help="Upper bound on each container's memory (env SUITEY_MAX_MEMORY_PER_CONTAINER_GB)",
    )
    run.add_argument(
        "--total-memory-limit",
        type=_positive_gb,
        default=settings.total_memory_limit_gb,
        metavar="GB",
        help="Memory shared by all containers instead of the detected total "
        "(env SUITEY_TOTAL_MEMORY_LIMIT_GB)",
    )
    run.add_argument(
        "--no-memory-limit",
        action="store_true",
        help="Start containers without a memory limit",
    )
    run.add_argument(
        "--cleanup",
        action="store_true",
        help="Stop and remove launched containers after reporting",
    )

    commands.add_parser(
        "cleanup",
        help=f"Remove all containers whose name starts with {settings.container_prefix}",
    )
    return parser


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def read_descriptors(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


class InterruptHandler:
    """First SIGINT stops containers gracefully, the second one kills them."""

    def __init__(
        self,
        coordinator: ExecutionCoordinator,
        runtime: ContainerRuntime,
        stop_timeout: float,
    ) -> None:
        self._coordinator = coordinator
        self._runtime = runtime
        self._stop_timeout = stop_timeout
        self.signals_received = 0
        self._previous = None

    def __enter__(self) -> "InterruptHandler":
        self._previous = signal.signal(signal.SIGINT, self.handle)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        signal.signal(signal.SIGINT, self._previous or signal.default_int_handler)

    def handle(self, signum, frame) -> None:
        self.signals_received += 1
        container_ids = self._coordinator.tracker.container_ids()
        force = self.signals_received > 1
        if force:
            print("second interrupt: force killing containers", file=sys.stderr)
        else:
            print(
                "interrupt received: stopping containers (interrupt again to force)",
                file=sys.stderr,
            )
            self._coordinator.cancel()
        threading.Thread(
            target=terminate_containers,
            args=(self._runtime, container_ids),
            kwargs={"force": force, "stop_timeout": self._stop_timeout},
            name="suitey-terminate",
            daemon=True,
        ).start()


def run_suites(args: argparse.Namespace, settings: Settings) -> int:
    try:
        raw = read_descriptors(args.descriptors)
    except OSError as exc:
        print(f"Error: cannot read {args.descriptors}: {exc}", file=sys.stderr)
        return 1

    parsed = parse_descriptors(raw)
    runtime = DockerRuntime()
    if parsed.total == 0:
        report = ExecutionReport.empty()
    else:
        capacity = resolve_capacity(detect_cpu_capacity(), args.max_parallel)
        memory_limit = None
        if not args.no_memory_limit:
            # Every suite takes at least one core, so capacity bounds concurrency.
            memory_limit = resolve_memory_limit(
                capacity,
                headroom=args.memory_headroom,
                total_limit_gb=args.total_memory_limit,
                max_per_container_gb=args.max_memory_per_container,
            )
        coordinator = ExecutionCoordinator(
            runtime=runtime,
            capacity=capacity,
            container_prefix=settings.container_prefix,
            wait_timeout=args.timeout,
            memory_limit=memory_limit,
        )
        with InterruptHandler(coordinator, runtime, settings.stop_timeout_seconds):
            report = coordinator.run(parsed)

    print(report.render())

    if args.results_csv:
        path = Path(args.results_csv)
        path.parent.mkdir(parents=True, exist_ok=True)
        df = report.to_dataframe()
        df.to_csv(path, index=False)
        LOGGER.info("wrote %d suite outcome(s) to %s", len(df), path)

    if args.cleanup and report.container_ids:
        summary = cleanup_containers(
            runtime, report.container_ids, stop_timeout=settings.stop_timeout_seconds
        )
        print(summary.render(), file=sys.stderr)

    return 0 if report.succeeded else 1


def run_cleanup(settings: Settings) -> int:
    try:
        summary = cleanup_stale_containers(
            DockerRuntime(),
            settings.container_prefix,
            stop_timeout=settings.stop_timeout_seconds,
        )
    except ContainerRuntimeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(summary.render())
    return 0 if not summary.failed else 1


def main(argv: list[str] | None = None) -> int:
    settings = load_settings()
    parser = build_parser(settings)
    argv = sys.argv[1:] if argv is None else argv
    try:
        args = parser.parse_args(with_implicit_run(list(argv)))
    except SystemExit as exc:
        return int(exc.code or 0)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.log_level)
    if args.command == "cleanup":
        return run_cleanup(settings)
    return run_suites(args, settings)


if __name__ == "__main__":
    sys.exit(main())
