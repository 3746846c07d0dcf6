from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Union

LOGGER = logging.getLogger("suitey.descriptors")

REQUIRED_KEYS: tuple[str, ...] = (
    "suite_id",
    "test_command",
    "test_image",
    "working_directory",
    "cpu_cores",
)

RECORD_START_KEY = "suite_id"
RECORD_SEPARATOR = "---"

_POSITIVE_INT = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class SuiteConfig:
    """One runnable test suite."""

    suite_id: str
    test_command: str
    test_image: str
    working_directory: str
    cpu_cores: int


@dataclass(frozen=True)
class InvalidSuite:
    """A descriptor record that could not become a SuiteConfig."""

    index: int
    suite_id: str
    reason: str


ParseResult = Union[SuiteConfig, InvalidSuite]


@dataclass(frozen=True)
class ParsedDescriptors:
    results: tuple[ParseResult, ...]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def valid(self) -> list[SuiteConfig]:
        return [item for item in self.results if isinstance(item, SuiteConfig)]

    @property
    def invalid(self) -> list[InvalidSuite]:
        return [item for item in self.results if isinstance(item, InvalidSuite)]


def split_records(text: str) -> list[dict[str, str]]:
    """Group ``key=value`` lines into records.

    A record opens at every ``suite_id=`` line and closes at a blank line, a
    ``---`` separator, or the next ``suite_id=`` line. Lines that fall outside
    an open record are dropped.
    """
    records: list[dict[str, str]] = []
    current: dict[str, str] | None = None

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line == RECORD_SEPARATOR:
            current = None
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if sep and key == RECORD_START_KEY:
            current = {}
            records.append(current)
        elif current is None:
            LOGGER.debug("ignoring line %d outside of a suite record: %r", lineno, line)
            continue
        elif not sep:
            LOGGER.debug("ignoring line %d without '=': %r", lineno, line)
            continue
        current[key] = value.strip()

    return records


def build_config(index: int, fields: dict[str, str]) -> ParseResult:
    suite_id = fields.get("suite_id", "")
    missing = [key for key in REQUIRED_KEYS if not fields.get(key)]
    if missing:
        return InvalidSuite(
            index=index,
            suite_id=suite_id,
            reason=f"missing required field(s): {', '.join(missing)}",
        )

    cpu_cores_raw = fields["cpu_cores"]
    if not _POSITIVE_INT.match(cpu_cores_raw) or int(cpu_cores_raw) <= 0:
        return InvalidSuite(
            index=index,
            suite_id=suite_id,
            reason=f"cpu_cores must be a positive integer, got {cpu_cores_raw!r}",
        )

    working_directory = fields["working_directory"]
    if not working_directory.startswith("/"):
        return InvalidSuite(
            index=index,
            suite_id=suite_id,
            reason=f"working_directory must be absolute, got {working_directory!r}",
        )

    return SuiteConfig(
        suite_id=suite_id,
        test_command=fields["test_command"],
        test_image=fields["test_image"],
        working_directory=working_directory,
        cpu_cores=int(cpu_cores_raw),
    )


def parse_descriptors(text: str) -> ParsedDescriptors:
    results: list[ParseResult] = []
    seen: set[str] = set()

    for index, fields in enumerate(split_records(text or "")):
        result = build_config(index, fields)
        if isinstance(result, SuiteConfig):
            if result.suite_id in seen:
                result = InvalidSuite(
                    index=index,
                    suite_id=result.suite_id,
                    reason=f"duplicate suite_id {result.suite_id!r}",
                )
            else:
                seen.add(result.suite_id)
        if isinstance(result, InvalidSuite):
            LOGGER.warning(
                "invalid suite record #%d (%s): %s",
                index,
                result.suite_id or "<no id>",
                result.reason,
            )
        results.append(result)

    return ParsedDescriptors(results=tuple(results))


__all__ = [
    "REQUIRED_KEYS",
    "SuiteConfig",
    "InvalidSuite",
    "ParseResult",
    "ParsedDescriptors",
    "split_records",
    "parse_descriptors",
]
