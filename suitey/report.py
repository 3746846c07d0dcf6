from __future__ import annotations

import enum
from dataclasses import dataclass, field

import pandas as pd

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"

OUTCOME_COLUMNS = [
    "suite_id",
    "state",
    "cpu_cores",
    "container_id",
    "exit_code",
    "error",
]


class SuiteState(str, enum.Enum):
    PENDING = "pending"
    ADMITTED = "admitted"
    LAUNCHED = "launched"
    FAILED = "failed"
    DONE = "done"


@dataclass(frozen=True)
class SuiteOutcome:
    suite_id: str
    state: SuiteState
    cpu_cores: int | None = None
    container_id: str | None = None
    exit_code: int | None = None
    error: str | None = None

    @property
    def launched(self) -> bool:
        return self.container_id is not None


@dataclass(frozen=True)
class ExecutionReport:
    """Aggregated outcome of one scheduler invocation."""

    execution_status: str
    total_suites: int
    launched_suites: int
    container_ids: tuple[str, ...] = ()
    launches: tuple[tuple[str, str], ...] = ()
    outcomes: tuple[SuiteOutcome, ...] = field(default=(), repr=False)
    capacity: int = 0
    peak_cores_in_use: int = 0

    @property
    def succeeded(self) -> bool:
        return self.execution_status == STATUS_SUCCESS

    @classmethod
    def empty(cls) -> "ExecutionReport":
        return cls(execution_status=STATUS_SUCCESS, total_suites=0, launched_suites=0)

    def as_dict(self) -> dict[str, str]:
        return {
            "execution_status": self.execution_status,
            "total_suites": str(self.total_suites),
            "launched_suites": str(self.launched_suites),
            "container_ids": ",".join(self.container_ids),
        }

    def render(self) -> str:
        return "\n".join(f"{key}={value}" for key, value in self.as_dict().items())

    def to_dataframe(self) -> pd.DataFrame:
        rows = [
            {
                "suite_id": outcome.suite_id,
                "state": outcome.state.value,
                "cpu_cores": outcome.cpu_cores,
                "container_id": outcome.container_id,
                "exit_code": outcome.exit_code,
                "error": outcome.error,
            }
            for outcome in self.outcomes
        ]
        if not rows:
            return pd.DataFrame(columns=OUTCOME_COLUMNS)
        return pd.DataFrame(rows, columns=OUTCOME_COLUMNS)


def parse_report(text: str) -> dict[str, str]:
    """Read a rendered report back into its ``key=value`` fields."""
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            fields[key.strip()] = value.strip()
    return fields


__all__ = [
    "STATUS_SUCCESS",
    "STATUS_FAILURE",
    "SuiteState",
    "SuiteOutcome",
    "ExecutionReport",
    "parse_report",
]
