"""Execution adapter contract: run options in, structured results out."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol

type RunStatus = Literal["passed", "failed", "timeout", "error"]
type FailureType = Literal[
    "selector",
    "timeout",
    "assertion",
    "navigation",
    "code",
    "network",
    "unknown",
]


@dataclass(frozen=True)
class RunOptions:
    test_files: list[Path]
    timeout_seconds: float = 120.0
    retries: int = 0
    workers: int = 1
    grep: str | None = None
    cwd: Path | None = None


@dataclass
class TestCounts:
    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    flaky: int = 0


@dataclass(frozen=True)
class TestFailure:
    __test__ = False

    title: str
    file: str
    error: str
    error_type: FailureType = "unknown"
    line: int | None = None
    stack: str | None = None


@dataclass
class ExecutionResult:
    status: RunStatus
    exit_code: int
    duration_ms: float
    counts: TestCounts = field(default_factory=TestCounts)
    failures: list[TestFailure] = field(
        default_factory=lambda: list[TestFailure]()
    )
    stdout: str = ""
    stderr: str = ""
    report_path: Path | None = None
    trace_path: Path | None = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"


class TestExecutor(Protocol):
    """Anything that can run generated test files."""

    async def run(self, options: RunOptions) -> ExecutionResult: ...
