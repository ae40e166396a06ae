"""Run generated tests with pytest in a subprocess.

The run is bounded by a timeout that sends SIGTERM first and SIGKILL
after a grace period. Captured stdout/stderr are size-capped; dropped
bytes are reported with a ``...[truncated N bytes]`` marker. Results
come from the JUnit XML report, not from scraping console output.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
import time
import uuid
import xml.etree.ElementTree as ET
from pathlib import Path

from journeyforge.config import Settings
from journeyforge.constants import (
    ERROR_TRUNCATION_CHARS,
    RUNNER_KILL_GRACE_SECONDS,
    RUNNER_MAX_OUTPUT_BYTES,
)
from journeyforge.execution.models import (
    ExecutionResult,
    FailureType,
    RunOptions,
    RunStatus,
    TestCounts,
    TestFailure,
)

logger = logging.getLogger(__name__)

_READ_CHUNK = 65_536

_FAILURE_PATTERNS: list[tuple[FailureType, list[re.Pattern[str]]]] = [
    (
        "selector",
        [
            re.compile(p, re.IGNORECASE)
            for p in (
                r"locator.*not found",
                r"element.*not found",
                r"strict mode violation",
                r"resolved to \d+ elements",
                r"waiting for (?:locator|get_by_\w+)",
            )
        ],
    ),
    (
        "timeout",
        [
            re.compile(p, re.IGNORECASE)
            for p in (
                r"timeout.*exceeded",
                r"test.*timeout",
                r"exceeded.*timeout",
                r"timed out",
                r"TimeoutError",
            )
        ],
    ),
    (
        "assertion",
        [
            re.compile(p, re.IGNORECASE)
            for p in (
                r"AssertionError",
                r"expected.*(?:but|actual|received)",
                r"assert .+ ==",
            )
        ],
    ),
    (
        "navigation",
        [
            re.compile(p, re.IGNORECASE)
            for p in (
                r"page\.goto",
                r"navigation.*failed",
                r"net::ERR",
                r"NS_ERROR",
                r"navigating to",
            )
        ],
    ),
    (
        "code",
        [
            re.compile(p)
            for p in (
                r"SyntaxError",
                r"TypeError",
                r"NameError",
                r"AttributeError",
                r"ModuleNotFoundError",
                r"ImportError",
            )
        ],
    ),
    (
        "network",
        [
            re.compile(p, re.IGNORECASE)
            for p in (
                r"ECONNREFUSED",
                r"ENOTFOUND",
                r"network.*error",
                r"fetch.*failed",
                r"ConnectionError",
            )
        ],
    ),
]

_TB_LOCATION_RE = re.compile(r"^(?P<file>[^\s:][^:]*\.py):(?P<line>\d+):", re.MULTILINE)


def classify_failure(message: str) -> FailureType:
    for failure_type, patterns in _FAILURE_PATTERNS:
        if any(p.search(message) for p in patterns):
            return failure_type
    return "unknown"


def cap_output(data: bytes, dropped: int) -> str:
    text = data.decode("utf-8", errors="replace")
    if dropped:
        text += f"\n...[truncated {dropped} bytes]"
    return text


async def _read_capped(
    stream: asyncio.StreamReader | None, limit: int
) -> tuple[bytes, int]:
    """Drain ``stream`` keeping at most ``limit`` bytes."""
    if stream is None:
        return b"", 0
    kept = bytearray()
    dropped = 0
    while chunk := await stream.read(_READ_CHUNK):
        room = limit - len(kept)
        if room > 0:
            kept.extend(chunk[:room])
        dropped += max(0, len(chunk) - max(room, 0))
    return bytes(kept), dropped


def _failure_line(stack: str, file: str) -> int | None:
    line: int | None = None
    for m in _TB_LOCATION_RE.finditer(stack):
        if not file or Path(m.group("file")).name == Path(file).name:
            line = int(m.group("line"))
    return line


def parse_junit_report(path: Path) -> tuple[TestCounts, list[TestFailure]]:
    """Read counts and failures from a pytest JUnit XML report.

    Raises:
        FileNotFoundError: If the report does not exist.
        ValueError: If the report is not well-formed XML.
    """
    if not path.exists():
        msg = f"JUnit report not found: {path}"
        raise FileNotFoundError(msg)
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as exc:
        msg = f"Malformed JUnit report {path}: {exc}"
        raise ValueError(msg) from exc

    counts = TestCounts()
    failures: list[TestFailure] = []
    for case in root.iter("testcase"):
        counts.total += 1
        problem = case.find("failure")
        if problem is None:
            problem = case.find("error")
        if problem is not None:
            counts.failed += 1
            stack = problem.text or ""
            message = problem.get("message") or stack.strip().split("\n")[-1]
            file = case.get("file", "")
            raw_line = case.get("line")
            line = _failure_line(stack, file)
            if line is None and raw_line is not None and raw_line.isdigit():
                line = int(raw_line) + 1
            failures.append(
                TestFailure(
                    title=case.get("name", ""),
                    file=file,
                    line=line,
                    error=message,
                    error_type=classify_failure(f"{message}\n{stack}"),
                    stack=stack or None,
                )
            )
        elif case.find("skipped") is not None:
            counts.skipped += 1
        else:
            counts.passed += 1
    return counts, failures


class PytestRunner:
    """Execution adapter backed by ``pytest`` (pytest-playwright tests)."""

    def __init__(
        self,
        executable: str = "pytest",
        *,
        report_dir: Path = Path(".journeyforge/reports"),
        kill_grace_seconds: float = RUNNER_KILL_GRACE_SECONDS,
        max_output_bytes: int = RUNNER_MAX_OUTPUT_BYTES,
        tracing: bool = False,
    ) -> None:
        self._command = shlex.split(executable)
        self._report_dir = report_dir
        self._kill_grace = kill_grace_seconds
        self._max_output = max_output_bytes
        self._tracing = tracing

    @classmethod
    def from_settings(cls, settings: Settings) -> PytestRunner:
        return cls(
            settings.pytest_executable,
            report_dir=settings.data_dir / "reports",
            kill_grace_seconds=settings.runner_kill_grace_seconds,
            max_output_bytes=settings.runner_max_output_bytes,
        )

    def build_command(
        self,
        options: RunOptions,
        report_path: Path,
        node_ids: list[str] | None = None,
    ) -> list[str]:
        targets = node_ids or [str(f) for f in options.test_files]
        argv = [
            *self._command,
            *targets,
            "-q",
            f"--junitxml={report_path}",
            "-o",
            "junit_family=xunit1",
        ]
        if options.grep and not node_ids:
            argv.extend(["-k", options.grep])
        if options.workers > 1:
            argv.extend(["-n", str(options.workers)])
        if self._tracing:
            argv.extend(
                [
                    "--tracing",
                    "retain-on-failure",
                    "--output",
                    str(self._report_dir / "traces"),
                ]
            )
        return argv

    async def run(self, options: RunOptions) -> ExecutionResult:
        started = time.monotonic()
        result = await self._run_once(options)
        retries_left = options.retries
        while retries_left > 0 and result.status == "failed" and result.failures:
            retries_left -= 1
            node_ids = [f"{f.file}::{f.title}" for f in result.failures if f.file]
            if not node_ids:
                break
            logger.info(
                "event=rerun_failed tests=%d retries_left=%d",
                len(node_ids),
                retries_left,
            )
            rerun = await self._run_once(options, node_ids)
            if rerun.status == "timeout":
                break
            still_failing = {(f.file, f.title) for f in rerun.failures}
            recovered = [
                f
                for f in result.failures
                if (f.file, f.title) not in still_failing
            ]
            counts = result.counts
            counts.flaky += len(recovered)
            counts.failed -= len(recovered)
            counts.passed += len(recovered)
            result.failures = [
                f for f in result.failures if (f.file, f.title) in still_failing
            ]
            if not result.failures:
                result.status = "passed"
                result.exit_code = 0
        result.duration_ms = (time.monotonic() - started) * 1000
        return result

    async def _run_once(
        self, options: RunOptions, node_ids: list[str] | None = None
    ) -> ExecutionResult:
        self._report_dir.mkdir(parents=True, exist_ok=True)
        report_path = self._report_dir / f"junit-{uuid.uuid4().hex[:8]}.xml"
        argv = self.build_command(options, report_path, node_ids)
        started = time.monotonic()
        logger.debug("event=runner_start argv=%s", shlex.join(argv))

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(options.cwd) if options.cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.warning("event=runner_spawn_failed error=%s", exc)
            return ExecutionResult(
                status="error",
                exit_code=-1,
                duration_ms=(time.monotonic() - started) * 1000,
                failures=[
                    TestFailure(
                        title="runner",
                        file="",
                        error=f"Failed to start pytest: {exc}",
                    )
                ],
                stderr=str(exc),
            )

        readers = asyncio.gather(
            _read_capped(proc.stdout, self._max_output),
            _read_capped(proc.stderr, self._max_output),
        )
        timed_out = False
        try:
            await asyncio.wait_for(proc.wait(), timeout=options.timeout_seconds)
        except TimeoutError:
            timed_out = True
            await self._terminate(proc)
        (out, out_dropped), (err, err_dropped) = await readers
        duration_ms = (time.monotonic() - started) * 1000
        exit_code = proc.returncode if proc.returncode is not None else -1

        counts = TestCounts()
        failures: list[TestFailure] = []
        report: Path | None = None
        try:
            counts, failures = parse_junit_report(report_path)
            report = report_path
        except (FileNotFoundError, ValueError) as exc:
            if not timed_out:
                logger.warning("event=junit_unavailable error=%s", exc)

        status = self._status(exit_code, timed_out)
        if status == "timeout" and not failures:
            failures.append(
                TestFailure(
                    title="run",
                    file="",
                    error=f"Test run timed out after {options.timeout_seconds}s",
                    error_type="timeout",
                )
            )
        elif status == "error" and not failures:
            tail = cap_output(err, 0).strip()[-ERROR_TRUNCATION_CHARS:]
            failures.append(
                TestFailure(
                    title="run",
                    file="",
                    error=tail or f"pytest exited with code {exit_code}",
                    error_type=classify_failure(tail),
                )
            )

        traces = self._report_dir / "traces"
        logger.info(
            "event=runner_done status=%s exit_code=%d total=%d failed=%d"
            " duration_ms=%.0f",
            status,
            exit_code,
            counts.total,
            counts.failed,
            duration_ms,
        )
        return ExecutionResult(
            status=status,
            exit_code=exit_code,
            duration_ms=duration_ms,
            counts=counts,
            failures=failures,
            stdout=cap_output(out, out_dropped),
            stderr=cap_output(err, err_dropped),
            report_path=report,
            trace_path=traces if self._tracing and traces.exists() else None,
        )

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL once the grace period runs out."""
        logger.warning("event=runner_timeout pid=%s action=terminate", proc.pid)
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace)
        except TimeoutError:
            logger.warning("event=runner_kill pid=%s", proc.pid)
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    @staticmethod
    def _status(exit_code: int, timed_out: bool) -> RunStatus:
        if timed_out:
            return "timeout"
        if exit_code == 0:
            return "passed"
        if exit_code == 1:
            return "failed"
        # 2 interrupted, 3 internal error, 4 usage error, 5 nothing collected
        return "error"
