"""Operations manager for validated remote host operations.

This module provides the OpsManager class, the single entry point through
which the HTTP layer reaches the host. Every operation that touches the
host passes through the sandbox policy first:

- Shell commands: CommandValidator, then CommandExecutor
- Process start: working directory and script confined to allowed roots
- Log search and metrics: caller patterns screened before they are compiled

Usage:
    >>> from config import get_settings
    >>> from ops_manager import OpsManager
    >>>
    >>> ops = OpsManager.from_settings(get_settings())
    >>> result, output = await ops.execute_command("ls -la", cwd="/srv/data")
    >>> if not result:
    ...     print(result.reason)
    >>> await ops.close()
"""

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Literal, TypeVar

import structlog

from config import Settings
from logsearch import (
    MatchResult,
    MetricSeries,
    check_log_file,
    extract_metrics,
    grep_log,
    prepare_metric_patterns,
    tail_log,
)
from process import (
    GpuProbe,
    GpuStatus,
    Pm2Client,
    ProcessHealth,
    ProcessInfo,
    StartSpec,
    check_health,
)
from sandbox import (
    CommandExecutor,
    CommandResult,
    CommandValidator,
    ValidationResult,
    screen_regex,
)
from sandbox.results import DenialCode

logger = structlog.get_logger(__name__)

LogType = Literal["out", "err", "all"]

T = TypeVar("T")


@dataclass
class LogSourceMatches:
    """Grep results for one log stream of a process.

    Attributes:
        source: "stdout" or "stderr".
        path: Log file path as reported by pm2.
        readable: False if the file is missing or unreadable.
        matches: Matches found in this stream.
    """

    source: str
    path: str
    readable: bool
    matches: list[MatchResult] = field(default_factory=list)


@dataclass
class LogMetrics:
    """Metric series extracted from a process's stdout log."""

    path: str
    readable: bool
    series: dict[str, MetricSeries] = field(default_factory=dict)


@dataclass
class LogTail:
    """Trailing lines of one log stream."""

    source: str
    path: str
    readable: bool
    lines: list[str] = field(default_factory=list)


def _selected_sources(
    out_path: str, err_path: str, log_type: LogType
) -> list[tuple[str, str]]:
    sources: list[tuple[str, str]] = []
    if log_type in ("out", "all"):
        sources.append(("stdout", out_path))
    if log_type in ("err", "all"):
        sources.append(("stderr", err_path))
    return sources


class OpsManager:
    """Coordinates policy checks and host collaborators.

    All policy state (validator, allowed roots) is immutable after
    construction; the only mutable collaborator is the pm2 client handle,
    which this manager owns and closes on shutdown.

    Attributes:
        settings: Application settings.
        validator: Command and path policy.
        executor: Runs permitted commands.
        pm2: pm2 client handle.
        gpu: GPU probe.
    """

    def __init__(
        self,
        settings: Settings,
        validator: CommandValidator,
        executor: CommandExecutor,
        pm2: Pm2Client,
        gpu: GpuProbe,
    ) -> None:
        self.settings = settings
        self.validator = validator
        self.executor = executor
        self.pm2 = pm2
        self.gpu = gpu

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpsManager":
        """Build an OpsManager and its collaborators from settings."""
        return cls(
            settings=settings,
            validator=CommandValidator(
                allowed_roots=settings.allowed_roots,
                follow_symlinks=settings.resolve_symlinks,
            ),
            executor=CommandExecutor(max_output_bytes=settings.max_output_bytes),
            pm2=Pm2Client(
                binary=settings.pm2_binary,
                timeout=settings.pm2_timeout_seconds,
            ),
            gpu=GpuProbe(binary=settings.nvidia_smi_binary),
        )

    async def close(self) -> None:
        """Release the pm2 handle."""
        await self.pm2.close()

    async def _in_thread(self, func: Callable[..., T], *args: object) -> T:
        """Run blocking file I/O off the event loop."""
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    # ------------------------------------------------------------------
    # Shell
    # ------------------------------------------------------------------

    def effective_cwd(self, cwd: str | None) -> str:
        """The working directory a command is judged against and run in.

        Defaults to the first allowed root so bare relative arguments are
        never resolved against the server's own working directory.
        """
        return cwd or self.validator.default_cwd

    def validate_command(self, command: str, cwd: str | None = None) -> ValidationResult:
        """Validate a command without running it."""
        return self.validator.validate(command, self.effective_cwd(cwd))

    async def execute_command(
        self, command: str, cwd: str | None = None
    ) -> tuple[ValidationResult, CommandResult | None]:
        """Validate and, if permitted, run a shell command.

        Returns:
            A tuple of (result, output). ``output`` is None when denied.
        """
        workdir = self.effective_cwd(cwd)
        result = self.validator.validate(command, workdir)
        if not result:
            return result, None

        output = await self.executor.run(
            command,
            cwd=workdir,
            timeout=self.settings.command_timeout_seconds,
        )
        logger.info(
            "command_executed",
            command=command[:200],
            cwd=workdir,
            exit_code=output.exit_code,
            timed_out=output.timed_out,
        )
        return result, output

    # ------------------------------------------------------------------
    # Processes
    # ------------------------------------------------------------------

    async def list_processes(self) -> list[ProcessInfo]:
        return await self.pm2.list_processes()

    async def describe_process(self, name: str) -> ProcessInfo:
        return await self.pm2.describe(name)

    async def start_process(self, spec: StartSpec) -> tuple[ValidationResult, bool]:
        """Start a process after confining its cwd and script.

        Returns:
            A tuple of (result, logs_cleared).
        """
        result = self.validator.confine(spec.cwd)
        if not result:
            return result, False

        result = self.validator.confine(spec.script, spec.cwd)
        if not result:
            return result, False

        logs_cleared = await self.pm2.start(spec)
        return result, logs_cleared

    async def stop_process(self, name: str) -> None:
        await self.pm2.stop(name)

    async def restart_process(self, name: str) -> None:
        await self.pm2.restart(name)

    async def delete_process(self, name: str) -> None:
        await self.pm2.delete(name)

    async def process_health(self, name: str | None = None) -> list[ProcessHealth]:
        """Assess one process, or every process when ``name`` is None."""
        if name is not None:
            processes = [await self.pm2.describe(name)]
        else:
            processes = await self.pm2.list_processes()

        return [
            check_health(
                info,
                stale_minutes=self.settings.log_stale_minutes,
                restart_threshold=self.settings.restart_warning_threshold,
            )
            for info in processes
        ]

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    async def process_logs(
        self, name: str, lines: int = 50, log_type: LogType = "all"
    ) -> list[LogTail]:
        """Return the trailing lines of a process's log streams."""
        out_path, err_path = await self.pm2.log_paths(name)

        tails: list[LogTail] = []
        for source, path in _selected_sources(out_path, err_path, log_type):
            readable = bool(check_log_file(path))
            content = await self._in_thread(tail_log, path, lines) if readable else []
            tails.append(LogTail(source=source, path=path, readable=readable, lines=content))
        return tails

    async def grep_process_logs(
        self,
        name: str,
        pattern: str,
        context_lines: int = 0,
        log_type: LogType = "all",
        max_matches: int = 50,
    ) -> tuple[ValidationResult, list[LogSourceMatches]]:
        """Search a process's logs with a caller-supplied pattern.

        The pattern is screened before anything else happens. stdout is
        searched before stderr and both share the ``max_matches`` budget.

        Returns:
            A tuple of (result, per-stream matches). Empty when denied.
        """
        verdict = screen_regex(pattern)
        if not verdict or verdict.pattern is None:
            logger.info("regex_rejected", code=verdict.code, pattern_length=len(pattern))
            return (
                ValidationResult.deny(verdict.code or DenialCode.REGEX_INVALID, verdict.reason),
                [],
            )

        out_path, err_path = await self.pm2.log_paths(name)

        results: list[LogSourceMatches] = []
        remaining = max_matches
        for source, path in _selected_sources(out_path, err_path, log_type):
            readable = bool(check_log_file(path))
            matches: list[MatchResult] = []
            if readable and remaining > 0:
                matches = await self._in_thread(
                    grep_log, path, verdict.pattern, context_lines, remaining
                )
                remaining -= len(matches)
            results.append(
                LogSourceMatches(source=source, path=path, readable=readable, matches=matches)
            )

        logger.debug(
            "process_logs_searched",
            name=name,
            total_matches=max_matches - remaining,
        )
        return ValidationResult.permit(), results

    async def process_metrics(
        self,
        name: str,
        patterns: Mapping[str, str],
        window_lines: int = 1000,
    ) -> tuple[ValidationResult, LogMetrics | None]:
        """Extract metric series from a process's stdout log.

        Patterns are screened before the process is looked up. An
        unreadable log yields an empty series for every metric.

        Returns:
            A tuple of (result, metrics). ``metrics`` is None when denied.
        """
        result, compiled = prepare_metric_patterns(patterns)
        if not result:
            logger.info("metric_patterns_rejected", code=result.code, reason=result.reason)
            return result, None

        out_path, _ = await self.pm2.log_paths(name)
        if not check_log_file(out_path):
            logger.info("log_file_unreadable", name=name, path=out_path)
            return result, LogMetrics(
                path=out_path,
                readable=False,
                series={metric: MetricSeries() for metric in compiled},
            )

        series = await self._in_thread(extract_metrics, out_path, compiled, window_lines)
        return result, LogMetrics(path=out_path, readable=True, series=series)

    # ------------------------------------------------------------------
    # GPU
    # ------------------------------------------------------------------

    async def gpu_status(self) -> GpuStatus:
        return await self.gpu.status()
