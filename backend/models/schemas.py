"""Pydantic schemas for API request/response models.

This module defines all the data models used by the HTTP API.
All models use Pydantic v2 with strict type validation.
"""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class LogType(StrEnum):
    """Which log streams of a process to read."""

    OUT = "out"
    ERR = "err"
    ALL = "all"


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class DenialResponse(BaseModel):
    """Body of a 403 response for a request refused by policy."""

    code: str = Field(
        description="Machine-readable denial category",
        examples=["path_outside_sandbox"],
    )
    reason: str = Field(
        description="Human-readable explanation",
    )
    allowed_commands: list[str] | None = Field(
        default=None,
        description="Permitted commands, included for whitelist denials",
    )


# -----------------------------------------------------------------------------
# Shell
# -----------------------------------------------------------------------------


class CommandRequest(BaseModel):
    """Request body for validating or executing a shell command."""

    command: str = Field(
        max_length=4096,
        description="Command line, split on whitespace and run without a shell",
        examples=["ls -la /srv/data", "top -bn1"],
    )
    cwd: str | None = Field(
        default=None,
        description="Working directory; defaults to the first allowed path",
        examples=["/srv/data"],
    )


class ValidateResponse(BaseModel):
    """Response of a dry-run command validation."""

    allowed: bool = Field(description="Whether the command would be permitted")
    code: str | None = Field(default=None, description="Denial category")
    reason: str = Field(default="", description="Denial explanation")
    cwd: str = Field(description="Working directory the command was judged against")


class ExecResponse(BaseModel):
    """Output of an executed command."""

    command: str
    cwd: str
    stdout: str
    stderr: str
    exit_code: int = Field(description="Process exit code (124 on timeout)")
    timed_out: bool = False


class AllowedCommandsResponse(BaseModel):
    commands: list[str]
    allowed_paths: list[str]


# -----------------------------------------------------------------------------
# Regex
# -----------------------------------------------------------------------------


class RegexScreenRequest(BaseModel):
    pattern: str = Field(
        max_length=10000,
        description="Regular expression to screen",
        examples=[r"error: (\d+)"],
    )


class RegexScreenResponse(BaseModel):
    safe: bool
    code: str | None = None
    reason: str = ""


# -----------------------------------------------------------------------------
# Processes
# -----------------------------------------------------------------------------


class ProcessInfoResponse(BaseModel):
    """Snapshot of a pm2-managed process."""

    name: str
    pm_id: int
    status: str = Field(examples=["online", "stopped", "errored"])
    pid: int = 0
    cpu: float = Field(default=0.0, description="CPU usage in percent")
    memory: int = Field(default=0, description="Resident memory in bytes")
    uptime_ms: int | None = Field(
        default=None,
        description="Milliseconds since start, null unless online",
    )
    restarts: int = 0
    out_log_path: str = ""
    err_log_path: str = ""
    cwd: str = ""


class StartProcessRequest(BaseModel):
    """Request body for starting a new pm2 process."""

    name: str = Field(
        min_length=1,
        max_length=128,
        description="Process name",
        examples=["train-resnet"],
    )
    script: str = Field(
        min_length=1,
        description="Script path, absolute or relative to cwd",
        examples=["train.py"],
    )
    cwd: str = Field(
        min_length=1,
        description="Working directory, must be inside an allowed path",
        examples=["/srv/data/experiments"],
    )
    interpreter: str | None = Field(
        default=None,
        description="Interpreter binary, e.g. a virtualenv python",
        examples=["/srv/data/.venv/bin/python"],
    )
    args: list[str] = Field(default_factory=list, description="Script arguments")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment")
    autorestart: bool = Field(default=False, description="Restart automatically on exit")
    clear_logs: bool = Field(
        default=False,
        description="Flush existing logs for this name before starting",
    )


class StartProcessResponse(BaseModel):
    name: str
    started: bool = True
    logs_cleared: bool = False


class ProcessActionResponse(BaseModel):
    name: str
    action: Literal["stop", "restart", "delete"]
    success: bool = True


class LogTailResponse(BaseModel):
    source: Literal["stdout", "stderr"]
    path: str
    readable: bool
    lines: list[str]


class ProcessLogsResponse(BaseModel):
    name: str
    logs: list[LogTailResponse]


class GrepRequest(BaseModel):
    """Request body for searching a process's logs."""

    pattern: str = Field(
        min_length=1,
        max_length=10000,
        description="Regular expression, screened before use",
        examples=[r"CUDA out of memory", r"epoch (\d+)"],
    )
    context_lines: int = Field(
        default=0,
        ge=0,
        le=20,
        description="Lines of context before and after each match",
    )
    max_matches: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum matches across all searched streams",
    )
    type: LogType = Field(default=LogType.ALL, description="Streams to search")


class MatchResponse(BaseModel):
    line_number: int = Field(description="1-based line number")
    line: str
    before: list[str] = Field(default_factory=list)
    after: list[str] = Field(default_factory=list)


class GrepSourceResponse(BaseModel):
    source: Literal["stdout", "stderr"]
    path: str
    readable: bool
    matches: list[MatchResponse]


class GrepResponse(BaseModel):
    name: str
    pattern: str
    total_matches: int
    results: list[GrepSourceResponse]


class MetricsRequest(BaseModel):
    """Request body for extracting metrics from a process's stdout log."""

    patterns: dict[str, str] = Field(
        description="Metric name to pattern with exactly one capture group",
        examples=[{"loss": r"loss: ([\d.]+)", "epoch": r"epoch (\d+)"}],
    )
    lines: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Number of trailing log lines to scan",
    )


class MetricSampleResponse(BaseModel):
    value: str
    line_number: int


class MetricSeriesResponse(BaseModel):
    latest: str | None = None
    count: int = 0
    samples: list[MetricSampleResponse] = Field(default_factory=list)


class MetricsResponse(BaseModel):
    name: str
    log_path: str
    readable: bool
    metrics: dict[str, MetricSeriesResponse]


class ProcessHealthResponse(BaseModel):
    """Health verdict for one process."""

    name: str
    pm_id: int
    status: str
    healthy: bool
    issues: list[str] = Field(default_factory=list)
    last_log_at: float | None = Field(
        default=None,
        description="Unix timestamp of the last stdout log write",
    )
    cpu: float = 0.0
    memory: int = 0
    restarts: int = 0


class HealthReportResponse(BaseModel):
    total: int
    healthy: int
    unhealthy: int
    processes: list[ProcessHealthResponse]


# -----------------------------------------------------------------------------
# GPU
# -----------------------------------------------------------------------------


class GpuInfoResponse(BaseModel):
    index: int
    name: str
    memory_used: int = Field(description="MiB")
    memory_total: int = Field(description="MiB")
    utilization: int = Field(description="Percent")


class GpuProcessResponse(BaseModel):
    gpu_index: int = Field(description="GPU index, -1 if the bus id was not mapped")
    pid: int
    process_name: str
    memory_used: int = Field(description="MiB")


class GpuStatusResponse(BaseModel):
    gpus: list[GpuInfoResponse]
    processes: list[GpuProcessResponse]


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Liveness response."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    allowed_paths: int = Field(
        default=0,
        description="Number of configured allowed paths",
    )
    pm2_connected: bool = Field(
        default=False,
        description="Whether the pm2 daemon has been reached",
    )
