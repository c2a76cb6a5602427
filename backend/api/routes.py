"""HTTP API routes for the Sentinel backend.

This module defines the liveness endpoint and every /api endpoint: shell
command validation and execution, regex screening, pm2 process control, log
search, metric extraction, process health and GPU status.

Policy denials are returned as 403 with a structured ``detail`` body:
``{"code": ..., "reason": ..., "allowed_commands": [...]}``.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from api.auth import verify_token
from logsearch import MetricSeries
from models.schemas import (
    AllowedCommandsResponse,
    CommandRequest,
    DenialResponse,
    ExecResponse,
    GpuInfoResponse,
    GpuProcessResponse,
    GpuStatusResponse,
    GrepRequest,
    GrepResponse,
    GrepSourceResponse,
    HealthReportResponse,
    HealthResponse,
    LogTailResponse,
    LogType,
    MatchResponse,
    MetricSampleResponse,
    MetricSeriesResponse,
    MetricsRequest,
    MetricsResponse,
    ProcessActionResponse,
    ProcessHealthResponse,
    ProcessInfoResponse,
    ProcessLogsResponse,
    RegexScreenRequest,
    RegexScreenResponse,
    StartProcessRequest,
    StartProcessResponse,
    ValidateResponse,
)
from process import (
    GpuUnavailableError,
    InvalidProcessNameError,
    ProcessManagerError,
    ProcessNotFoundError,
    StartSpec,
)
from process.pm2 import validate_process_name
from sandbox import ValidationResult, get_allowed_commands, screen_regex
from sandbox.results import DenialCode

if TYPE_CHECKING:
    from ops_manager import OpsManager

logger = structlog.get_logger(__name__)

router = APIRouter()
api_router = APIRouter(prefix="/api", dependencies=[Depends(verify_token)])

ProcessName = Annotated[str, Path(description="pm2 process name or id")]

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _denied(result: ValidationResult) -> HTTPException:
    """Build the 403 response for a policy denial."""
    body = DenialResponse(
        code=str(result.code or DenialCode.COMMAND_NOT_WHITELISTED),
        reason=result.reason,
        allowed_commands=(
            get_allowed_commands()
            if result.code in (DenialCode.COMMAND_NOT_WHITELISTED, DenialCode.EMPTY_COMMAND)
            else None
        ),
    )
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=body.model_dump(exclude_none=True),
    )


@contextmanager
def _process_errors(name: str) -> Iterator[None]:
    """Map process manager exceptions to HTTP errors."""
    try:
        yield
    except InvalidProcessNameError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    except ProcessNotFoundError as e:
        logger.info("process_not_found", name=name)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Process '{name}' not found",
        ) from e
    except ProcessManagerError as e:
        logger.error("process_manager_failed", name=name, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Process manager error: {e}",
        ) from e


def _series_response(series: MetricSeries) -> MetricSeriesResponse:
    return MetricSeriesResponse(
        latest=series.latest,
        count=len(series.samples),
        samples=[
            MetricSampleResponse(value=s.value, line_number=s.line_number)
            for s in series.samples
        ],
    )


# Ops manager dependency (set during application startup)
_ops_manager: OpsManager | None = None


def set_ops_manager(manager: OpsManager | None) -> None:
    """Set the ops manager instance for the routes.

    This should be called during application startup to inject the ops
    manager dependency, and with None on shutdown.

    Args:
        manager: The OpsManager instance to use for all routes.
    """
    global _ops_manager
    _ops_manager = manager
    if manager is not None:
        logger.info("ops_manager_configured")


def get_ops_manager() -> OpsManager:
    """Get the ops manager instance.

    Returns:
        The configured OpsManager instance.

    Raises:
        RuntimeError: If the ops manager has not been configured.
    """
    if _ops_manager is None:
        logger.error("ops_manager_not_configured")
        raise RuntimeError(
            "OpsManager not configured. Call set_ops_manager() during startup."
        )
    return _ops_manager


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Liveness check. Does not require authentication.",
)
async def health_check() -> HealthResponse:
    ops = get_ops_manager()
    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        allowed_paths=len(ops.validator.allowed_roots),
        pm2_connected=ops.pm2.connected,
    )


# -----------------------------------------------------------------------------
# Shell
# -----------------------------------------------------------------------------


@api_router.get(
    "/shell/commands",
    response_model=AllowedCommandsResponse,
    summary="List permitted commands",
)
async def list_allowed_commands() -> AllowedCommandsResponse:
    ops = get_ops_manager()
    return AllowedCommandsResponse(
        commands=get_allowed_commands(),
        allowed_paths=list(ops.validator.allowed_roots),
    )


@api_router.post(
    "/shell/validate",
    response_model=ValidateResponse,
    summary="Validate a command",
    description="Dry run: report whether a command would be permitted without running it.",
)
async def validate_command(request: CommandRequest) -> ValidateResponse:
    ops = get_ops_manager()
    cwd = ops.effective_cwd(request.cwd)
    result = ops.validate_command(request.command, cwd)
    return ValidateResponse(
        allowed=result.allowed,
        code=str(result.code) if result.code else None,
        reason=result.reason,
        cwd=cwd,
    )


@api_router.post(
    "/shell/exec",
    response_model=ExecResponse,
    summary="Execute a command",
    description="Validate a command against the sandbox policy and run it if permitted.",
    responses={403: {"model": DenialResponse}},
)
async def execute_command(request: CommandRequest) -> ExecResponse:
    """Validate then run a shell command.

    Raises:
        HTTPException: 403 if the policy denies the command.
    """
    ops = get_ops_manager()
    cwd = ops.effective_cwd(request.cwd)
    result, output = await ops.execute_command(request.command, cwd)
    if not result or output is None:
        raise _denied(result)

    return ExecResponse(
        command=request.command,
        cwd=cwd,
        stdout=output.stdout,
        stderr=output.stderr,
        exit_code=output.exit_code,
        timed_out=output.timed_out,
    )


# -----------------------------------------------------------------------------
# Regex
# -----------------------------------------------------------------------------


@api_router.post(
    "/regex/screen",
    response_model=RegexScreenResponse,
    summary="Screen a regular expression",
)
async def screen_pattern(request: RegexScreenRequest) -> RegexScreenResponse:
    verdict = screen_regex(request.pattern)
    return RegexScreenResponse(
        safe=verdict.safe,
        code=str(verdict.code) if verdict.code else None,
        reason=verdict.reason,
    )


# -----------------------------------------------------------------------------
# Processes
# -----------------------------------------------------------------------------


@api_router.get(
    "/processes",
    response_model=list[ProcessInfoResponse],
    summary="List processes",
)
async def list_processes() -> list[ProcessInfoResponse]:
    ops = get_ops_manager()
    with _process_errors("*"):
        processes = await ops.list_processes()
    return [ProcessInfoResponse.model_validate(p, from_attributes=True) for p in processes]


@api_router.post(
    "/processes",
    response_model=StartProcessResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a process",
    description="Start a script under pm2. Its cwd and script must be inside an allowed path.",
    responses={403: {"model": DenialResponse}},
)
async def start_process(request: StartProcessRequest) -> StartProcessResponse:
    ops = get_ops_manager()
    spec = StartSpec(
        name=request.name,
        script=request.script,
        cwd=request.cwd,
        interpreter=request.interpreter,
        args=request.args,
        env=request.env,
        autorestart=request.autorestart,
        clear_logs=request.clear_logs,
    )
    with _process_errors(request.name):
        validate_process_name(request.name)
        result, logs_cleared = await ops.start_process(spec)
    if not result:
        raise _denied(result)

    return StartProcessResponse(name=request.name, logs_cleared=logs_cleared)


@api_router.get(
    "/processes/{name}",
    response_model=ProcessInfoResponse,
    summary="Describe a process",
)
async def describe_process(name: ProcessName) -> ProcessInfoResponse:
    ops = get_ops_manager()
    with _process_errors(name):
        info = await ops.describe_process(name)
    return ProcessInfoResponse.model_validate(info, from_attributes=True)


@api_router.post(
    "/processes/{name}/stop",
    response_model=ProcessActionResponse,
    summary="Stop a process",
)
async def stop_process(name: ProcessName) -> ProcessActionResponse:
    ops = get_ops_manager()
    with _process_errors(name):
        await ops.stop_process(name)
    return ProcessActionResponse(name=name, action="stop")


@api_router.post(
    "/processes/{name}/restart",
    response_model=ProcessActionResponse,
    summary="Restart a process",
)
async def restart_process(name: ProcessName) -> ProcessActionResponse:
    ops = get_ops_manager()
    with _process_errors(name):
        await ops.restart_process(name)
    return ProcessActionResponse(name=name, action="restart")


@api_router.delete(
    "/processes/{name}",
    response_model=ProcessActionResponse,
    summary="Delete a process",
)
async def delete_process(name: ProcessName) -> ProcessActionResponse:
    ops = get_ops_manager()
    with _process_errors(name):
        await ops.delete_process(name)
    return ProcessActionResponse(name=name, action="delete")


@api_router.get(
    "/processes/{name}/logs",
    response_model=ProcessLogsResponse,
    summary="Tail process logs",
)
async def get_process_logs(
    name: ProcessName,
    lines: Annotated[int, Query(description="Trailing lines per stream", ge=1, le=5000)] = 50,
    log_type: Annotated[LogType, Query(alias="type", description="Streams to read")] = LogType.ALL,
) -> ProcessLogsResponse:
    ops = get_ops_manager()
    with _process_errors(name):
        tails = await ops.process_logs(name, lines, log_type.value)
    return ProcessLogsResponse(
        name=name,
        logs=[
            LogTailResponse(source=t.source, path=t.path, readable=t.readable, lines=t.lines)
            for t in tails
        ],
    )


@api_router.post(
    "/processes/{name}/grep",
    response_model=GrepResponse,
    summary="Search process logs",
    description="Search stdout then stderr with a screened regular expression.",
    responses={403: {"model": DenialResponse}},
)
async def grep_process_logs(name: ProcessName, request: GrepRequest) -> GrepResponse:
    ops = get_ops_manager()
    with _process_errors(name):
        result, sources = await ops.grep_process_logs(
            name,
            request.pattern,
            context_lines=request.context_lines,
            log_type=request.type.value,
            max_matches=request.max_matches,
        )
    if not result:
        raise _denied(result)

    results = [
        GrepSourceResponse(
            source=s.source,
            path=s.path,
            readable=s.readable,
            matches=[
                MatchResponse(
                    line_number=m.line_number,
                    line=m.line,
                    before=m.before,
                    after=m.after,
                )
                for m in s.matches
            ],
        )
        for s in sources
    ]
    return GrepResponse(
        name=name,
        pattern=request.pattern,
        total_matches=sum(len(s.matches) for s in results),
        results=results,
    )


@api_router.post(
    "/processes/{name}/metrics",
    response_model=MetricsResponse,
    summary="Extract metrics",
    description="Extract named metric series from the trailing lines of the stdout log.",
    responses={403: {"model": DenialResponse}},
)
async def process_metrics(name: ProcessName, request: MetricsRequest) -> MetricsResponse:
    ops = get_ops_manager()
    with _process_errors(name):
        result, report = await ops.process_metrics(
            name, request.patterns, window_lines=request.lines
        )
    if not result or report is None:
        raise _denied(result)

    return MetricsResponse(
        name=name,
        log_path=report.path,
        readable=report.readable,
        metrics={metric: _series_response(s) for metric, s in report.series.items()},
    )


@api_router.get(
    "/health/processes",
    response_model=HealthReportResponse,
    summary="Process health",
    description="Health of one process (?name=) or of every pm2 process.",
)
async def process_health(
    name: Annotated[str | None, Query(description="Process name; omit for all")] = None,
) -> HealthReportResponse:
    ops = get_ops_manager()
    with _process_errors(name or "*"):
        reports = await ops.process_health(name)

    processes = [ProcessHealthResponse.model_validate(r, from_attributes=True) for r in reports]
    healthy = sum(1 for p in processes if p.healthy)
    return HealthReportResponse(
        total=len(processes),
        healthy=healthy,
        unhealthy=len(processes) - healthy,
        processes=processes,
    )


# -----------------------------------------------------------------------------
# GPU
# -----------------------------------------------------------------------------


@api_router.get(
    "/gpu",
    response_model=GpuStatusResponse,
    summary="GPU status",
)
async def gpu_status() -> GpuStatusResponse:
    """Report GPUs and the compute processes on them.

    Raises:
        HTTPException: 503 if nvidia-smi is unavailable or reports no GPU.
    """
    ops = get_ops_manager()
    try:
        gpu = await ops.gpu_status()
    except GpuUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        ) from e

    return GpuStatusResponse(
        gpus=[GpuInfoResponse.model_validate(g, from_attributes=True) for g in gpu.gpus],
        processes=[
            GpuProcessResponse.model_validate(p, from_attributes=True) for p in gpu.processes
        ],
    )
