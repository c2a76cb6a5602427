"""Models module for Pydantic schemas.

This module exposes all request/response models used by the API.
"""

from models.schemas import (
    AllowedCommandsResponse,
    CommandRequest,
    DenialResponse,
    ExecResponse,
    GpuStatusResponse,
    GrepRequest,
    GrepResponse,
    HealthReportResponse,
    HealthResponse,
    LogType,
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

__all__ = [
    "AllowedCommandsResponse",
    "CommandRequest",
    "DenialResponse",
    "ExecResponse",
    "GpuStatusResponse",
    "GrepRequest",
    "GrepResponse",
    "HealthReportResponse",
    "HealthResponse",
    "LogType",
    "MetricsRequest",
    "MetricsResponse",
    "ProcessActionResponse",
    "ProcessHealthResponse",
    "ProcessInfoResponse",
    "ProcessLogsResponse",
    "RegexScreenRequest",
    "RegexScreenResponse",
    "StartProcessRequest",
    "StartProcessResponse",
    "ValidateResponse",
]
