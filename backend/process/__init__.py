"""Host process management: the pm2 client, process health and GPU status."""

from process.gpu import GpuProbe, GpuStatus, GpuUnavailableError
from process.health import ProcessHealth, check_health
from process.pm2 import (
    InvalidProcessNameError,
    Pm2Client,
    ProcessInfo,
    ProcessManagerError,
    ProcessNotFoundError,
    StartSpec,
)

__all__ = [
    "GpuProbe",
    "GpuStatus",
    "GpuUnavailableError",
    "InvalidProcessNameError",
    "Pm2Client",
    "ProcessHealth",
    "ProcessInfo",
    "ProcessManagerError",
    "ProcessNotFoundError",
    "StartSpec",
    "check_health",
]
