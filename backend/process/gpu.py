"""GPU status via nvidia-smi CSV queries."""

import asyncio
from dataclasses import dataclass, field

import structlog

from process.cli import CliError, run_cli

logger = structlog.get_logger(__name__)

_GPU_QUERY = [
    "--query-gpu=index,name,memory.used,memory.total,utilization.gpu",
    "--format=csv,noheader,nounits",
]
_PROCESS_QUERY = [
    "--query-compute-apps=gpu_bus_id,pid,process_name,used_memory",
    "--format=csv,noheader,nounits",
]
_BUS_QUERY = ["--query-gpu=index,gpu_bus_id", "--format=csv,noheader"]


class GpuUnavailableError(Exception):
    """Raised when nvidia-smi is missing or reports no GPU."""


@dataclass
class GpuInfo:
    """One GPU. Memory values are in MiB, utilization in percent."""

    index: int
    name: str
    memory_used: int
    memory_total: int
    utilization: int


@dataclass
class GpuProcess:
    """A compute process running on a GPU (``gpu_index`` is -1 if unmapped)."""

    gpu_index: int
    pid: int
    process_name: str
    memory_used: int


@dataclass
class GpuStatus:
    gpus: list[GpuInfo] = field(default_factory=list)
    processes: list[GpuProcess] = field(default_factory=list)


def _rows(output: str) -> list[list[str]]:
    return [
        [part.strip() for part in line.split(",")]
        for line in output.strip().splitlines()
        if line.strip()
    ]


def _to_int(value: str) -> int:
    try:
        return int(float(value))
    except ValueError:
        # nvidia-smi reports "[N/A]" for unsupported fields
        return 0


def parse_gpus(output: str) -> list[GpuInfo]:
    gpus = []
    for parts in _rows(output):
        if len(parts) < 5:
            continue
        gpus.append(
            GpuInfo(
                index=_to_int(parts[0]),
                name=parts[1],
                memory_used=_to_int(parts[2]),
                memory_total=_to_int(parts[3]),
                utilization=_to_int(parts[4]),
            )
        )
    return gpus


def parse_bus_map(output: str) -> dict[str, int]:
    return {parts[1]: _to_int(parts[0]) for parts in _rows(output) if len(parts) >= 2}


def parse_processes(output: str, bus_map: dict[str, int]) -> list[GpuProcess]:
    processes = []
    for parts in _rows(output):
        if len(parts) < 4:
            continue
        processes.append(
            GpuProcess(
                gpu_index=bus_map.get(parts[0], -1),
                pid=_to_int(parts[1]),
                process_name=parts[2],
                memory_used=_to_int(parts[3]),
            )
        )
    return processes


class GpuProbe:
    """Queries GPU state with nvidia-smi.

    Attributes:
        binary: nvidia-smi executable name or path.
        timeout: Seconds allowed per query.
    """

    def __init__(self, binary: str = "nvidia-smi", timeout: float = 10.0) -> None:
        self.binary = binary
        self.timeout = timeout

    async def _query(self, args: list[str]) -> str | None:
        try:
            output = await run_cli([self.binary, *args], timeout=self.timeout)
        except CliError as e:
            logger.warning("nvidia_smi_failed", error=str(e))
            return None
        if output.returncode != 0:
            logger.warning(
                "nvidia_smi_failed",
                returncode=output.returncode,
                error=output.stderr.strip()[:500],
            )
            return None
        return output.stdout

    async def status(self) -> GpuStatus:
        """Return GPUs and the compute processes running on them.

        The three queries run concurrently; process and bus-id queries are
        optional, the GPU query is not.

        Raises:
            GpuUnavailableError: If nvidia-smi is unavailable or lists no GPU.
        """
        gpu_out, proc_out, bus_out = await asyncio.gather(
            self._query(_GPU_QUERY),
            self._query(_PROCESS_QUERY),
            self._query(_BUS_QUERY),
        )

        gpus = parse_gpus(gpu_out or "")
        if not gpus:
            raise GpuUnavailableError(
                "No NVIDIA GPU detected or nvidia-smi is unavailable"
            )

        bus_map = parse_bus_map(bus_out or "")
        return GpuStatus(gpus=gpus, processes=parse_processes(proc_out or "", bus_map))
