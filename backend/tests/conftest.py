"""Shared test fixtures for backend tests.

Provides a sandbox root on disk, settings bound to it, and mock pm2 and
nvidia-smi collaborators so tests never touch a real process manager or GPU.
"""

import sys
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from sandbox.security import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from config import Settings  # noqa: E402
from ops_manager import OpsManager  # noqa: E402
from process.gpu import GpuInfo, GpuProbe, GpuProcess, GpuStatus  # noqa: E402
from process.pm2 import Pm2Client, ProcessInfo  # noqa: E402
from sandbox import CommandExecutor, CommandValidator  # noqa: E402

TEST_TOKEN = "test-token-0123456789"

# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------


@pytest.fixture()
def sandbox_root(tmp_path: Path) -> Path:
    """An allowed directory with a couple of files and a log directory."""
    root = (tmp_path / "data").resolve()
    (root / "logs").mkdir(parents=True)
    (root / "notes.txt").write_text("alpha\nbeta\ngamma\n")
    (root / "train.py").write_text("print('training')\n")
    return root


@pytest.fixture()
def outside_dir(tmp_path: Path) -> Path:
    """A directory next to the sandbox root, not inside it."""
    other = (tmp_path / "data2").resolve()
    other.mkdir()
    (other / "secret.txt").write_text("top secret\n")
    return other


@pytest.fixture()
def settings(sandbox_root: Path) -> Settings:
    """Settings confined to ``sandbox_root``."""
    return Settings(
        token=TEST_TOKEN,
        allowed_paths=[str(sandbox_root)],
        command_timeout_seconds=5,
        log_format="text",
    )


# ---------------------------------------------------------------------------
# Mock pm2 / GPU
# ---------------------------------------------------------------------------


def make_process_info(
    name: str = "trainer",
    pm_id: int = 0,
    status: str = "online",
    restarts: int = 0,
    out_log_path: str = "",
    err_log_path: str = "",
    **overrides: Any,
) -> ProcessInfo:
    """Create a ProcessInfo with sensible defaults."""
    return ProcessInfo(
        name=name,
        pm_id=pm_id,
        status=status,
        pid=overrides.pop("pid", 4242),
        cpu=overrides.pop("cpu", 12.5),
        memory=overrides.pop("memory", 256 * 1024 * 1024),
        uptime_ms=overrides.pop("uptime_ms", 60_000),
        restarts=restarts,
        out_log_path=out_log_path,
        err_log_path=err_log_path,
        cwd=overrides.pop("cwd", ""),
    )


@pytest.fixture()
def log_files(sandbox_root: Path) -> tuple[Path, Path]:
    """stdout and stderr logs for the ``trainer`` process."""
    out = sandbox_root / "logs" / "trainer-out.log"
    err = sandbox_root / "logs" / "trainer-error.log"
    out.write_text(
        "epoch 1 start\n"
        "loss: 0.90\n"
        "epoch 1 done\n"
        "epoch 2 start\n"
        "loss: 0.42\n"
        "epoch 2 done\n"
    )
    err.write_text("warning: low disk\nERROR: CUDA out of memory\n")
    return out, err


@pytest.fixture()
def mock_pm2(log_files: tuple[Path, Path]) -> MagicMock:
    """A Pm2Client mock describing one online ``trainer`` process."""
    out, err = log_files
    info = make_process_info(out_log_path=str(out), err_log_path=str(err))

    pm2 = MagicMock(spec=Pm2Client)
    pm2.connected = True
    pm2.list_processes = AsyncMock(return_value=[info])
    pm2.describe = AsyncMock(return_value=info)
    pm2.log_paths = AsyncMock(return_value=(str(out), str(err)))
    pm2.start = AsyncMock(return_value=False)
    pm2.stop = AsyncMock()
    pm2.restart = AsyncMock()
    pm2.delete = AsyncMock()
    pm2.flush = AsyncMock()
    pm2.close = AsyncMock()
    return pm2


@pytest.fixture()
def mock_gpu() -> MagicMock:
    gpu = MagicMock(spec=GpuProbe)
    gpu.status = AsyncMock(return_value=GpuStatus(
        gpus=[GpuInfo(index=0, name="NVIDIA A100", memory_used=1024,
                      memory_total=40960, utilization=37)],
        processes=[GpuProcess(gpu_index=0, pid=4242, process_name="python",
                              memory_used=1000)],
    ))
    return gpu


@pytest.fixture()
def ops_manager(settings: Settings, mock_pm2: MagicMock, mock_gpu: MagicMock) -> OpsManager:
    """An OpsManager with the real validator and executor, mocked pm2 and GPU."""
    return OpsManager(
        settings=settings,
        validator=CommandValidator(
            allowed_roots=settings.allowed_roots,
            follow_symlinks=settings.resolve_symlinks,
        ),
        executor=CommandExecutor(max_output_bytes=settings.max_output_bytes),
        pm2=mock_pm2,
        gpu=mock_gpu,
    )
