"""PM2 process manager client.

This module wraps the ``pm2`` CLI behind an explicit client handle. The
handle is created and owned by the application lifespan: it connects lazily
on first use (verifying the daemon with ``pm2 ping``) and is closed on
shutdown. There is no module-level connection state.

Process names are passed to pm2 as argv entries, never through a shell, and
are additionally restricted to a conservative character set so they cannot
be mistaken for CLI options.
"""

import asyncio
import json
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from process.cli import CliError, run_cli

logger = structlog.get_logger(__name__)

_PROCESS_NAME_RE = re.compile(r"^[A-Za-z0-9_.@][A-Za-z0-9_.@-]{0,127}$")


class ProcessManagerError(Exception):
    """Raised when a pm2 operation fails."""


class ProcessNotFoundError(ProcessManagerError):
    """Raised when the named process is not managed by pm2."""


class InvalidProcessNameError(ValueError):
    """Raised when a process name contains unsupported characters."""


def validate_process_name(name: str) -> str:
    """Return ``name`` unchanged if it is an acceptable pm2 process name.

    Raises:
        InvalidProcessNameError: If the name is empty, starts with '-', or
            contains characters outside ``[A-Za-z0-9_.@-]``.
    """
    if not _PROCESS_NAME_RE.match(name):
        raise InvalidProcessNameError(
            f"Invalid process name {name!r}: use letters, digits, '_', '.', '@' "
            "or '-', not starting with '-'"
        )
    return name


@dataclass
class ProcessInfo:
    """Snapshot of a pm2-managed process."""

    name: str
    pm_id: int
    status: str
    pid: int = 0
    cpu: float = 0.0
    memory: int = 0
    uptime_ms: int | None = None
    restarts: int = 0
    out_log_path: str = ""
    err_log_path: str = ""
    cwd: str = ""

    @classmethod
    def from_pm2(cls, raw: dict[str, Any], now_ms: int | None = None) -> "ProcessInfo":
        """Build from one entry of ``pm2 jlist`` output."""
        env = raw.get("pm2_env") or {}
        monit = raw.get("monit") or {}
        status = str(env.get("status") or "unknown")
        started_ms = env.get("pm_uptime")
        uptime_ms: int | None = None
        if status == "online" and isinstance(started_ms, (int, float)) and started_ms > 0:
            now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
            uptime_ms = max(0, now_ms - int(started_ms))

        pm_id = raw.get("pm_id")
        return cls(
            name=str(raw.get("name") or "unknown"),
            pm_id=pm_id if isinstance(pm_id, int) else -1,
            status=status,
            pid=int(raw.get("pid") or 0),
            cpu=float(monit.get("cpu") or 0.0),
            memory=int(monit.get("memory") or 0),
            uptime_ms=uptime_ms,
            restarts=int(env.get("restart_time") or 0),
            out_log_path=str(env.get("pm_out_log_path") or ""),
            err_log_path=str(env.get("pm_err_log_path") or ""),
            cwd=str(env.get("pm_cwd") or ""),
        )


@dataclass
class StartSpec:
    """Parameters for starting a new pm2 process.

    Attributes:
        name: Process name.
        script: Script path, resolved relative to ``cwd``.
        cwd: Working directory.
        interpreter: Interpreter path (e.g. a Python virtualenv binary).
        args: Arguments passed to the script.
        env: Extra environment variables.
        autorestart: Restart automatically on exit.
        clear_logs: Flush existing logs for this name before starting.
    """

    name: str
    script: str
    cwd: str
    interpreter: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    autorestart: bool = False
    clear_logs: bool = False


def parse_jlist(output: str) -> list[dict[str, Any]]:
    """Parse ``pm2 jlist`` output, tolerating banner text before the JSON.

    Raises:
        ProcessManagerError: If no JSON array can be decoded.
    """
    start = output.find("[")
    if start < 0:
        raise ProcessManagerError("pm2 jlist returned no process list")
    try:
        data = json.loads(output[start:])
    except json.JSONDecodeError as e:
        raise ProcessManagerError(f"Could not parse pm2 jlist output: {e}") from e
    if not isinstance(data, list):
        raise ProcessManagerError("pm2 jlist returned unexpected data")
    return [item for item in data if isinstance(item, dict)]


class Pm2Client:
    """Client handle for the pm2 daemon.

    Attributes:
        binary: pm2 executable name or path.
        timeout: Seconds allowed per pm2 invocation.
    """

    def __init__(self, binary: str = "pm2", timeout: float = 10.0) -> None:
        self.binary = binary
        self.timeout = timeout
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._connected

    async def _run(self, *args: str, env: dict[str, str] | None = None) -> str:
        """Run a pm2 subcommand and return its stdout.

        Raises:
            ProcessNotFoundError: If pm2 reports the process does not exist.
            ProcessManagerError: On any other failure.
        """
        try:
            output = await run_cli([self.binary, *args], timeout=self.timeout, env=env)
        except CliError as e:
            logger.error("pm2_command_failed", args=list(args[:2]), error=str(e))
            raise ProcessManagerError(str(e)) from e

        if output.returncode != 0:
            message = (output.stderr.strip() or output.stdout.strip()
                       or f"pm2 {args[0]} exited with code {output.returncode}")
            logger.warning(
                "pm2_command_failed",
                args=list(args[:2]),
                returncode=output.returncode,
                error=message[:500],
            )
            if "not found" in message.lower():
                raise ProcessNotFoundError(message)
            raise ProcessManagerError(message)

        return output.stdout

    async def connect(self) -> None:
        """Verify the pm2 daemon is reachable. Idempotent."""
        async with self._lock:
            if self._connected:
                return
            await self._run("ping")
            self._connected = True
            logger.info("pm2_connected", binary=self.binary)

    async def close(self) -> None:
        """Release the handle; the next call reconnects."""
        async with self._lock:
            if self._connected:
                self._connected = False
                logger.info("pm2_disconnected")

    async def _ensure_connected(self) -> None:
        if not self._connected:
            await self.connect()

    async def list_processes(self) -> list[ProcessInfo]:
        """List every pm2-managed process."""
        await self._ensure_connected()
        output = await self._run("jlist")
        now_ms = int(time.time() * 1000)
        return [ProcessInfo.from_pm2(raw, now_ms) for raw in parse_jlist(output)]

    async def describe(self, name: str) -> ProcessInfo:
        """Return the process with the given name or numeric id.

        Raises:
            InvalidProcessNameError: If the name is not acceptable.
            ProcessNotFoundError: If no such process exists.
        """
        validate_process_name(name)
        for info in await self.list_processes():
            if info.name == name or str(info.pm_id) == name:
                return info
        raise ProcessNotFoundError(f"Process '{name}' not found")

    async def log_paths(self, name: str) -> tuple[str, str]:
        """Return the (stdout, stderr) log file paths of a process."""
        info = await self.describe(name)
        return info.out_log_path, info.err_log_path

    async def start(self, spec: StartSpec) -> bool:
        """Start a new process.

        Returns:
            True if existing logs were flushed first.
        """
        validate_process_name(spec.name)
        await self._ensure_connected()

        logs_cleared = False
        if spec.clear_logs:
            try:
                await self._run("flush", spec.name)
                logs_cleared = True
            except ProcessManagerError:
                # Flushing fails when the process has never run; that is fine.
                logs_cleared = False

        args = ["start", spec.script, "--name", spec.name, "--cwd", spec.cwd]
        if spec.interpreter:
            args += ["--interpreter", spec.interpreter]
        if not spec.autorestart:
            args.append("--no-autorestart")
        if spec.args:
            args += ["--", *spec.args]

        env = {**os.environ, **spec.env} if spec.env else None
        await self._run(*args, env=env)

        logger.info(
            "pm2_process_started",
            name=spec.name,
            script=spec.script,
            cwd=spec.cwd,
            autorestart=spec.autorestart,
            logs_cleared=logs_cleared,
        )
        return logs_cleared

    async def _control(self, action: str, name: str) -> None:
        validate_process_name(name)
        await self._ensure_connected()
        await self._run(action, name)
        logger.info("pm2_process_" + action, name=name)

    async def stop(self, name: str) -> None:
        await self._control("stop", name)

    async def restart(self, name: str) -> None:
        await self._control("restart", name)

    async def delete(self, name: str) -> None:
        await self._control("delete", name)

    async def flush(self, name: str) -> None:
        await self._control("flush", name)
