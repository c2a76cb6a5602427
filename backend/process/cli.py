"""Async helper for invoking trusted host CLIs (pm2, nvidia-smi)."""

import asyncio
import contextlib
from collections.abc import Mapping
from dataclasses import dataclass


class CliError(Exception):
    """Raised when a CLI cannot be started or does not finish in time."""


@dataclass
class CliOutput:
    """Captured result of a CLI invocation."""

    returncode: int
    stdout: str
    stderr: str


async def run_cli(
    argv: list[str],
    *,
    timeout: float,
    env: Mapping[str, str] | None = None,
) -> CliOutput:
    """Run a CLI without a shell and capture its output.

    Args:
        argv: Executable and arguments.
        timeout: Seconds before the process is killed.
        env: Full environment for the child, or None to inherit.

    Returns:
        CliOutput; a non-zero exit code is returned, not raised.

    Raises:
        CliError: If the executable is missing or the call times out.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
        )
    except OSError as e:
        raise CliError(f"Failed to run {argv[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError as e:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        raise CliError(f"{argv[0]} timed out after {timeout} seconds") from e

    return CliOutput(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
