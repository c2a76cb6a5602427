"""Local command execution for validated shell commands.

The executor spawns the command directly (no shell), using exactly the
whitespace tokenization the validator judged. The executable is looked up on
PATH by its leaf name, the only part the whitelist checks. It never
validates on its own; callers must run ``CommandValidator.validate`` first.
"""

import asyncio
import contextlib
from dataclasses import dataclass

import structlog

from sandbox.security import leaf_name, sanitize_output, split_command

logger = structlog.get_logger(__name__)


@dataclass
class CommandResult:
    """Result of executing a command."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False


class CommandExecutor:
    """Runs already-validated commands as local subprocesses.

    Attributes:
        max_output_bytes: Per-stream cap on captured output.
    """

    def __init__(self, max_output_bytes: int = 1024 * 1024) -> None:
        self.max_output_bytes = max_output_bytes

    def _decode(self, data: bytes | None) -> str:
        text = (data or b"").decode("utf-8", errors="replace")
        return sanitize_output(text, max_length=self.max_output_bytes)

    async def run(
        self, command: str, cwd: str | None = None, timeout: int = 30
    ) -> CommandResult:
        """Execute a command and capture its output.

        Args:
            command: The validated command line.
            cwd: Working directory for the process.
            timeout: Maximum execution time in seconds.

        Returns:
            CommandResult. A timeout yields exit code 124 and a missing
            executable exit code 127; neither raises.
        """
        argv = split_command(command)
        if not argv:
            return CommandResult(stdout="", stderr="Empty command", exit_code=1)
        # Only the leaf name was whitelisted; resolve it through PATH so a
        # caller cannot point it at a binary of the same name elsewhere.
        argv[0] = leaf_name(argv[0])

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            logger.warning("command_not_found", command=command[:50], error=str(e))
            return CommandResult(
                stdout="",
                stderr=f"Command not found: {argv[0]}",
                exit_code=127,
            )
        except OSError as e:
            logger.error("command_spawn_failed", command=command[:50], error=str(e))
            return CommandResult(
                stdout="",
                stderr=f"Failed to start command: {e}",
                exit_code=126,
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            logger.warning(
                "command_timeout",
                command=command[:50],
                timeout=timeout,
            )
            return CommandResult(
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                exit_code=124,
                timed_out=True,
            )

        result = CommandResult(
            stdout=self._decode(stdout),
            stderr=self._decode(stderr),
            exit_code=process.returncode if process.returncode is not None else -1,
        )
        logger.debug(
            "command_executed",
            command=command[:50],
            exit_code=result.exit_code,
        )
        return result
