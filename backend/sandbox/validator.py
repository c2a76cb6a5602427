"""Full shell command validation.

Composes the whitelist, injection and path confinement checks into the
single decision made before any command is allowed to run.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from sandbox.paths import confine, normalize_roots
from sandbox.results import ValidationResult
from sandbox.security import check_injection, check_whitelist, split_command

logger = structlog.get_logger(__name__)


def is_path_like(token: str) -> bool:
    """True if an argument should be treated as a filesystem path."""
    if not token or token.startswith("-"):
        return False
    return token.startswith("/") or token.startswith(".") or "/" in token


def extract_path_args(args: Sequence[str]) -> list[str]:
    """Extract arguments that look like filesystem paths.

    Options (tokens starting with ``-``) are skipped, except that an attached
    value is itself tested: the part after ``=`` in ``--option=value``, and
    the part after a short flag such as ``-X/path`` when it starts with ``/``
    or ``.``. Options like ``du --files0-from=FILE`` read the file they name.

    Args:
        args: Command arguments, excluding the executable.

    Returns:
        Path-like arguments in their original order.
    """
    paths: list[str] = []
    for arg in args:
        if arg.startswith("-"):
            _, sep, value = arg.partition("=")
            if sep and is_path_like(value):
                paths.append(value)
            elif not arg.startswith("--") and arg[2:].startswith(("/", ".")):
                paths.append(arg[2:])
            continue
        if is_path_like(arg):
            paths.append(arg)
    return paths


def validate_shell_command(
    command: str,
    allowed_roots: Sequence[str],
    cwd: str | None = None,
    *,
    follow_symlinks: bool = False,
) -> ValidationResult:
    """Validate a shell command end to end.

    Checks run in order and the first denial is returned verbatim:

    1. Whitelist check on the full command line.
    2. Injection check on the full command line.
    3. Working directory confinement, if ``cwd`` is given.
    4. Confinement of each path-like argument, resolved relative to ``cwd``.

    Args:
        command: Full command string.
        allowed_roots: Directories paths must stay within.
        cwd: Optional working directory.
        follow_symlinks: Resolve symlinks before confinement checks.

    Returns:
        ValidationResult.

    Examples:
        >>> validate_shell_command("ls -la /data/logs", ["/data"]).allowed
        True
        >>> validate_shell_command("cat /data/secrets/../../etc/passwd", ["/data"]).code
        <DenialCode.PATH_OUTSIDE_SANDBOX: 'path_outside_sandbox'>
    """
    result = check_whitelist(command)
    if not result:
        return result

    result = check_injection(command)
    if not result:
        return result

    if cwd:
        result = confine(cwd, allowed_roots, follow_symlinks=follow_symlinks)
        if not result:
            return result

    for path in extract_path_args(split_command(command)[1:]):
        result = confine(path, allowed_roots, cwd, follow_symlinks=follow_symlinks)
        if not result:
            return result

    return ValidationResult.permit()


@dataclass(frozen=True)
class CommandValidator:
    """Stateless command validator bound to a fixed set of allowed roots.

    Built once at startup and shared by all request handlers; it holds no
    mutable state, so no locking is needed.

    Attributes:
        allowed_roots: Canonical sandbox roots, never empty.
        follow_symlinks: Resolve symlinks before confinement checks.
    """

    allowed_roots: tuple[str, ...]
    follow_symlinks: bool = False

    def __post_init__(self) -> None:
        if not self.allowed_roots:
            raise ValueError("CommandValidator requires at least one allowed path")
        object.__setattr__(
            self,
            "allowed_roots",
            normalize_roots(self.allowed_roots, follow_symlinks=self.follow_symlinks),
        )

    @property
    def default_cwd(self) -> str:
        """Working directory used when a caller does not supply one."""
        return self.allowed_roots[0]

    def validate(self, command: str, cwd: str | None = None) -> ValidationResult:
        """Validate ``command`` against this validator's roots."""
        result = validate_shell_command(
            command,
            self.allowed_roots,
            cwd,
            follow_symlinks=self.follow_symlinks,
        )
        if not result:
            logger.info(
                "command_denied",
                command=command[:200],
                cwd=cwd,
                code=result.code,
                reason=result.reason,
            )
        return result

    def confine(self, path: str, base_path: str | None = None) -> ValidationResult:
        """Confine a single path to this validator's roots."""
        return confine(
            path,
            self.allowed_roots,
            base_path,
            follow_symlinks=self.follow_symlinks,
        )
