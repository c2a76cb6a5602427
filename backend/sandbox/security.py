"""Security validation for remote shell command execution.

This module provides the command whitelist and shell-injection checks that
stand between an untrusted caller and the host shell. Both checks return a
``ValidationResult`` value and never raise.
"""

import os
import re

from sandbox.results import DenialCode, ValidationResult

# Read-only commands a caller may run. Compared against the leaf name of the
# first token, so `/usr/bin/ls` and `ls` are judged identically.
ALLOWED_COMMANDS: frozenset[str] = frozenset(
    {
        "ls",
        "pwd",
        "tree",
        "cat",
        "head",
        "tail",
        "df",
        "free",
        "nvidia-smi",
        "ps",
        "du",
        "wc",
        "top",
    }
)

# Interactive top never exits; only the single-iteration batch form may run.
TOP_BATCH_ARGS: list[str] = ["-bn1"]

# Shell metacharacters that would let one command smuggle in another.
# Checked in order against the raw, unsplit command string.
DANGEROUS_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("pipe", re.compile(r"\|")),
    ("output redirection", re.compile(r">")),
    ("input redirection", re.compile(r"<")),
    ("AND chaining", re.compile(r"&&")),
    ("OR chaining", re.compile(r"\|\|")),
    ("command separator", re.compile(r";")),
    ("command substitution", re.compile(r"\$\(")),
    ("backtick substitution", re.compile(r"`")),
    ("variable expansion", re.compile(r"\$\{")),
    ("null byte", re.compile(r"\x00")),
]


def get_allowed_commands() -> list[str]:
    """Return the whitelist in a stable, sorted order."""
    return sorted(ALLOWED_COMMANDS)


def split_command(command: str) -> list[str]:
    """Split a command line on whitespace.

    This is the only tokenization used: the executor runs exactly these
    tokens as argv, so what is validated is what runs.
    """
    return command.strip().split()


def leaf_name(token: str) -> str:
    """Strip any directory prefix from an executable token."""
    return os.path.basename(token)


def check_whitelist(command: str) -> ValidationResult:
    """Check that the command's executable is whitelisted.

    Args:
        command: The full command line.

    Returns:
        ValidationResult. Denials list every permitted command.

    Examples:
        >>> check_whitelist("/usr/bin/ls -la").allowed
        True
        >>> check_whitelist("rm -rf /").code
        <DenialCode.COMMAND_NOT_WHITELISTED: 'command_not_whitelisted'>
    """
    parts = split_command(command)
    if not parts:
        return ValidationResult.deny(DenialCode.EMPTY_COMMAND, "Empty command")

    name = leaf_name(parts[0])
    allowed = ", ".join(get_allowed_commands())

    if name not in ALLOWED_COMMANDS:
        return ValidationResult.deny(
            DenialCode.COMMAND_NOT_WHITELISTED,
            f"Command '{name}' is not in whitelist. Allowed: {allowed}",
        )

    if name == "top" and parts[1:] != TOP_BATCH_ARGS:
        return ValidationResult.deny(
            DenialCode.COMMAND_NOT_WHITELISTED,
            f"Command 'top' is only allowed as 'top {' '.join(TOP_BATCH_ARGS)}'. "
            f"Allowed: {allowed}",
        )

    return ValidationResult.permit()


def check_injection(command: str) -> ValidationResult:
    """Scan the raw command string for shell metacharacters.

    Runs independently of the whitelist: a whitelisted first token does not
    exempt the rest of the line.

    Args:
        command: The raw, unsplit command string.

    Returns:
        ValidationResult citing the first pattern class that matched.
    """
    for label, pattern in DANGEROUS_PATTERNS:
        match = pattern.search(command)
        if match:
            return ValidationResult.deny(
                DenialCode.DANGEROUS_PATTERN,
                f"Dangerous pattern detected: {label} ({match.group()!r})",
            )
    return ValidationResult.permit()


def sanitize_output(output: str, max_length: int = 50000) -> str:
    """Sanitize command output for safe transmission.

    Truncates excessively long output.

    Args:
        output: The raw command output string.
        max_length: Maximum allowed length before truncation.

    Returns:
        The sanitized output string.
    """
    if not output:
        return ""

    # Truncate if too long
    if len(output) > max_length:
        truncated_chars = len(output) - max_length
        output = (
            output[:max_length]
            + f"\n... [truncated, {truncated_chars} chars omitted]"
        )

    return output
