"""Sandbox policy and execution for remote shell commands.

This module provides the command whitelist, shell-injection filter, path
confinement, regex screening and the CommandValidator that composes them,
plus the CommandExecutor that runs commands once they are permitted.
"""

from sandbox.executor import CommandExecutor, CommandResult
from sandbox.paths import confine
from sandbox.regex_guard import RegexVerdict, screen_regex
from sandbox.results import DenialCode, ValidationResult
from sandbox.security import check_injection, check_whitelist, get_allowed_commands
from sandbox.validator import CommandValidator, validate_shell_command

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandValidator",
    "DenialCode",
    "RegexVerdict",
    "ValidationResult",
    "check_injection",
    "check_whitelist",
    "confine",
    "get_allowed_commands",
    "screen_regex",
    "validate_shell_command",
]
