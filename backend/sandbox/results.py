"""Result values shared by the sandbox policy checks.

Every policy check returns a value instead of raising, so callers can
inspect, log and forward a denial without exception handling.
"""

from dataclasses import dataclass
from enum import StrEnum


class DenialCode(StrEnum):
    """Why a request was refused."""

    EMPTY_COMMAND = "empty_command"
    COMMAND_NOT_WHITELISTED = "command_not_whitelisted"
    DANGEROUS_PATTERN = "dangerous_pattern"
    PATH_OUTSIDE_SANDBOX = "path_outside_sandbox"
    REGEX_TOO_LONG = "regex_too_long"
    REGEX_UNSAFE = "regex_unsafe"
    REGEX_INVALID = "regex_invalid"
    LOG_FILE_UNREADABLE = "log_file_unreadable"
    TOO_MANY_METRIC_PATTERNS = "too_many_metric_patterns"
    NO_METRIC_PATTERNS = "no_metric_patterns"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a policy check: permitted, or denied with a reason.

    Attributes:
        allowed: True if the request may proceed.
        code: Denial category, None when allowed.
        reason: Human-readable explanation, empty when allowed.
    """

    allowed: bool
    code: DenialCode | None = None
    reason: str = ""

    @classmethod
    def permit(cls) -> "ValidationResult":
        return _PERMITTED

    @classmethod
    def deny(cls, code: DenialCode, reason: str) -> "ValidationResult":
        return cls(allowed=False, code=code, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed


_PERMITTED = ValidationResult(allowed=True)
