"""Streaming search and metric extraction over process log files.

All functions read files line by line and keep only bounded windows in
memory, so arbitrarily large logs cost at most ``context_lines`` (grep) or
``window_lines`` (metrics, tail) lines of memory. Caller patterns are only
ever applied to lines truncated to ``MAX_LINE_LENGTH``.

A missing or unreadable log is a normal state (a freshly started process may
not have written anything yet) and yields empty results rather than errors.
"""

import os
import re
from collections import deque
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

import structlog

from sandbox.regex_guard import MAX_LINE_LENGTH, screen_regex, truncate_line
from sandbox.results import DenialCode, ValidationResult

logger = structlog.get_logger(__name__)

MAX_METRIC_PATTERNS = 10


@dataclass
class MatchResult:
    """A matched log line with surrounding context.

    Attributes:
        line_number: 1-based line number in the file.
        line: The matched line.
        before: Up to ``context_lines`` lines immediately preceding the match.
        after: Up to ``context_lines`` lines immediately following the match.
    """

    line_number: int
    line: str
    before: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)


@dataclass
class MetricSample:
    """One extracted metric value and where it was found."""

    value: str
    line_number: int


@dataclass
class MetricSeries:
    """All samples of one metric within the scanned window."""

    samples: list[MetricSample] = field(default_factory=list)

    @property
    def latest(self) -> str | None:
        return self.samples[-1].value if self.samples else None


def check_log_file(path: str) -> ValidationResult:
    """Check that ``path`` names a readable regular file."""
    if not path or not os.path.isfile(path) or not os.access(path, os.R_OK):
        return ValidationResult.deny(
            DenialCode.LOG_FILE_UNREADABLE,
            f"Log file is missing or unreadable: {path or '(none)'}",
        )
    return ValidationResult.permit()


def _iter_lines(path: str) -> Iterator[str]:
    """Yield lines without their line terminators.

    Each read is capped just past ``MAX_LINE_LENGTH``; the rest of an
    over-long line is skipped in bounded chunks, so a log that never writes
    a newline is never held in memory whole.
    """
    with open(path, encoding="utf-8", errors="replace") as f:
        while raw := f.readline(MAX_LINE_LENGTH + 1):
            if len(raw) > MAX_LINE_LENGTH and not raw.endswith("\n"):
                while rest := f.readline(MAX_LINE_LENGTH):
                    if rest.endswith("\n"):
                        break
            yield truncate_line(raw.rstrip("\r\n"))


def grep_log(
    path: str,
    pattern: re.Pattern[str],
    context_lines: int = 0,
    max_matches: int = 50,
) -> list[MatchResult]:
    """Search a log file for lines matching a screened pattern.

    Args:
        path: Log file path.
        pattern: A compiled pattern that passed ``screen_regex``.
        context_lines: Lines of context to capture before and after each match.
        max_matches: Stop once this many matches are collected.

    Returns:
        Matches in file order; empty if the file cannot be read.
    """
    if max_matches <= 0:
        return []
    context_lines = max(context_lines, 0)

    results: list[MatchResult] = []
    before: deque[str] = deque(maxlen=context_lines or None)
    pending: list[MatchResult] = []

    try:
        for line_number, line in enumerate(_iter_lines(path), start=1):
            # Fill after-context of earlier matches
            if pending:
                for match in pending:
                    match.after.append(line)
                pending = [m for m in pending if len(m.after) < context_lines]

            if len(results) < max_matches and pattern.search(line):
                match = MatchResult(
                    line_number=line_number,
                    line=line,
                    before=list(before) if context_lines else [],
                )
                results.append(match)
                if context_lines:
                    pending.append(match)
            elif len(results) >= max_matches and not pending:
                break

            if context_lines:
                before.append(line)
    except OSError as e:
        logger.warning("log_file_unreadable", path=path, error=str(e))
        return []

    return results


def tail_log(path: str, lines: int = 50) -> list[str]:
    """Return the last ``lines`` lines of a log file.

    Returns:
        Trailing lines in file order; empty if the file cannot be read.
    """
    if lines <= 0:
        return []
    try:
        return list(deque(_iter_lines(path), maxlen=lines))
    except OSError as e:
        logger.warning("log_file_unreadable", path=path, error=str(e))
        return []


def prepare_metric_patterns(
    patterns: Mapping[str, str],
) -> tuple[ValidationResult, dict[str, re.Pattern[str]]]:
    """Screen and compile a set of metric extraction patterns.

    Each pattern must pass ``screen_regex`` and contain exactly one capture
    group, whose value is the metric sample.

    Args:
        patterns: Mapping of metric name to raw pattern.

    Returns:
        A tuple of (result, compiled). ``compiled`` is empty when denied.
    """
    if not patterns:
        return (
            ValidationResult.deny(
                DenialCode.NO_METRIC_PATTERNS,
                "At least one metric pattern is required",
            ),
            {},
        )
    if len(patterns) > MAX_METRIC_PATTERNS:
        return (
            ValidationResult.deny(
                DenialCode.TOO_MANY_METRIC_PATTERNS,
                f"At most {MAX_METRIC_PATTERNS} metric patterns are supported "
                f"(got {len(patterns)})",
            ),
            {},
        )

    compiled: dict[str, re.Pattern[str]] = {}
    for name, raw in patterns.items():
        verdict = screen_regex(raw)
        if not verdict or verdict.pattern is None:
            return (
                ValidationResult.deny(
                    verdict.code or DenialCode.REGEX_INVALID,
                    f"Pattern for metric '{name}' is invalid: {verdict.reason}",
                ),
                {},
            )
        if verdict.pattern.groups != 1:
            return (
                ValidationResult.deny(
                    DenialCode.REGEX_INVALID,
                    f"Pattern for metric '{name}' must contain exactly one capture "
                    f"group (found {verdict.pattern.groups})",
                ),
                {},
            )
        compiled[name] = verdict.pattern

    return ValidationResult.permit(), compiled


def extract_metrics(
    path: str,
    patterns: Mapping[str, re.Pattern[str]],
    window_lines: int = 1000,
) -> dict[str, MetricSeries]:
    """Extract metric series from the trailing lines of a log file.

    Only the last ``window_lines`` lines are scanned. For every line and
    pattern, a non-empty capture group 1 is recorded as a sample.

    Args:
        path: Log file path.
        patterns: Compiled patterns from ``prepare_metric_patterns``.
        window_lines: Number of trailing lines to scan.

    Returns:
        Mapping of metric name to its series; every series is empty if the
        file cannot be read.

    Examples:
        >>> series = extract_metrics("train.log", {"loss": re.compile(r"loss: ([\\d.]+)")})
        >>> series["loss"].latest
        '0.31'
    """
    results = {name: MetricSeries() for name in patterns}
    if window_lines <= 0:
        return results

    try:
        window: deque[tuple[int, str]] = deque(
            enumerate(_iter_lines(path), start=1), maxlen=window_lines
        )
    except OSError as e:
        logger.warning("log_file_unreadable", path=path, error=str(e))
        return results

    for name, pattern in patterns.items():
        samples = results[name].samples
        for line_number, line in window:
            match = pattern.search(line)
            if match and match.group(1):
                samples.append(MetricSample(value=match.group(1), line_number=line_number))

    return results
