"""Safety screening for caller-supplied regular expressions.

Patterns arrive from untrusted callers and are run against log files, so a
pattern prone to catastrophic backtracking could pin a worker indefinitely.
``screen_regex`` rejects the known-bad shapes before a pattern is compiled
into a live matcher.

The structural checks are heuristics, not a proof of linear-time matching.
The real backstop is ``MAX_LINE_LENGTH``: every line a caller pattern is
applied to is truncated first, which bounds the per-line cost even for a
pathological pattern the heuristics miss.
"""

import re
from dataclasses import dataclass

from sandbox.results import DenialCode

MAX_PATTERN_LENGTH = 200
MAX_LINE_LENGTH = 10_000

# Brace quantifier body: {m}, {m,}, {,n}, {m,n}
_BRACE_QUANTIFIER = re.compile(r"\{(\d*)(,?)(\d*)\}")


@dataclass(frozen=True)
class RegexVerdict:
    """Outcome of screening one pattern.

    Attributes:
        safe: True if the pattern may be used.
        code: Denial category, None when safe.
        reason: Explanation, empty when safe.
        pattern: The compiled pattern when safe.
    """

    safe: bool
    code: DenialCode | None = None
    reason: str = ""
    pattern: re.Pattern[str] | None = None

    def __bool__(self) -> bool:
        return self.safe


@dataclass
class _GroupScan:
    has_repeat: bool = False
    has_alternation: bool = False


def _quantifier_at(pattern: str, i: int) -> tuple[int, bool] | None:
    """Parse a quantifier at ``i``.

    Returns:
        (length, repeats) where ``repeats`` is True when the quantifier
        allows more than one repetition, or None if no quantifier starts here.
    """
    ch = pattern[i]
    if ch in "*+":
        return 1, True
    if ch == "?":
        return 1, False
    if ch == "{":
        m = _BRACE_QUANTIFIER.match(pattern, i)
        if m is None:
            return None
        low, comma, high = m.groups()
        if not low and not high:
            # `{}` and `{,}` are literals
            return None
        if not comma:
            repeats = int(low) > 1
        elif not high:
            repeats = True
        else:
            repeats = int(high) > 1
        return m.end() - i, repeats
    return None


def _skip_char_class(pattern: str, i: int) -> int:
    """Return the index just past the character class opening at ``i``."""
    n = len(pattern)
    j = i + 1
    if j < n and pattern[j] == "^":
        j += 1
    # A leading `]` is a literal member
    if j < n and pattern[j] == "]":
        j += 1
    while j < n and pattern[j] != "]":
        j += 2 if pattern[j] == "\\" else 1
    return j + 1


def _structural_issue(pattern: str) -> str | None:
    """Find a catastrophic-backtracking shape in ``pattern``.

    Walks the pattern once, tracking for each open group whether it contains
    a repeating quantifier or an alternation (at any depth). A repeating
    quantifier applied to such a group is reported, as is a run of unbounded
    wildcards outside character classes.
    """
    stack: list[_GroupScan] = [_GroupScan()]
    closed: _GroupScan | None = None
    wildcards = 0
    n = len(pattern)
    i = 0

    while i < n:
        ch = pattern[i]

        if ch == "\\":
            closed = None
            wildcards = 0
            i += 2
        elif ch == "[":
            closed = None
            wildcards = 0
            i = _skip_char_class(pattern, i)
        elif ch == "(":
            stack.append(_GroupScan())
            closed = None
            wildcards = 0
            i += 1
            # `(?:`, `(?P<name>`, `(?=` ...: the `?` is not a quantifier
            if i < n and pattern[i] == "?":
                i += 1
        elif ch == ")":
            if len(stack) > 1:
                closed = stack.pop()
                # `((a|b))+` repeats the inner alternation just the same
                if closed.has_repeat:
                    stack[-1].has_repeat = True
                if closed.has_alternation:
                    stack[-1].has_alternation = True
            else:
                closed = None
            wildcards = 0
            i += 1
        elif ch == "|":
            stack[-1].has_alternation = True
            closed = None
            wildcards = 0
            i += 1
        else:
            quantifier = _quantifier_at(pattern, i)
            if quantifier is None:
                if ch == "." and i + 1 < n and pattern[i + 1] in "*+":
                    wildcards += 1
                    if wildcards >= 3:
                        return "three or more consecutive wildcards"
                else:
                    wildcards = 0
                closed = None
                i += 1
                continue

            length, repeats = quantifier
            if repeats:
                if closed is not None and closed.has_repeat:
                    return "nested quantifiers"
                if closed is not None and closed.has_alternation:
                    return "quantified alternation"
                stack[-1].has_repeat = True
            closed = None
            i += length
            # lazy `?` or possessive `+` modifier
            if i < n and pattern[i] in "?+":
                i += 1

    return None


def screen_regex(pattern: str) -> RegexVerdict:
    """Screen a caller-supplied pattern before it is ever run.

    Checks, in order: length cap, structural shape, compilation.

    Args:
        pattern: The raw regular expression.

    Returns:
        RegexVerdict carrying the compiled pattern when safe.

    Examples:
        >>> screen_regex(r"error: (\\d+)").safe
        True
        >>> screen_regex("(a+)+").reason
        'Regular expression contains a potentially dangerous pattern: nested quantifiers'
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        return RegexVerdict(
            safe=False,
            code=DenialCode.REGEX_TOO_LONG,
            reason=f"Regular expression too long (max {MAX_PATTERN_LENGTH} characters)",
        )

    issue = _structural_issue(pattern)
    if issue is not None:
        return RegexVerdict(
            safe=False,
            code=DenialCode.REGEX_UNSAFE,
            reason=f"Regular expression contains a potentially dangerous pattern: {issue}",
        )

    try:
        compiled = re.compile(pattern)
    except re.error as e:
        return RegexVerdict(
            safe=False,
            code=DenialCode.REGEX_INVALID,
            reason=f"Invalid regular expression: {e}",
        )

    return RegexVerdict(safe=True, pattern=compiled)


def truncate_line(line: str) -> str:
    """Cap a line at ``MAX_LINE_LENGTH`` before a caller pattern touches it."""
    return line[:MAX_LINE_LENGTH]
