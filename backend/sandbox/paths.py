"""Filesystem path confinement.

Resolves caller-supplied paths to a canonical absolute form and checks that
they fall inside one of the configured sandbox roots.
"""

import os
from collections.abc import Iterable, Sequence

from sandbox.results import DenialCode, ValidationResult


def canonicalize(path: str, base_path: str | None = None, *, follow_symlinks: bool = False) -> str:
    """Return the canonical absolute form of ``path``.

    Relative paths are joined onto ``base_path`` (or the process working
    directory) *before* normalization, so ``..`` segments cannot survive.

    Args:
        path: Absolute or relative path.
        base_path: Directory relative paths are resolved against.
        follow_symlinks: Also resolve symbolic links.

    Returns:
        The normalized absolute path.
    """
    if os.path.isabs(path):
        joined = path
    else:
        joined = os.path.join(base_path or os.getcwd(), path)

    resolved = os.path.normpath(os.path.abspath(joined))
    if follow_symlinks:
        resolved = os.path.realpath(resolved)
    return resolved


def normalize_roots(
    roots: Iterable[str], *, follow_symlinks: bool = False
) -> tuple[str, ...]:
    """Canonicalize and de-duplicate allowed roots, keeping their order."""
    normalized: list[str] = []
    for root in roots:
        canonical = canonicalize(root, follow_symlinks=follow_symlinks)
        if canonical not in normalized:
            normalized.append(canonical)
    return tuple(normalized)


def is_within(path: str, root: str) -> bool:
    """True if canonical ``path`` equals ``root`` or lies strictly below it.

    ``/data/ok2`` is not within ``/data/ok``.
    """
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def confine(
    target_path: str,
    allowed_roots: Sequence[str],
    base_path: str | None = None,
    *,
    follow_symlinks: bool = False,
) -> ValidationResult:
    """Check that a path resolves inside one of the allowed roots.

    Args:
        target_path: The caller-supplied path, absolute or relative.
        allowed_roots: Directories the path must stay within.
        base_path: Directory relative paths are resolved against
            (defaults to the process working directory).
        follow_symlinks: Resolve symlinks on both sides before comparing.

    Returns:
        ValidationResult; denials name the resolved path and the allowed set.

    Examples:
        >>> confine("/data/logs/app.log", ["/data"]).allowed
        True
        >>> confine("/data/../etc/passwd", ["/data"]).allowed
        False
        >>> confine("/data2", ["/data"]).allowed
        False
    """
    if not target_path:
        return ValidationResult.deny(
            DenialCode.PATH_OUTSIDE_SANDBOX,
            f"Empty path is not within allowed paths: {', '.join(allowed_roots)}",
        )

    resolved = canonicalize(target_path, base_path, follow_symlinks=follow_symlinks)
    roots = normalize_roots(allowed_roots, follow_symlinks=follow_symlinks)

    if any(is_within(resolved, root) for root in roots):
        return ValidationResult.permit()

    return ValidationResult.deny(
        DenialCode.PATH_OUTSIDE_SANDBOX,
        f"Path '{resolved}' is not within allowed paths: {', '.join(allowed_roots)}",
    )
