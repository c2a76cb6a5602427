"""Health assessment for pm2-managed processes."""

import os
import time
from dataclasses import dataclass, field

from process.pm2 import ProcessInfo


@dataclass
class ProcessHealth:
    """Health verdict for one process.

    Attributes:
        healthy: True when online with no issues.
        issues: Human-readable problems found.
        last_log_at: Unix timestamp of the last stdout log write, if known.
    """

    name: str
    pm_id: int
    status: str
    healthy: bool
    issues: list[str] = field(default_factory=list)
    last_log_at: float | None = None
    cpu: float = 0.0
    memory: int = 0
    restarts: int = 0


def format_age(seconds: float) -> str:
    """Format an age in seconds as a short relative string."""
    seconds = int(seconds)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d ago"
    if hours:
        return f"{hours}h ago"
    if minutes:
        return f"{minutes}m ago"
    return "just now"


def check_health(
    info: ProcessInfo,
    *,
    now: float | None = None,
    stale_minutes: int = 30,
    restart_threshold: int = 10,
) -> ProcessHealth:
    """Assess a process from its pm2 snapshot and log activity.

    Args:
        info: Process snapshot.
        now: Current Unix time (defaults to ``time.time()``).
        stale_minutes: Log inactivity after which an online process is flagged.
        restart_threshold: Restart count above which the process is flagged.

    Returns:
        ProcessHealth.
    """
    now = time.time() if now is None else now
    issues: list[str] = []

    if info.status == "errored":
        issues.append("Process is in errored state")
    elif info.status == "stopped":
        issues.append("Process is stopped")

    if info.restarts > restart_threshold:
        issues.append(f"Frequent restarts ({info.restarts})")

    last_log_at: float | None = None
    if info.out_log_path:
        try:
            last_log_at = os.stat(info.out_log_path).st_mtime
        except OSError:
            # No log yet
            last_log_at = None

    if last_log_at is not None and info.status == "online":
        age = now - last_log_at
        if age > stale_minutes * 60:
            issues.append(f"No log output for a long time (last write {format_age(age)})")

    return ProcessHealth(
        name=info.name,
        pm_id=info.pm_id,
        status=info.status,
        healthy=not issues and info.status == "online",
        issues=issues,
        last_log_at=last_log_at,
        cpu=info.cpu,
        memory=info.memory,
        restarts=info.restarts,
    )
