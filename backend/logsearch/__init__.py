"""Log search and metric extraction over process log files."""

from logsearch.engine import (
    MAX_METRIC_PATTERNS,
    MatchResult,
    MetricSample,
    MetricSeries,
    check_log_file,
    extract_metrics,
    grep_log,
    prepare_metric_patterns,
    tail_log,
)

__all__ = [
    "MAX_METRIC_PATTERNS",
    "MatchResult",
    "MetricSample",
    "MetricSeries",
    "check_log_file",
    "extract_metrics",
    "grep_log",
    "prepare_metric_patterns",
    "tail_log",
]
