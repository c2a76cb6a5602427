"""Tests for logsearch/engine.py -- grep, tail and metric extraction."""

import re
from pathlib import Path

import pytest

from logsearch.engine import (
    MAX_METRIC_PATTERNS,
    MetricSeries,
    check_log_file,
    extract_metrics,
    grep_log,
    prepare_metric_patterns,
    tail_log,
)
from sandbox.regex_guard import MAX_LINE_LENGTH
from sandbox.results import DenialCode


@pytest.fixture()
def numbered_log(tmp_path: Path) -> Path:
    """A log whose lines are `line 1` .. `line 20`, with errors on 5, 6 and 15."""
    lines = [f"line {i}" for i in range(1, 21)]
    for i in (5, 6, 15):
        lines[i - 1] = f"ERROR at {i}"
    path = tmp_path / "app.log"
    path.write_text("\n".join(lines) + "\n")
    return path


# =========================================================================
# check_log_file
# =========================================================================


class TestCheckLogFile:
    def test_readable(self, numbered_log: Path) -> None:
        assert check_log_file(str(numbered_log)).allowed

    def test_missing(self, tmp_path: Path) -> None:
        result = check_log_file(str(tmp_path / "nope.log"))
        assert result.code == DenialCode.LOG_FILE_UNREADABLE

    def test_directory(self, tmp_path: Path) -> None:
        assert not check_log_file(str(tmp_path)).allowed

    def test_empty_path(self) -> None:
        assert not check_log_file("").allowed


# =========================================================================
# grep_log
# =========================================================================


class TestGrepLog:
    def test_matches_without_context(self, numbered_log: Path) -> None:
        matches = grep_log(str(numbered_log), re.compile("ERROR"))
        assert [m.line_number for m in matches] == [5, 6, 15]
        assert matches[0].line == "ERROR at 5"
        assert matches[0].before == []
        assert matches[0].after == []

    def test_context_lines(self, numbered_log: Path) -> None:
        matches = grep_log(str(numbered_log), re.compile("ERROR"), context_lines=2)
        first, second, third = matches
        assert first.before == ["line 3", "line 4"]
        assert first.after == ["ERROR at 6", "line 7"]
        assert second.before == ["line 4", "ERROR at 5"]
        assert second.after == ["line 7", "line 8"]
        assert third.before == ["line 13", "line 14"]
        assert third.after == ["line 16", "line 17"]

    def test_context_at_file_edges(self, numbered_log: Path) -> None:
        matches = grep_log(str(numbered_log), re.compile(r"^line (1|20)$"), context_lines=3)
        assert [m.line_number for m in matches] == [1, 20]
        assert matches[0].before == []
        assert matches[1].after == []

    def test_max_matches(self, numbered_log: Path) -> None:
        matches = grep_log(str(numbered_log), re.compile("ERROR"), max_matches=2)
        assert [m.line_number for m in matches] == [5, 6]

    def test_max_matches_still_fills_after_context(self, numbered_log: Path) -> None:
        matches = grep_log(
            str(numbered_log), re.compile("ERROR"), context_lines=1, max_matches=1
        )
        assert len(matches) == 1
        assert matches[0].after == ["ERROR at 6"]

    def test_zero_max_matches(self, numbered_log: Path) -> None:
        assert grep_log(str(numbered_log), re.compile("ERROR"), max_matches=0) == []

    def test_unreadable_file(self, tmp_path: Path) -> None:
        assert grep_log(str(tmp_path / "missing.log"), re.compile("x")) == []

    def test_long_lines_truncated(self, tmp_path: Path) -> None:
        path = tmp_path / "long.log"
        path.write_text("x" * (MAX_LINE_LENGTH + 100) + "END\n")
        assert grep_log(str(path), re.compile("END")) == []
        matches = grep_log(str(path), re.compile("x"))
        assert len(matches[0].line) == MAX_LINE_LENGTH

    def test_huge_line_skipped_without_losing_position(self, tmp_path: Path) -> None:
        path = tmp_path / "progress.log"
        path.write_text("#" * (3 * 1024 * 1024) + "\nepoch 1 done\n")
        matches = grep_log(str(path), re.compile("epoch"))
        assert [m.line_number for m in matches] == [2]
        assert matches[0].line == "epoch 1 done"

    def test_huge_line_without_newline(self, tmp_path: Path) -> None:
        path = tmp_path / "progress.log"
        path.write_text("#" * (3 * 1024 * 1024))
        assert tail_log(str(path)) == ["#" * MAX_LINE_LENGTH]

    def test_line_at_cap_kept_whole(self, tmp_path: Path) -> None:
        path = tmp_path / "cap.log"
        path.write_text("x" * MAX_LINE_LENGTH + "\nnext\n")
        assert tail_log(str(path)) == ["x" * MAX_LINE_LENGTH, "next"]

    def test_invalid_utf8_replaced(self, tmp_path: Path) -> None:
        path = tmp_path / "bin.log"
        path.write_bytes(b"ok \xff\xfe ERROR\n")
        matches = grep_log(str(path), re.compile("ERROR"))
        assert len(matches) == 1
        assert "�" in matches[0].line


# =========================================================================
# tail_log
# =========================================================================


class TestTailLog:
    def test_last_lines(self, numbered_log: Path) -> None:
        assert tail_log(str(numbered_log), 3) == ["line 18", "line 19", "line 20"]

    def test_more_than_available(self, numbered_log: Path) -> None:
        assert len(tail_log(str(numbered_log), 500)) == 20

    def test_missing_file(self, tmp_path: Path) -> None:
        assert tail_log(str(tmp_path / "missing.log")) == []

    def test_crlf_stripped(self, tmp_path: Path) -> None:
        path = tmp_path / "crlf.log"
        path.write_bytes(b"a\r\nb\r\n")
        assert tail_log(str(path)) == ["a", "b"]


# =========================================================================
# Metrics
# =========================================================================


class TestPrepareMetricPatterns:
    def test_valid(self) -> None:
        result, compiled = prepare_metric_patterns({"loss": r"loss: ([\d.]+)"})
        assert result.allowed
        assert set(compiled) == {"loss"}

    def test_empty(self) -> None:
        result, compiled = prepare_metric_patterns({})
        assert result.code == DenialCode.NO_METRIC_PATTERNS
        assert compiled == {}

    def test_too_many(self) -> None:
        patterns = {f"m{i}": rf"m{i}=(\d+)" for i in range(MAX_METRIC_PATTERNS + 1)}
        result, _ = prepare_metric_patterns(patterns)
        assert result.code == DenialCode.TOO_MANY_METRIC_PATTERNS

    def test_unsafe_pattern_names_metric(self) -> None:
        result, compiled = prepare_metric_patterns({"bad": r"(a+)+"})
        assert result.code == DenialCode.REGEX_UNSAFE
        assert "Pattern for metric 'bad' is invalid" in result.reason
        assert compiled == {}

    @pytest.mark.parametrize("pattern", [r"loss: [\d.]+", r"(\w+): ([\d.]+)"])
    def test_requires_one_group(self, pattern: str) -> None:
        result, _ = prepare_metric_patterns({"loss": pattern})
        assert result.code == DenialCode.REGEX_INVALID
        assert "exactly one capture group" in result.reason


class TestExtractMetrics:
    def _compile(self, **patterns: str) -> dict[str, re.Pattern[str]]:
        _, compiled = prepare_metric_patterns(patterns)
        return compiled

    def test_loss_series(self, tmp_path: Path) -> None:
        path = tmp_path / "train.log"
        path.write_text("starting\nloss: 0.42\nloss: 0.31\n")
        series = extract_metrics(str(path), self._compile(loss=r"loss: ([\d.]+)"))
        assert series["loss"].latest == "0.31"
        assert [s.value for s in series["loss"].samples] == ["0.42", "0.31"]
        assert [s.line_number for s in series["loss"].samples] == [2, 3]

    def test_window_keeps_absolute_line_numbers(self, tmp_path: Path) -> None:
        path = tmp_path / "train.log"
        path.write_text("".join(f"step {i}\n" for i in range(1, 101)))
        series = extract_metrics(str(path), self._compile(step=r"step (\d+)"), window_lines=3)
        assert [s.value for s in series["step"].samples] == ["98", "99", "100"]
        assert [s.line_number for s in series["step"].samples] == [98, 99, 100]

    def test_multiple_metrics(self, tmp_path: Path) -> None:
        path = tmp_path / "train.log"
        path.write_text("epoch 1 loss: 0.5\nepoch 2 loss: 0.4\n")
        series = extract_metrics(
            str(path), self._compile(epoch=r"epoch (\d+)", loss=r"loss: ([\d.]+)")
        )
        assert series["epoch"].latest == "2"
        assert series["loss"].latest == "0.4"

    def test_empty_capture_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "train.log"
        path.write_text("acc: \nacc: 0.9\n")
        series = extract_metrics(str(path), self._compile(acc=r"acc: ([\d.]*)"))
        assert [s.value for s in series["acc"].samples] == ["0.9"]

    def test_missing_file(self, tmp_path: Path) -> None:
        series = extract_metrics(str(tmp_path / "none.log"), self._compile(x=r"x=(\d)"))
        assert series == {"x": MetricSeries()}
        assert series["x"].latest is None
