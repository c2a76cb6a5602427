"""Tests for process/pm2.py -- the pm2 CLI client.

The pm2 binary is never invoked: ``run_cli`` is patched to return canned
``CliOutput`` values and the argv it receives is asserted on.
"""

import json
from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from process.cli import CliError, CliOutput
from process.pm2 import (
    InvalidProcessNameError,
    Pm2Client,
    ProcessInfo,
    ProcessManagerError,
    ProcessNotFoundError,
    StartSpec,
    parse_jlist,
    validate_process_name,
)


def _raw_process(name: str = "trainer", pm_id: int = 0, status: str = "online") -> dict[str, Any]:
    return {
        "name": name,
        "pm_id": pm_id,
        "pid": 4242,
        "monit": {"cpu": 12.5, "memory": 1048576},
        "pm2_env": {
            "status": status,
            "pm_uptime": 1_700_000_000_000,
            "restart_time": 3,
            "pm_out_log_path": f"/home/u/.pm2/logs/{name}-out.log",
            "pm_err_log_path": f"/home/u/.pm2/logs/{name}-error.log",
            "pm_cwd": "/srv/data",
        },
    }


def _ok(stdout: str = "") -> CliOutput:
    return CliOutput(returncode=0, stdout=stdout, stderr="")


@pytest.fixture()
def run_cli() -> Generator[AsyncMock, None, None]:
    with patch("process.pm2.run_cli", new_callable=AsyncMock) as mock:
        mock.return_value = _ok(json.dumps([_raw_process()]))
        yield mock


def _argv(mock: AsyncMock, call: int = -1) -> list[str]:
    return mock.call_args_list[call].args[0]


# =========================================================================
# Parsing
# =========================================================================


class TestParsing:
    def test_from_pm2(self) -> None:
        info = ProcessInfo.from_pm2(_raw_process(), now_ms=1_700_000_060_000)
        assert info.name == "trainer"
        assert info.pm_id == 0
        assert info.status == "online"
        assert info.pid == 4242
        assert info.cpu == 12.5
        assert info.memory == 1048576
        assert info.uptime_ms == 60_000
        assert info.restarts == 3
        assert info.out_log_path.endswith("trainer-out.log")
        assert info.cwd == "/srv/data"

    def test_uptime_only_when_online(self) -> None:
        info = ProcessInfo.from_pm2(_raw_process(status="stopped"), now_ms=1_700_000_060_000)
        assert info.uptime_ms is None

    def test_from_pm2_tolerates_missing_fields(self) -> None:
        info = ProcessInfo.from_pm2({})
        assert info.name == "unknown"
        assert info.pm_id == -1
        assert info.status == "unknown"
        assert info.out_log_path == ""

    def test_parse_jlist_with_banner(self) -> None:
        output = ">>>> In-memory PM2 is out-of-date\n" + json.dumps([_raw_process()])
        assert parse_jlist(output)[0]["name"] == "trainer"

    @pytest.mark.parametrize("output", ["", "no json here", "[not json"])
    def test_parse_jlist_errors(self, output: str) -> None:
        with pytest.raises(ProcessManagerError):
            parse_jlist(output)


class TestProcessName:
    @pytest.mark.parametrize("name", ["trainer", "train-resnet_50", "app@2", "v1.2", "0"])
    def test_valid(self, name: str) -> None:
        assert validate_process_name(name) == name

    @pytest.mark.parametrize("name", ["", "-rf", "a b", "a;b", "../x", "x" * 129, "$(id)"])
    def test_invalid(self, name: str) -> None:
        with pytest.raises(InvalidProcessNameError):
            validate_process_name(name)


# =========================================================================
# Client
# =========================================================================


class TestPm2Client:
    async def test_connect_is_idempotent(self, run_cli: AsyncMock) -> None:
        client = Pm2Client(binary="pm2")
        assert client.connected is False
        await client.connect()
        await client.connect()
        assert client.connected is True
        assert run_cli.await_count == 1
        assert _argv(run_cli) == ["pm2", "ping"]

    async def test_close_then_reconnect(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        await client.connect()
        await client.close()
        assert client.connected is False
        await client.list_processes()
        subcommands = [_argv(run_cli, i)[1] for i in range(run_cli.await_count)]
        assert subcommands == ["ping", "ping", "jlist"]

    async def test_list_processes(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        processes = await client.list_processes()
        assert [p.name for p in processes] == ["trainer"]
        assert _argv(run_cli) == ["pm2", "jlist"]

    async def test_describe_by_name_and_id(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        assert (await client.describe("trainer")).pm_id == 0
        assert (await client.describe("0")).name == "trainer"

    async def test_describe_not_found(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        with pytest.raises(ProcessNotFoundError, match="'ghost' not found"):
            await client.describe("ghost")

    async def test_describe_rejects_bad_name(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        with pytest.raises(InvalidProcessNameError):
            await client.describe("--help")
        run_cli.assert_not_awaited()

    async def test_log_paths(self, run_cli: AsyncMock) -> None:
        out, err = await Pm2Client().log_paths("trainer")
        assert out.endswith("trainer-out.log")
        assert err.endswith("trainer-error.log")

    async def test_start_builds_argv(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        spec = StartSpec(
            name="trainer",
            script="train.py",
            cwd="/srv/data",
            interpreter="/srv/data/.venv/bin/python",
            args=["--epochs", "3"],
        )
        logs_cleared = await client.start(spec)
        assert logs_cleared is False
        assert _argv(run_cli) == [
            "pm2", "start", "train.py",
            "--name", "trainer",
            "--cwd", "/srv/data",
            "--interpreter", "/srv/data/.venv/bin/python",
            "--no-autorestart",
            "--", "--epochs", "3",
        ]
        assert run_cli.call_args.kwargs["env"] is None

    async def test_start_with_autorestart_and_env(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        await client.start(StartSpec(
            name="web", script="app.py", cwd="/srv", autorestart=True, env={"PORT": "8080"},
        ))
        argv = _argv(run_cli)
        assert "--no-autorestart" not in argv
        assert run_cli.call_args.kwargs["env"]["PORT"] == "8080"

    async def test_start_clears_logs(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        logs_cleared = await client.start(
            StartSpec(name="trainer", script="train.py", cwd="/srv", clear_logs=True)
        )
        assert logs_cleared is True
        argvs = [_argv(run_cli, i) for i in range(run_cli.await_count)]
        assert ["pm2", "flush", "trainer"] in argvs
        assert argvs.index(["pm2", "flush", "trainer"]) < len(argvs) - 1

    async def test_start_flush_failure_is_not_fatal(self, run_cli: AsyncMock) -> None:
        def respond(argv: list[str], **kwargs: Any) -> CliOutput:
            if argv[1] == "flush":
                return CliOutput(returncode=1, stdout="", stderr="flush failed")
            return _ok()

        run_cli.side_effect = respond
        logs_cleared = await Pm2Client().start(
            StartSpec(name="trainer", script="train.py", cwd="/srv", clear_logs=True)
        )
        assert logs_cleared is False
        assert _argv(run_cli)[1] == "start"

    @pytest.mark.parametrize("action", ["stop", "restart", "delete", "flush"])
    async def test_control_actions(self, run_cli: AsyncMock, action: str) -> None:
        client = Pm2Client()
        await getattr(client, action)("trainer")
        assert _argv(run_cli) == ["pm2", action, "trainer"]

    async def test_not_found_error(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        await client.connect()
        run_cli.return_value = CliOutput(
            returncode=1, stdout="", stderr="[PM2][ERROR] Process or Namespace ghost not found"
        )
        with pytest.raises(ProcessNotFoundError):
            await client.stop("ghost")

    async def test_other_failure(self, run_cli: AsyncMock) -> None:
        client = Pm2Client()
        await client.connect()
        run_cli.return_value = CliOutput(returncode=1, stdout="", stderr="daemon exploded")
        with pytest.raises(ProcessManagerError, match="daemon exploded"):
            await client.restart("trainer")

    async def test_cli_error_wrapped(self, run_cli: AsyncMock) -> None:
        run_cli.side_effect = CliError("Failed to run pm2: not installed")
        with pytest.raises(ProcessManagerError):
            await Pm2Client().connect()
