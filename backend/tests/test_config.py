"""Tests for config.py -- settings loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate from the developer's environment and .env files."""
    for var in ("SENTINEL_TOKEN", "SENTINEL_ALLOWED_PATHS", "SENTINEL_PORT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


class TestRequiredSettings:
    def test_missing_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SENTINEL_ALLOWED_PATHS", "/data")
        with pytest.raises(ValidationError):
            Settings()  # type: ignore[call-arg]

    def test_blank_token(self) -> None:
        with pytest.raises(ValidationError, match="must not be empty"):
            Settings(token="   ", allowed_paths="/data")

    def test_missing_allowed_paths(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SENTINEL_TOKEN", "secret")
        with pytest.raises(ValidationError):
            Settings()  # type: ignore[call-arg]

    @pytest.mark.parametrize("value", ["", " , ", "[]"])
    def test_empty_allowed_paths(self, value: str) -> None:
        with pytest.raises(ValidationError, match="at least one path"):
            Settings(token="secret", allowed_paths=value)

    def test_relative_allowed_path(self) -> None:
        with pytest.raises(ValidationError, match="must be absolute"):
            Settings(token="secret", allowed_paths="data,/srv")


class TestAllowedPathsParsing:
    def test_comma_separated_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SENTINEL_TOKEN", "secret")
        monkeypatch.setenv("SENTINEL_ALLOWED_PATHS", "/data, /var/log/app/")
        settings = Settings()  # type: ignore[call-arg]
        assert settings.allowed_roots == ("/data", "/var/log/app")

    def test_json_array(self) -> None:
        settings = Settings(token="secret", allowed_paths='["/a", "/b"]')
        assert settings.allowed_roots == ("/a", "/b")

    def test_list(self) -> None:
        settings = Settings(token="secret", allowed_paths=["/a/./x", "/a/x"])
        assert settings.allowed_roots == ("/a/x",)

    def test_token_stripped(self) -> None:
        assert Settings(token=" abc \n", allowed_paths="/data").token == "abc"


class TestDefaults:
    def test_defaults(self) -> None:
        settings = Settings(token="secret", allowed_paths="/data")
        assert settings.host == "0.0.0.0"
        assert settings.port == 9001
        assert settings.command_timeout_seconds == 30
        assert settings.max_output_bytes == 1024 * 1024
        assert settings.resolve_symlinks is True
        assert settings.pm2_binary == "pm2"

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SENTINEL_PORT", "9100")
        settings = Settings(token="secret", allowed_paths="/data")
        assert settings.port == 9100
