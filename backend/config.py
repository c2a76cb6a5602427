"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Sentinel
backend. All settings can be overridden via environment variables prefixed
with ``SENTINEL_`` or a .env file.

The access token and the directory allow-list are mandatory: constructing
``Settings`` without them raises ``pydantic.ValidationError`` so the service
refuses to start rather than run without a sandbox.
"""

import json
import logging
import os
from functools import lru_cache
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        token: Shared bearer token callers must present on every /api request.
        allowed_paths: Absolute directories that commands, working directories
            and process scripts are confined to. Never empty.
        host: Interface the HTTP server binds to.
        port: Port for the HTTP server.
        command_timeout_seconds: Timeout for a single shell command.
        max_output_bytes: Per-stream cap on captured command output.
        pm2_binary: Name or path of the PM2 CLI.
        pm2_timeout_seconds: Timeout for a single PM2 CLI invocation.
        nvidia_smi_binary: Name or path of nvidia-smi.
        resolve_symlinks: Resolve symlinks before checking path confinement.
        log_stale_minutes: Age after which an online process log counts as stale.
        restart_warning_threshold: Restart count above which a process is flagged.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    token: str
    allowed_paths: str | list[str]

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 9001
    log_level: str = "INFO"
    log_format: str = "json"

    # Command Execution
    command_timeout_seconds: int = 30
    max_output_bytes: int = 1024 * 1024
    resolve_symlinks: bool = True

    # Process Manager
    pm2_binary: str = "pm2"
    pm2_timeout_seconds: int = 10
    log_stale_minutes: int = 30
    restart_warning_threshold: int = 10

    # GPU
    nvidia_smi_binary: str = "nvidia-smi"

    model_config = SettingsConfigDict(
        env_prefix="SENTINEL_",
        # Support running from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("token")
    @classmethod
    def require_token(cls, v: str) -> str:
        """Reject blank tokens."""
        if not v.strip():
            raise ValueError("SENTINEL_TOKEN must not be empty")
        return v.strip()

    @field_validator("allowed_paths", mode="before")
    @classmethod
    def parse_allowed_paths(cls, v: Any) -> list[str]:
        """Parse the directory allow-list from string or list.

        Accepts:
        - JSON array: '["/srv/data", "/var/log/app"]'
        - Comma-separated: '/srv/data,/var/log/app'
        - Single value: '/srv/data'
        - Already a list: ["/srv/data"]

        Entries are normalized and de-duplicated in order. The result must be
        non-empty and every entry must be absolute.
        """
        if isinstance(v, str):
            v = v.strip()
            items: list[Any] | None = None
            # Try JSON first
            if v.startswith("["):
                try:
                    items = json.loads(v)
                except json.JSONDecodeError:
                    items = None
            if items is None:
                # Fallback to comma-separated
                items = v.split(",")
        elif isinstance(v, (list, tuple)):
            items = list(v)
        else:
            raise ValueError("SENTINEL_ALLOWED_PATHS must be a string or list")

        paths: list[str] = []
        for item in items:
            if not isinstance(item, str) or not item.strip():
                continue
            path = item.strip()
            if not os.path.isabs(path):
                raise ValueError(f"Allowed path must be absolute: {path}")
            normalized = os.path.normpath(path)
            if normalized not in paths:
                paths.append(normalized)

        if not paths:
            raise ValueError("SENTINEL_ALLOWED_PATHS must contain at least one path")
        return paths

    @property
    def allowed_roots(self) -> tuple[str, ...]:
        """The parsed allow-list as an immutable tuple."""
        if isinstance(self.allowed_paths, str):
            return (self.allowed_paths,)
        return tuple(self.allowed_paths)


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment once per process.

    Raises:
        pydantic.ValidationError: If the token or allow-list is missing or invalid.
    """
    return Settings()  # type: ignore[call-arg]
