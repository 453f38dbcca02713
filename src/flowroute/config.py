"""Runtime configuration for workflow execution and LLM routing."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_TRIMMING_STRATEGIES = ("none", "start", "middle", "end")
SUPPORTED_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class RoutingSettings:
    """Token budgeting and service selection settings."""

    default_token_limit: int = 4096
    buffer_fraction: float = 0.05
    trimming_strategy: str = "end"


@dataclass(slots=True)
class ConflictLogSettings:
    """Where dual-classifier domain conflicts are recorded."""

    log_path: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    routing: RoutingSettings = field(default_factory=RoutingSettings)
    conflicts: ConflictLogSettings = field(default_factory=ConflictLogSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults suitable for local use."""

        settings = cls(
            routing=RoutingSettings(
                default_token_limit=_env_int("FLOWROUTE_DEFAULT_TOKEN_LIMIT", 4096),
                buffer_fraction=_env_float("FLOWROUTE_BUFFER_FRACTION", 0.05),
                trimming_strategy=os.getenv("FLOWROUTE_TRIMMING_STRATEGY", "end").strip().lower(),
            ),
            conflicts=ConflictLogSettings(
                log_path=_env_path("FLOWROUTE_CONFLICT_LOG_PATH"),
            ),
            log_level=os.getenv("FLOWROUTE_LOG_LEVEL", "INFO").strip().upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.routing.default_token_limit <= 0:
            raise ValueError("FLOWROUTE_DEFAULT_TOKEN_LIMIT must be a positive integer.")
        if not 0.0 <= self.routing.buffer_fraction < 1.0:
            raise ValueError(
                "FLOWROUTE_BUFFER_FRACTION must be >= 0 and < 1, "
                f"got {self.routing.buffer_fraction!r}.",
            )
        if self.routing.trimming_strategy not in SUPPORTED_TRIMMING_STRATEGIES:
            raise ValueError(
                f"Unsupported FLOWROUTE_TRIMMING_STRATEGY={self.routing.trimming_strategy!r}; "
                f"expected one of {', '.join(SUPPORTED_TRIMMING_STRATEGIES)}.",
            )
        if self.log_level not in SUPPORTED_LOG_LEVELS:
            raise ValueError(f"Unsupported FLOWROUTE_LOG_LEVEL={self.log_level!r}.")

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid float value for {name}: {raw!r}") from error


def _env_path(name: str) -> Path | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return Path(raw).expanduser()
