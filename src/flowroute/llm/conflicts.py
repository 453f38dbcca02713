"""Sinks for dual-classifier domain conflicts."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from flowroute.config import Settings

logger = logging.getLogger(__name__)

CONFLICT_LOG_HEADER = (
    "timestamp,prompt,primary,primaryConfidence,secondary,secondaryConfidence"
)
_CONFLICT_ROW = re.compile(
    r"(?P<timestamp>[^,\n]+),\"(?P<prompt>.*)\","
    r"(?P<primary>[^,\n]*),(?P<primary_confidence>[^,\n]+),"
    r"(?P<secondary>[^,\n]*),(?P<secondary_confidence>[^,\n]+)",
    re.DOTALL,
)


@dataclass(frozen=True, slots=True)
class DomainConflict:
    """Two classifiers disagreeing about one prompt."""

    timestamp: datetime
    prompt: str
    primary: str | None
    primary_confidence: float
    secondary: str | None
    secondary_confidence: float


class ConflictLogger(Protocol):
    """Destination for domain conflicts."""

    def log_conflict(self, conflict: DomainConflict) -> None:
        """Record one conflict."""


class ConsoleConflictLogger:
    """Reports conflicts through the ``logging`` module."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def log_conflict(self, conflict: DomainConflict) -> None:
        logger.log(
            self.level,
            "Domain conflict: primary=%s (%s), secondary=%s (%s), prompt=%r",
            conflict.primary,
            conflict.primary_confidence,
            conflict.secondary,
            conflict.secondary_confidence,
            conflict.prompt,
        )


class CsvConflictLogger:
    """Appends conflicts to a CSV file, writing the header on first use.

    The prompt column is wrapped in double quotes; no other escaping is applied.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def log_conflict(self, conflict: DomainConflict) -> None:
        row = format_conflict_row(conflict)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = not self.path.exists() or self.path.stat().st_size == 0
            with self.path.open("a", encoding="utf-8") as handle:
                if write_header:
                    handle.write(CONFLICT_LOG_HEADER + "\n")
                handle.write(row + "\n")


def format_conflict_row(conflict: DomainConflict) -> str:
    return ",".join(
        (
            conflict.timestamp.isoformat(),
            f'"{conflict.prompt}"',
            conflict.primary or "",
            str(conflict.primary_confidence),
            conflict.secondary or "",
            str(conflict.secondary_confidence),
        ),
    )


def read_conflict_log(path: Path) -> list[DomainConflict]:
    """Parse a conflict log written by :class:`CsvConflictLogger`.

    Rows follow the writer's format rather than RFC 4180: the prompt is
    everything between the first ``"`` and the last ``",`` of the record, and
    may itself contain quotes, commas or newlines.
    """

    conflicts: list[DomainConflict] = []
    pending: list[str] = []
    start_line = 0
    with path.open(encoding="utf-8", newline="") as handle:
        for line_no, raw_line in enumerate(handle, start=1):
            line = raw_line.rstrip("\r\n")
            if line_no == 1 and line == CONFLICT_LOG_HEADER:
                continue
            if not pending:
                if not line:
                    continue
                start_line = line_no
            pending.append(line)
            match = _CONFLICT_ROW.fullmatch("\n".join(pending))
            if match is None:
                continue
            conflicts.append(_conflict_from_match(match, path=path, line_no=start_line))
            pending = []
    if pending:
        raise ValueError(
            f"Malformed conflict log row {start_line} in {path}: "
            "expected timestamp,\"prompt\",primary,confidence,secondary,confidence",
        )
    return conflicts


def build_conflict_logger(settings: Settings) -> ConflictLogger:
    """CSV sink when a log path is configured, console sink otherwise."""

    if settings.conflicts.log_path is not None:
        return CsvConflictLogger(settings.conflicts.log_path)
    return ConsoleConflictLogger()


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def _conflict_from_match(match: re.Match[str], *, path: Path, line_no: int) -> DomainConflict:
    try:
        return DomainConflict(
            timestamp=_parse_timestamp(match["timestamp"]),
            prompt=match["prompt"],
            primary=match["primary"] or None,
            primary_confidence=float(match["primary_confidence"]),
            secondary=match["secondary"] or None,
            secondary_confidence=float(match["secondary_confidence"]),
        )
    except ValueError as error:
        raise ValueError(
            f"Malformed conflict log row {line_no} in {path}: {error}",
        ) from error
