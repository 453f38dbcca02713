"""Controllers for flowroute CLI commands."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from flowroute.config import Settings
from flowroute.llm.conflicts import DomainConflict, read_conflict_log
from flowroute.llm.tokens import TrimmingStrategy, adjusted_token_limit, estimate_tokens, trim_text

NO_DOMAIN = "-"


@dataclass(slots=True)
class ConflictStatsCommand:
    """CLI inputs for conflict log statistics."""

    log_path: Path | None
    top: int


@dataclass(slots=True)
class TokenTrimCommand:
    """CLI inputs for the trimming preview."""

    text: str
    strategy: str | None
    limit: int | None
    buffer_fraction: float | None


class FlowrouteCliController:
    """Coordinates CLI command execution."""

    def conflict_stats(self, command: ConflictStatsCommand) -> list[str]:
        settings = Settings.from_env()
        log_path = command.log_path or settings.conflicts.log_path
        if log_path is None:
            raise ValueError("No conflict log: pass --log-path or set FLOWROUTE_CONFLICT_LOG_PATH.")
        if not log_path.exists():
            raise ValueError(f"Conflict log not found: {log_path}")

        conflicts = read_conflict_log(log_path)
        lines = [f"Conflict log: {log_path}", f"Conflicts: {len(conflicts)}"]
        if not conflicts:
            return lines

        first_seen = min(conflict.timestamp for conflict in conflicts)
        last_seen = max(conflict.timestamp for conflict in conflicts)
        lines.append(f"Window: {first_seen.isoformat()} .. {last_seen.isoformat()}")
        lines.append(
            "Mean confidence: "
            f"primary={_mean(c.primary_confidence for c in conflicts):.3f} "
            f"secondary={_mean(c.secondary_confidence for c in conflicts):.3f}",
        )
        lines.append(
            "Primary domains: "
            + _fmt_counts(Counter(_domain(c.primary) for c in conflicts)),
        )
        lines.append(
            "Secondary domains: "
            + _fmt_counts(Counter(_domain(c.secondary) for c in conflicts)),
        )
        lines.append("Top pairs:")
        for (primary, secondary), count in _pair_counts(conflicts).most_common(command.top):
            lines.append(f"  {primary} vs {secondary}: {count}")
        return lines

    def trim_preview(self, command: TokenTrimCommand) -> list[str]:
        routing = Settings.from_env().routing
        strategy = TrimmingStrategy(command.strategy or routing.trimming_strategy)
        limit = command.limit if command.limit is not None else routing.default_token_limit
        buffer_fraction = (
            command.buffer_fraction
            if command.buffer_fraction is not None
            else routing.buffer_fraction
        )
        budget = adjusted_token_limit(limit, buffer_fraction)
        trimmed = trim_text(command.text, max_tokens=budget, strategy=strategy)
        return [
            f"Strategy: {strategy.value}",
            f"Token limit: {limit} (budget {budget} after buffer {buffer_fraction})",
            f"Tokens: before={estimate_tokens(command.text)} after={estimate_tokens(trimmed)}",
            trimmed,
        ]


def _domain(value: str | None) -> str:
    return value or NO_DOMAIN


def _pair_counts(conflicts: list[DomainConflict]) -> Counter[tuple[str, str]]:
    return Counter((_domain(c.primary), _domain(c.secondary)) for c in conflicts)


def _fmt_counts(counts: Counter[str]) -> str:
    return " ".join(f"{key}={value}" for key, value in sorted(counts.items()))


def _mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0
