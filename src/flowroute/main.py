"""CLI entrypoint for flowroute."""

import logging
from pathlib import Path

import rich_click as click

from flowroute import __version__
from flowroute.config import SUPPORTED_TRIMMING_STRATEGIES, Settings
from flowroute.controllers import ConflictStatsCommand, FlowrouteCliController, TokenTrimCommand

click.rich_click.USE_MARKDOWN = True
CONTROLLER = FlowrouteCliController()


@click.group()
@click.version_option(version=__version__, prog_name="flowroute")
def flowroute() -> None:
    """Workflow execution and LLM routing tools."""

    try:
        settings = Settings.from_env()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    logging.basicConfig(
        level=settings.logging_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@flowroute.group()
def conflicts() -> None:
    """Domain conflict log commands."""


@conflicts.command("stats")
@click.option(
    "--log-path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Conflict CSV. Defaults to FLOWROUTE_CONFLICT_LOG_PATH.",
)
@click.option(
    "--top",
    type=click.IntRange(min=1, max=100),
    default=5,
    show_default=True,
    help="How many primary/secondary pairs to print.",
)
def conflicts_stats(log_path: Path | None, top: int) -> None:
    """Summarize recorded disagreements between domain routers."""

    try:
        lines = CONTROLLER.conflict_stats(ConflictStatsCommand(log_path=log_path, top=top))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@flowroute.group()
def tokens() -> None:
    """Token budgeting commands."""


@tokens.command("trim")
@click.option(
    "--strategy",
    type=click.Choice(SUPPORTED_TRIMMING_STRATEGIES, case_sensitive=False),
    default=None,
    help="Trimming strategy. Defaults to FLOWROUTE_TRIMMING_STRATEGY.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Token limit. Defaults to FLOWROUTE_DEFAULT_TOKEN_LIMIT.",
)
@click.option(
    "--buffer",
    "buffer_fraction",
    type=click.FloatRange(min=0.0, max=1.0, max_open=True),
    default=None,
    help="Safety buffer fraction. Defaults to FLOWROUTE_BUFFER_FRACTION.",
)
def tokens_trim(strategy: str | None, limit: int | None, buffer_fraction: float | None) -> None:
    """Read text from stdin and print it trimmed to the token budget."""

    text = click.get_text_stream("stdin").read().rstrip("\n")
    _emit_lines(
        CONTROLLER.trim_preview(
            TokenTrimCommand(
                text=text,
                strategy=strategy.lower() if strategy else None,
                limit=limit,
                buffer_fraction=buffer_fraction,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    flowroute()
