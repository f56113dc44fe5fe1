"""CLI entrypoint for anpm-oracle."""

import logging

import rich_click as click

from anpm_oracle import __version__
from anpm_oracle.config import Settings
from anpm_oracle.logging_config import setup_logging
from anpm_oracle.oracle.controllers import (
    OracleCliController,
    OracleRunCommand,
    SubmitTaskCommand,
)
from anpm_oracle.oracle.pool import AuthorizationError
from anpm_oracle.process.errors import ProcessError

click.rich_click.USE_MARKDOWN = True
ORACLE_CONTROLLER = OracleCliController()
logger = logging.getLogger("anpm_oracle")


@click.group()
@click.version_option(version=__version__, prog_name="anpm-oracle")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override ANPM_ORACLE_LOG_LEVEL.",
)
def anpm_oracle(log_level: str | None) -> None:
    """ANPM oracle node: serve inference tasks from an AO pool process."""

    try:
        settings = Settings.from_env()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    setup_logging(log_level or settings.logging.level, settings.logging.file)


@anpm_oracle.command("run")
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many poll iterations (default: run until stopped).",
)
def run(max_iterations: int | None) -> None:
    """Poll the pool, run inference on HyperBEAM and submit results."""

    try:
        lines = ORACLE_CONTROLLER.run(OracleRunCommand(max_iterations=max_iterations))
    except AuthorizationError as error:
        logger.critical("Fatal error: %s", error)
        raise SystemExit(1) from error
    except (ValueError, OSError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@anpm_oracle.command("check")
def check() -> None:
    """Dry-run the pending-task check once."""

    try:
        lines = ORACLE_CONTROLLER.check()
    except (ValueError, ProcessError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@anpm_oracle.command("submit")
@click.argument("prompt")
@click.option("--config", "config", default=None, help="Inference config (JSON string).")
@click.option("--reference", default=None, help="Task reference (default: random UUID).")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Poll until the task is done.",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=1),
    default=600.0,
    show_default=True,
    help="Seconds to wait for the task output.",
)
def submit(
    prompt: str,
    config: str | None,
    reference: str | None,
    wait: bool,
    timeout_seconds: float,
) -> None:
    """Add a task to the pool and optionally wait for its output."""

    try:
        result = ORACLE_CONTROLLER.submit(
            SubmitTaskCommand(
                prompt=prompt,
                config=config,
                reference=reference,
                wait=wait,
                timeout_seconds=timeout_seconds,
            ),
        )
    except (ValueError, OSError, ProcessError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Task did not complete in time.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    anpm_oracle()
