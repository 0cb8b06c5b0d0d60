"""CLI entrypoint for task-bridge."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from task_bridge import __version__
from task_bridge.bridge.controllers import (
    BridgeCheckCommand,
    BridgeCliController,
    BridgeInitDbCommand,
    BridgeLogCommand,
    BridgePollCommand,
    BridgeQueueCommand,
    BridgeRecordCommitCommand,
    BridgeRunCommand,
    StartupError,
)
from task_bridge.bridge.repository import StoreError
from task_bridge.bridge.transitions import IllegalTransitionError
from task_bridge.logging_setup import setup_logging

click.rich_click.USE_MARKDOWN = True
BRIDGE_CONTROLLER = BridgeCliController()

_STORE_URL_HELP = "Store URL; overrides TASK_BRIDGE_STORE_URL."


@click.group()
@click.version_option(version=__version__, prog_name="task-bridge")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    envvar="TASK_BRIDGE_LOG_LEVEL",
    default="INFO",
    show_default=True,
    help="Logging level for bridge output.",
)
def task_bridge(log_level: str) -> None:
    """Task automation bridge.

    Polls the task store for queued tasks and runs each one through an agent
    CLI session, recording progress in the task's automation log.
    """

    setup_logging(level=log_level.upper())


@task_bridge.command("run")
@click.option("--store-url", default=None, help=_STORE_URL_HELP)
def run(store_url: str | None) -> None:
    """Run the poll loop until SIGINT or SIGTERM."""

    with _cli_errors():
        _emit_lines(BRIDGE_CONTROLLER.run(BridgeRunCommand(store_url=store_url)))


@task_bridge.command("poll-once")
@click.option("--store-url", default=None, help=_STORE_URL_HELP)
def poll_once(store_url: str | None) -> None:
    """Dispatch at most one queued task and exit."""

    with _cli_errors():
        _emit_lines(BRIDGE_CONTROLLER.poll_once(BridgePollCommand(store_url=store_url)))


@task_bridge.command("check")
@click.option("--store-url", default=None, help=_STORE_URL_HELP)
def check(store_url: str | None) -> None:
    """Validate configuration and agent CLI availability."""

    result = BRIDGE_CONTROLLER.check(BridgeCheckCommand(store_url=store_url))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Bridge check failed.")


@task_bridge.command("init-db")
@click.option("--store-url", default=None, help=_STORE_URL_HELP)
def init_db(store_url: str | None) -> None:
    """Apply schema migrations to the task store."""

    with _cli_errors():
        _emit_lines(BRIDGE_CONTROLLER.init_db(BridgeInitDbCommand(store_url=store_url)))


@task_bridge.command("queue")
@click.argument("task_id")
@click.option("--store-url", default=None, help=_STORE_URL_HELP)
def queue(task_id: str, store_url: str | None) -> None:
    """Queue an idle or failed task for automation."""

    with _cli_errors():
        _emit_lines(
            BRIDGE_CONTROLLER.queue(BridgeQueueCommand(store_url=store_url, task_id=task_id)),
        )


@task_bridge.command("log")
@click.argument("task_id")
@click.option("--store-url", default=None, help=_STORE_URL_HELP)
@click.option("--output", "show_output", is_flag=True, help="Include captured agent output.")
@click.option("--json", "as_json", is_flag=True, help="Print entries as a JSON array.")
def show_log(task_id: str, store_url: str | None, show_output: bool, as_json: bool) -> None:
    """Show the automation log of a task."""

    with _cli_errors():
        _emit_lines(
            BRIDGE_CONTROLLER.show_log(
                BridgeLogCommand(
                    store_url=store_url,
                    task_id=task_id,
                    show_output=show_output,
                    as_json=as_json,
                ),
            ),
        )


@task_bridge.command("record-commit")
@click.option("--task-id", envvar="TASK_ID", default=None, help="Task to record the commit on.")
@click.option(
    "--repo",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
    show_default=True,
    help="Repository whose HEAD commit is recorded.",
)
@click.option("--store-url", default=None, help=_STORE_URL_HELP)
def record_commit(task_id: str | None, repo: Path, store_url: str | None) -> None:
    """Record the HEAD commit as a progress entry; meant for a post-commit hook."""

    _emit_lines(
        BRIDGE_CONTROLLER.record_commit(
            BridgeRecordCommitCommand(store_url=store_url, task_id=task_id, repo=repo),
        ),
    )


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    # ConfigError and refused queue requests are ValueErrors.
    except (ValueError, StartupError, StoreError, IllegalTransitionError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_bridge()
