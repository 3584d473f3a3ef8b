"""CLI interface for snapctl."""

import click
import os
import signal
import sys
from typing import Optional, Tuple, Union
from loguru import logger

from .client import ProxmoxClient
from .config import CONFIG_KEYS, ConnectionSettings
from .errors import SnapctlError
from .models import (
    BatchResult,
    CreateAction,
    NoopReason,
    Outcome,
    ProgressEvent,
    RemoveAction,
    RunRecord,
    utcnow,
)
from .orchestrator import SnapshotOrchestrator
from .storage import Storage


# Global storage instance
_storage: Optional[Storage] = None


def get_storage() -> Storage:
    """Get or create storage instance."""
    global _storage
    if _storage is None:
        data_dir = os.environ.get("SNAPCTL_DATA_DIR", ".snapctl")
        _storage = Storage(data_dir)
    return _storage


def get_client() -> ProxmoxClient:
    try:
        return ProxmoxClient.from_settings(ConnectionSettings())
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _render_event(event: ProgressEvent) -> None:
    who = f"{event.target_id:<8} " if event.target_id else ""
    detail = f" ({event.detail})" if event.detail else ""
    click.echo(f"[{event.phase.value:<9}] {who}{event.status}{detail}")


def _confirm_retry(result: BatchResult) -> bool:
    click.echo(f"\n{result.failure_count} target(s) failed: {', '.join(result.failed)}")
    return click.confirm("Retry snapshot creation for the failed targets?", default=True)


def _print_result(outcome: Union[BatchResult, NoopReason]) -> None:
    if isinstance(outcome, NoopReason):
        click.echo(
            f"\nNothing to do: {outcome.message} "
            f"({outcome.targets_checked} target(s) at or under {outcome.max_retained})"
        )
        return

    click.echo(f"\n{'Target':<10} {'Outcome':<10} {'Detail':<50}")
    click.echo("-" * 70)
    for target_id, entry in outcome.results.items():
        symbol = "✓" if entry.outcome == Outcome.SUCCESS else "✗"
        click.echo(f"{target_id:<10} {symbol} {entry.outcome.value:<8} {(entry.diagnostic or '')[:50]:<50}")
    click.echo("-" * 70)
    click.echo(f"Succeeded: {len(outcome.succeeded)} | Failed: {outcome.failure_count}")
    if outcome.retried:
        click.echo(f"Retry submitted (not re-validated): {', '.join(outcome.retried)}")


def _execute(tag: str, action: Union[CreateAction, RemoveAction], shutdown: Tuple[str, ...],
             yes: bool) -> None:
    storage = get_storage()
    orchestrator = SnapshotOrchestrator(
        get_client(),
        config=storage.get_config(),
        progress=_render_event,
        confirm=None if yes else _confirm_retry,
    )

    def _handle_shutdown(signum, frame):
        click.echo("\nCancelling; submitted remote tasks keep running...", err=True)
        orchestrator.cancel()

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    record = RunRecord(tag=tag, action=action)
    try:
        outcome = orchestrator.run(tag, action, shutdown)
    except SnapctlError as e:
        record.error = str(e)
        record.finished_at = utcnow()
        storage.add_run(record)
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)

    record.finished_at = utcnow()
    if isinstance(outcome, NoopReason):
        record.noop = outcome
    else:
        record.result = outcome
    storage.add_run(record)

    _print_result(outcome)
    if isinstance(outcome, BatchResult) and outcome.failure_count:
        sys.exit(2)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """snapctl - Bulk VM snapshot creation and pruning"""
    _configure_logging(verbose)


@cli.command()
@click.argument("tag")
@click.option("--name", required=True, help="Snapshot name")
@click.option("--description", default="", help="Snapshot description")
@click.option("--shutdown", multiple=True, help="Target id or name to power off first (repeatable)")
@click.option("--yes", "-y", is_flag=True, help="Retry failures without asking")
def create(tag: str, name: str, description: str, shutdown: Tuple[str, ...], yes: bool):
    """Create a snapshot on every target carrying TAG.

    Example:
        snapctl create web --name pre-patch --shutdown 101 --shutdown db01
    """
    try:
        action = CreateAction(name=name, description=description)
    except ValueError as e:
        click.echo(f"✗ Invalid snapshot name: {e}", err=True)
        sys.exit(1)
    _execute(tag, action, shutdown, yes)


@cli.command()
@click.argument("tag")
@click.option("--max-retained", type=click.IntRange(min=0), required=True,
              help="Snapshots to keep per target")
@click.option("--shutdown", multiple=True, help="Target id or name to power off first (repeatable)")
@click.option("--yes", "-y", is_flag=True, help="Do not prompt")
def prune(tag: str, max_retained: int, shutdown: Tuple[str, ...], yes: bool):
    """Delete the oldest snapshots beyond --max-retained on every target carrying TAG.

    Example:
        snapctl prune web --max-retained 3
    """
    _execute(tag, RemoveAction(max_retained=max_retained), shutdown, yes)


@cli.command()
@click.argument("tag")
def inventory(tag: str):
    """List the targets carrying TAG.

    Example:
        snapctl inventory web
    """
    client = get_client()
    orchestrator = SnapshotOrchestrator(client)
    try:
        targets = orchestrator.inventory.resolve(tag)
    except SnapctlError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)

    if not targets:
        click.echo(f"No targets tagged '{tag}'")
        return

    click.echo(f"\n{'ID':<8} {'Name':<30} {'Node':<15} {'Power':<12}")
    click.echo("-" * 65)
    for target in targets:
        click.echo(f"{target.id:<8} {target.name[:30]:<30} {target.node:<15} {target.power_state.value:<12}")
    click.echo()


@cli.command()
@click.option("--limit", default=10, help="Maximum runs to display")
def history(limit: int):
    """List recent runs.

    Example:
        snapctl history --limit 20
    """
    runs = get_storage().get_runs(limit)
    if not runs:
        click.echo("No runs recorded")
        return

    click.echo(f"\n{'Run':<14} {'Started':<20} {'Tag':<15} {'Action':<8} {'Result':<25}")
    click.echo("-" * 82)
    for run in runs:
        started = run.started_at.strftime("%Y-%m-%d %H:%M:%S")
        if run.error:
            summary = f"error: {run.error}"[:25]
        elif run.noop:
            summary = run.noop.message
        elif run.result:
            summary = f"{len(run.result.succeeded)} ok, {run.result.failure_count} failed"
        else:
            summary = "incomplete"
        click.echo(f"{run.id:<14} {started:<20} {run.tag:<15} {run.action.kind:<8} {summary:<25}")
    click.echo()


@cli.group()
def config():
    """Manage configuration"""
    pass


@config.command()
def show():
    """Show current configuration.

    Example:
        snapctl config show
    """
    cfg = get_storage().get_config()

    click.echo("\nCurrent Configuration:")
    for key, field in CONFIG_KEYS.items():
        click.echo(f"  {key + ':':<22} {getattr(cfg, field)}")
    click.echo()


@config.command(name="set")
@click.argument("key", type=click.Choice(sorted(CONFIG_KEYS)))
@click.argument("value")
def set_value(key: str, value: str):
    """Set a configuration value.

    Example:
        snapctl config set max-concurrent-jobs 5
        snapctl config set settle-delay 30
    """
    try:
        get_storage().set_config_value(key, value)
        click.echo(f"✓ Configuration updated: {key} = {value}")
    except ValueError as e:
        click.echo(f"✗ Invalid value: {e}", err=True)
        sys.exit(1)


@config.command()
def reset():
    """Drop all stored overrides."""
    get_storage().reset_config()
    click.echo("✓ Configuration reset to defaults")


if __name__ == "__main__":
    cli()
