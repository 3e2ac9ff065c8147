"""mailmark command-line interface.

What:
  Provide a Typer-based entry point for the archiving operations: ``export``,
  ``export-all``, ``sort``, ``fix``, ``accounts`` and ``set-export-dir``.

Why:
  Exports are run from cron as often as by hand. Every command prints one
  title and one message per outcome and exits ``1`` only when an operation
  did not run, so scripts can tell a partial export from a broken one.

How:
  Each command calls the matching function in :mod:`mailmark.actions`, which
  never raises, and renders the returned
  :class:`~mailmark.actions.ActionOutcome`. ``export-all`` runs each account
  as a worker of :class:`~mailmark.tasks.TaskCoordinator` and prints results
  as they arrive.

Interfaces:
  ``app`` (Typer application), ``main``.

Invariants & Safety:
  - Exit codes follow shell expectations (``0`` success or partial import,
    ``1`` failure).
  - Passwords are never printed; ``accounts`` only reports whether one was
    found.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable, Optional

import typer

from . import actions
from .config.loader import ConfigLoadError, config_dir, set_export_base_dir
from .config.resolver import load_resolved
from .tasks import TaskCoordinator, describe


app = typer.Typer(help="Archive IMAP mailboxes as Markdown files")

LOGGER = logging.getLogger("mailmark.cli")

POLL_INTERVAL_SECONDS = 0.2

_CONFIG_DIR_HELP = "Configuration directory (defaults to $MAILMARK_CONFIG_DIR or ~/.config/mailmark)"


def _emit(outcome: actions.ActionOutcome) -> None:
    typer.echo(f"{outcome.title}: {outcome.message}", err=not outcome.ok)


def _finish(outcomes: Iterable[actions.ActionOutcome]) -> None:
    failed = [outcome for outcome in outcomes if not outcome.ok]
    if failed:
        raise typer.Exit(code=1)


@app.command("export")
def export(
    name: str = typer.Argument(..., help="Account name from accounts.yaml"),
    config: Optional[Path] = typer.Option(None, "--config-dir", help=_CONFIG_DIR_HELP),
) -> None:
    """Export one account to its export directory."""

    outcome = actions.export_account(name, config_directory=config)
    _emit(outcome)
    _finish([outcome])


@app.command("export-all")
def export_all(
    config: Optional[Path] = typer.Option(None, "--config-dir", help=_CONFIG_DIR_HELP),
) -> None:
    """Export every configured account, one worker per account.

    What:
      Resolve the configuration once, reject invalid accounts, and start an
      export task for each valid one.

    How:
      Results are polled from :class:`TaskCoordinator` until no task is
      pending, then printed with :func:`~mailmark.tasks.describe`.
    """

    try:
        resolution, _ = load_resolved(config)
    except ConfigLoadError as exc:
        outcome = actions.ActionOutcome.error(exc.title, str(exc))
        _emit(outcome)
        raise typer.Exit(code=1) from exc

    outcomes = [actions.ActionOutcome.error(error.title, str(error)) for error in resolution.errors]
    for outcome in outcomes:
        _emit(outcome)
    if not resolution.accounts and not outcomes:
        _emit(actions.ActionOutcome.error("No accounts", "accounts.yaml defines no accounts"))
        raise typer.Exit(code=1)

    coordinator = TaskCoordinator()
    for account in resolution.accounts:
        coordinator.submit(
            account.name,
            lambda name=account.name: actions.export_account(name, config_directory=config),
        )
    while True:
        for result in coordinator.poll():
            outcomes.append(result.outcome)
            typer.echo(describe(result.outcome), err=not result.outcome.ok)
        if coordinator.pending == 0:
            for result in coordinator.poll():
                outcomes.append(result.outcome)
                typer.echo(describe(result.outcome), err=not result.outcome.ok)
            break
        time.sleep(POLL_INTERVAL_SECONDS)
    LOGGER.info("export_all_completed accounts=%s", len(resolution.accounts))
    _finish(outcomes)


@app.command("sort")
def sort(
    name: str = typer.Argument(..., help="Account whose export directory is categorised"),
    rules: Optional[Path] = typer.Option(
        None, "--rules", help="Rule file (defaults to sort_config.json in the config directory)"
    ),
    config: Optional[Path] = typer.Option(None, "--config-dir", help=_CONFIG_DIR_HELP),
) -> None:
    """Categorise exported documents into delete, summarize and keep."""

    outcome = actions.sort_account(name, config_directory=config, rules_path=rules)
    _emit(outcome)
    _finish([outcome])


@app.command("fix")
def fix(
    directory: Path = typer.Argument(..., help="Export directory to scan"),
    apply: bool = typer.Option(False, "--apply", help="Write changes instead of a dry run"),
) -> None:
    """Repair legacy frontmatter that plain YAML loaders reject."""

    outcome = actions.fix_directory(directory, apply=apply)
    _emit(outcome)
    _finish([outcome])


@app.command("accounts")
def accounts(
    config: Optional[Path] = typer.Option(None, "--config-dir", help=_CONFIG_DIR_HELP),
) -> None:
    """List resolved accounts with their export directory."""

    try:
        resolution, _ = load_resolved(config)
    except ConfigLoadError as exc:
        _emit(actions.ActionOutcome.error(exc.title, str(exc)))
        raise typer.Exit(code=1) from exc
    for account in resolution.accounts:
        password = "password set" if account.password else "no password"
        typer.echo(f"{account.name}\t{account.server}:{account.port}\t{account.export_directory}\t{password}")
    for error in resolution.errors:
        typer.echo(f"{error.title}: {error}", err=True)
    if resolution.errors:
        raise typer.Exit(code=1)


@app.command("set-export-dir")
def set_export_dir(
    path: Path = typer.Argument(..., help="Base directory for every account's export"),
    config: Optional[Path] = typer.Option(None, "--config-dir", help=_CONFIG_DIR_HELP),
) -> None:
    """Store the export base directory in settings.yaml."""

    paths = config_dir(config)
    try:
        set_export_base_dir(paths.settings, path.expanduser())
    except (ConfigLoadError, OSError) as exc:
        LOGGER.exception("set_export_dir_failed: %s", exc)
        _emit(actions.ActionOutcome.error("Settings not saved", str(exc)))
        raise typer.Exit(code=1) from exc
    _emit(actions.ActionOutcome.success("Settings saved", f"export_base_dir = {path.expanduser()}"))


def main() -> None:
    """Console script entry point."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
