"""User-facing operations returning a displayable outcome.

What:
  Implement ``export``, ``export-all``, ``sort`` and ``fix`` as plain functions
  that load configuration, run the core, and return an :class:`ActionOutcome`
  with a title and a message. None of them raises.

Why:
  The command line and the background task coordinator both need the same
  operations and the same error presentation: one title and one message per
  invocation. Returning a tagged value instead of raising lets the coordinator
  move results across a thread boundary without special cases.

How:
  Configuration errors (:class:`~mailmark.config.loader.ConfigLoadError`)
  and terminal export failures (:class:`~mailmark.imap.client.ExportError`)
  map to ``error`` outcomes carrying their title. Unexpected exceptions are
  logged with their traceback and also become ``error`` outcomes.

Interfaces:
  :class:`ActionOutcome`, :func:`export_account`, :func:`export_all`,
  :func:`sort_account`, :func:`fix_directory`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, Literal, Mapping, Optional, Union

from .config.loader import ConfigLoadError, config_dir, load_sort_rules
from .config.resolver import Resolution, find_account, load_resolved
from .config.schema import ResolvedAccount
from .core.categorize import sort_directory, write_report
from .core.exporter import MailboxExporter
from .core.repair import repair_directory
from .imap.client import ExportError


LOGGER = logging.getLogger("mailmark.actions")

OutcomeKind = Literal["success", "imported", "error"]


@dataclass(frozen=True)
class ActionOutcome:
    """Terminal result of one operation.

    Attributes:
      kind: ``success`` when everything worked, ``imported`` when the run
        completed but some messages failed, ``error`` when it did not run.
      title: Short headline.
      message: Human-readable detail.
      stats: Optional structured payload (export stats, sort report...).
    """

    kind: OutcomeKind
    title: str
    message: str
    stats: Any = None

    @property
    def ok(self) -> bool:
        return self.kind != "error"

    @classmethod
    def success(cls, title: str, message: str, stats: Any = None) -> "ActionOutcome":
        return cls("success", title, message, stats)

    @classmethod
    def imported(cls, title: str, message: str, stats: Any = None) -> "ActionOutcome":
        return cls("imported", title, message, stats)

    @classmethod
    def error(cls, title: str, message: str) -> "ActionOutcome":
        return cls("error", title, message)


ConfigDir = Optional[Union[str, Path]]


def _rejected(resolution: Resolution, name: str) -> Optional[ActionOutcome]:
    for error in resolution.errors:
        if error.account.lower() == name.lower():
            return ActionOutcome.error(error.title, str(error))
    return None


def _run_export(account: ResolvedAccount, exporter: MailboxExporter) -> ActionOutcome:
    try:
        stats = exporter.export(account)
    except (ConfigLoadError, ExportError) as exc:
        return ActionOutcome.error(exc.title, str(exc))
    except Exception as exc:
        LOGGER.exception("export_crashed account=%s", account.name)
        return ActionOutcome.error("Export failed", f"{type(exc).__name__}: {exc}")
    message = f"{account.name}: {stats.summary()} -> {account.export_directory}"
    if stats.errors:
        return ActionOutcome.imported("Export finished with errors", message, stats)
    return ActionOutcome.success("Export complete", message, stats)


def export_account(
    name: str,
    *,
    config_directory: ConfigDir = None,
    environ: Optional[Mapping[str, str]] = None,
    exporter: Optional[MailboxExporter] = None,
) -> ActionOutcome:
    """Export the account called ``name``."""

    try:
        resolution, settings = load_resolved(config_directory, environ)
        rejected = _rejected(resolution, name)
        if rejected is not None:
            return rejected
        account = find_account(resolution.accounts, name)
    except ConfigLoadError as exc:
        return ActionOutcome.error(exc.title, str(exc))
    exporter = exporter or MailboxExporter(
        signature_policy=settings.signature_images, network=settings.network
    )
    return _run_export(account, exporter)


def export_all(
    *,
    config_directory: ConfigDir = None,
    environ: Optional[Mapping[str, str]] = None,
    exporter: Optional[MailboxExporter] = None,
) -> List[ActionOutcome]:
    """Export every valid account; rejected accounts yield ``error`` outcomes."""

    try:
        resolution, settings = load_resolved(config_directory, environ)
    except ConfigLoadError as exc:
        return [ActionOutcome.error(exc.title, str(exc))]
    outcomes = [ActionOutcome.error(error.title, str(error)) for error in resolution.errors]
    exporter = exporter or MailboxExporter(
        signature_policy=settings.signature_images, network=settings.network
    )
    for account in resolution.accounts:
        outcomes.append(_run_export(account, exporter))
    if not outcomes:
        outcomes.append(ActionOutcome.error("No accounts", "accounts.yaml defines no accounts"))
    return outcomes


def sort_account(
    name: str,
    *,
    config_directory: ConfigDir = None,
    environ: Optional[Mapping[str, str]] = None,
    rules_path: Optional[Path] = None,
    now: Optional[datetime] = None,
) -> ActionOutcome:
    """Categorise the exported documents of ``name`` and write the report."""

    try:
        paths = config_dir(config_directory, environ)
        resolution, _ = load_resolved(paths, environ)
        rejected = _rejected(resolution, name)
        if rejected is not None:
            return rejected
        account = find_account(resolution.accounts, name)
        rules = load_sort_rules(rules_path or paths.sort_rules)
    except ConfigLoadError as exc:
        return ActionOutcome.error(exc.title, str(exc))

    directory = Path(account.export_directory)
    if not directory.is_dir():
        return ActionOutcome.error(
            "Nothing to sort", f"Export directory {directory} does not exist; run export first"
        )
    try:
        report = sort_directory(directory, rules, now=now)
        target = write_report(report)
    except OSError as exc:
        return ActionOutcome.error("Sort failed", str(exc))
    counts = report.counts()
    message = (
        f"{account.name}: {counts['delete']} delete, {counts['summarize']} summarize, "
        f"{counts['keep']} keep -> {target}"
    )
    if report.errors:
        return ActionOutcome.imported(
            "Sort finished with errors", f"{message} ({len(report.errors)} unreadable)", report
        )
    return ActionOutcome.success("Sort complete", message, report)


def fix_directory(directory: Union[str, Path], *, apply: bool = False) -> ActionOutcome:
    """Repair legacy frontmatter under ``directory``; dry run unless ``apply``."""

    root = Path(directory).expanduser()
    if not root.is_dir():
        return ActionOutcome.error("Nothing to fix", f"{root} is not a directory")
    stats = repair_directory(root, dry_run=not apply)
    mode = "applied" if apply else "dry run"
    message = f"{root}: {stats.summary()} ({mode})"
    if stats.errors:
        return ActionOutcome.imported("Repair finished with errors", message, stats)
    return ActionOutcome.success("Repair complete", message, stats)
