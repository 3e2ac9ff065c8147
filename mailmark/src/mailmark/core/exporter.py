"""Mailbox exporter: walk an account's folders and write the Markdown archive.

What:
  Open one IMAP session for a resolved account, enumerate its folders minus the
  ignored ones, and for every message either skip it (already on disk) or
  transform and write it together with its attachments. Tracks
  :class:`ExportStats` and optionally feeds a :class:`ContactLedger` and
  deletes exported messages from the server.

Why:
  The archive on disk is the only record of what was exported. Deriving
  filenames from headers and checking for them before downloading bodies makes
  re-runs cheap and idempotent, and recovering per message keeps one malformed
  mail from wasting a multi-hour run.

How:
  Folders and messages are processed sequentially on a single
  :class:`~mailmark.imap.client.ImapSession`. For each folder the exporter
  fetches all header blocks, computes filenames, and downloads only the
  messages whose file is absent (or all of them when ``skip_existing`` is
  off). Messages without a ``Message-ID`` are always downloaded because their
  filename depends on the raw bytes. Failures inside the per-message step are logged with
  :class:`~mailmark.utils.logging.JsonLogger` and counted.

Interfaces:
  :class:`ExportStats`, :class:`FolderStats`, :class:`MailboxExporter`.

Invariants & Safety:
  - Counters only increase during a run and start from zero on each call to
    :meth:`MailboxExporter.export`.
  - With ``skip_existing`` enabled an existing document is never rewritten.
  - Attachments never overwrite a different file: a clashing name gets the
    message hash as prefix.
  - Only messages whose document exists on disk are ever deleted remotely.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config.schema import NetworkSettings, ResolvedAccount, SignatureImagePolicy
from ..imap.client import ExportError, ImapSession
from ..imap.folders import FolderInfo, is_ignored
from ..utils.ids import new_run_id
from ..utils.logging import JsonLogger, get_logger
from ..utils.mime import parse_headers
from .contacts import ContactLedger, owner_addresses
from .transform import (
    TransformedMessage,
    attachment_filename,
    build_filename,
    has_message_id,
    transform_message,
)


CONTACTS_FILENAME = "contacts.csv"
ATTACHMENTS_DIRNAME = "attachments"


@dataclass
class FolderStats:
    """Counters for one folder."""

    exported: int = 0
    skipped: int = 0
    errors: int = 0
    deleted: int = 0


@dataclass
class ExportStats:
    """Counters for one export run.

    Attributes:
      exported: Messages written during this run.
      skipped: Messages whose document already existed.
      errors: Messages that failed and were left for the next run.
      folders: Per-folder breakdown keyed by decoded folder name.
      attachments_written: Attachment files written.
      signature_images_skipped: Attachments dropped as signature images.
    """

    exported: int = 0
    skipped: int = 0
    errors: int = 0
    folders: Dict[str, FolderStats] = field(default_factory=dict)
    attachments_written: int = 0
    signature_images_skipped: int = 0

    @property
    def total(self) -> int:
        return self.exported + self.skipped + self.errors

    def summary(self) -> str:
        return f"{self.exported} exported, {self.skipped} skipped, {self.errors} errors"


SessionFactory = Callable[[ResolvedAccount], ImapSession]


class MailboxExporter:
    """Export every folder of an account to Markdown files.

    What:
      Implements ``export(account) -> ExportStats``.

    Why:
      Account-level configuration (quote depth, signature policy, deletion)
      is applied the same way to every message, so the exporter takes the
      resolved account per call and the shared policies at construction.

    How:
      Sessions come from ``session_factory`` so tests can substitute an
      in-memory backend; by default a real :class:`ImapSession` is opened.
    """

    def __init__(
        self,
        *,
        signature_policy: Optional[SignatureImagePolicy] = None,
        network: Optional[NetworkSettings] = None,
        logger: Optional[JsonLogger] = None,
        session_factory: Optional[SessionFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._policy = signature_policy or SignatureImagePolicy()
        self._network = network or NetworkSettings()
        self._logger = logger or get_logger("mailmark.export")
        self._sleep = sleep
        self._session_factory = session_factory or self._open_session

    def _open_session(self, account: ResolvedAccount) -> ImapSession:
        return ImapSession(account, self._network, logger=self._logger, sleep=self._sleep)

    def export(self, account: ResolvedAccount) -> ExportStats:
        """Export ``account`` and return the run's counters.

        What:
          Connects, walks every selectable and non-ignored folder, writes
          documents and attachments under ``account.export_directory``, then
          writes ``contacts.csv`` when contact collection is enabled.

        Raises:
          MissingPasswordError: When the account has no password.
          ExportError: When the session cannot be opened, or a folder cannot
            be listed or selected after retries.
        """

        run_id = new_run_id()
        stats = ExportStats()
        export_root = Path(account.export_directory)
        ledger = (
            ContactLedger(owner_addresses(account.username, account.name))
            if account.collect_contacts
            else None
        )
        self._logger.info(
            "export_started",
            run_id=run_id,
            account=account.name,
            export_directory=account.export_directory,
        )
        try:
            with self._session_factory(account) as session:
                try:
                    folders = session.list_folders()
                except Exception as exc:
                    raise ExportError(
                        f"Unable to list folders for '{account.name}': {exc}"
                    ) from exc
                for folder in folders:
                    if not folder.selectable:
                        continue
                    if is_ignored(folder, account.ignored_folders):
                        self._logger.info("folder_ignored", run_id=run_id, folder=folder.name)
                        continue
                    folder_stats = stats.folders.setdefault(folder.name, FolderStats())
                    self._export_folder(
                        session, account, folder, export_root, stats, folder_stats, ledger, run_id
                    )
        finally:
            # Contacts of messages already on disk are recorded even when a
            # later folder fails.
            if ledger is not None and len(ledger):
                ledger.write_csv(export_root / CONTACTS_FILENAME)
        self._logger.info(
            "export_finished",
            run_id=run_id,
            account=account.name,
            exported=stats.exported,
            skipped=stats.skipped,
            errors=stats.errors,
        )
        return stats

    def _export_folder(
        self,
        session: ImapSession,
        account: ResolvedAccount,
        folder: FolderInfo,
        export_root: Path,
        stats: ExportStats,
        folder_stats: FolderStats,
        ledger: Optional[ContactLedger],
        run_id: str,
    ) -> None:
        try:
            session.select(folder, readonly=not account.delete_after_export)
            uids = session.search_all()
            headers_by_uid = session.fetch_headers(uids) if uids else {}
        except ExportError:
            raise
        except Exception as exc:
            raise ExportError(f"Unable to read folder '{folder.name}': {exc}") from exc

        on_disk: List[int] = []
        for uid in uids:
            try:
                outcome = self._export_message(
                    session, account, folder, export_root, uid, headers_by_uid.get(uid), stats, ledger
                )
            except Exception as exc:
                stats.errors += 1
                folder_stats.errors += 1
                self._logger.error(
                    "message_failed",
                    run_id=run_id,
                    account=account.name,
                    folder=folder.name,
                    uid=uid,
                    error=f"{type(exc).__name__}: {exc}",
                )
                continue
            if outcome == "skipped":
                stats.skipped += 1
                folder_stats.skipped += 1
            else:
                stats.exported += 1
                folder_stats.exported += 1
                self._logger.debug("message_exported", run_id=run_id, folder=folder.name, uid=uid)
            on_disk.append(uid)

        if account.delete_after_export and on_disk:
            try:
                session.delete(on_disk)
            except Exception as exc:
                self._logger.error(
                    "delete_failed",
                    run_id=run_id,
                    account=account.name,
                    folder=folder.name,
                    count=len(on_disk),
                    error=str(exc),
                )
                stats.errors += 1
                folder_stats.errors += 1
            else:
                folder_stats.deleted += len(on_disk)
                self._logger.info(
                    "messages_deleted", run_id=run_id, folder=folder.name, count=len(on_disk)
                )

    def _export_message(
        self,
        session: ImapSession,
        account: ResolvedAccount,
        folder: FolderInfo,
        export_root: Path,
        uid: int,
        header_block: Optional[bytes],
        stats: ExportStats,
        ledger: Optional[ContactLedger],
    ) -> str:
        """Export one message and return ``"exported"`` or ``"skipped"``.

        For messages with a ``Message-ID`` the header block decides whether the
        body is downloaded at all. Messages without one are named from their
        raw bytes, so their body is always fetched before the skip check. The
        filename from the full parse is checked again before writing.
        """

        if header_block is None:
            raise ExportError(f"Server returned no headers for UID {uid}")
        headers = parse_headers(header_block)
        if (
            account.skip_existing
            and has_message_id(headers)
            and (export_root / build_filename(headers)).exists()
        ):
            return "skipped"
        message = transform_message(
            session.fetch_message(uid),
            folder=folder.name,
            quote_depth=account.quote_depth,
            skip_signature_images=account.skip_signature_images,
            policy=self._policy,
        )
        target = export_root / message.filename
        if account.skip_existing and target.exists():
            return "skipped"
        written = self._write_attachments(message, export_root, folder)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(message.render(written), encoding="utf-8")
        stats.attachments_written += len(written)
        stats.signature_images_skipped += len(message.skipped_attachments)
        if ledger is not None:
            ledger.add_message(message.headers)
        return "exported"

    def _write_attachments(
        self, message: TransformedMessage, export_root: Path, folder: FolderInfo
    ) -> List[str]:
        """Write kept attachments and return their paths relative to ``export_root``.

        A name already used by a file with different bytes gets the message
        hash as a prefix; a file with identical bytes is reused.
        """

        if not message.attachments:
            return []
        directory = export_root / ATTACHMENTS_DIRNAME / folder.relative_path
        directory.mkdir(parents=True, exist_ok=True)
        written: List[str] = []
        for part in message.attachments:
            name = attachment_filename(part)
            path = directory / name
            if path.exists() and path.read_bytes() != part.payload:
                path = directory / f"{message.identity_hash}_{name}"
            if not path.exists() or path.read_bytes() != part.payload:
                path.write_bytes(part.payload)
            written.append(path.relative_to(export_root).as_posix())
        return written
