"""Authenticated IMAP session used by the mailbox exporter.

What:
  Wrap :class:`imapclient.IMAPClient` in a context manager that opens one
  authenticated session per account, lists folders with both their wire and
  decoded names, and exposes the few UID-based read/delete calls the export
  pipeline needs.

Why:
  The exporter should read like a description of the export, not of the IMAP
  protocol. Timeouts, bounded retry of connect/login/fetch, and folder name
  decoding all live here so the exporter can stay protocol-agnostic and tests
  can swap the network for an in-memory backend.

How:
  ``IMAPClient`` is created with a :class:`~imapclient.imapclient.SocketTimeout`
  built from :class:`~mailmark.config.schema.NetworkSettings`. ``folder_encode``
  is switched off so LIST returns raw modified UTF-7 names, which are decoded
  by :mod:`mailmark.imap.folders` and passed back untouched to SELECT.

Interfaces:
  :class:`ImapSession`, :class:`ExportError`.

Invariants & Safety:
  - All message operations use UIDs.
  - Bodies are fetched with ``BODY.PEEK[]`` so exporting never marks mail as
    read.
  - Folders are selected read-only unless deletion after export is enabled.
"""
from __future__ import annotations

import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError
from imapclient.imapclient import SocketTimeout

from ..config.loader import MissingPasswordError
from ..config.schema import NetworkSettings, ResolvedAccount
from ..utils.logging import JsonLogger, get_logger
from ..utils.retry import with_retry
from .folders import FolderInfo


HEADER_FETCH = "BODY.PEEK[HEADER]"
BODY_FETCH = "BODY.PEEK[]"
HEADER_KEY = b"BODY[HEADER]"
BODY_KEY = b"BODY[]"
FETCH_BATCH = 200


class ExportError(RuntimeError):
    """Terminal per-account failure, such as a connection that never came up."""

    title = "Export failed"


class ImapSession:
    """Context manager owning one IMAP connection for one account.

    What:
      Connects and logs in on ``__enter__`` and logs out on ``__exit__``.
      Methods map one-to-one onto the steps of an export.

    Why:
      One protocol session is not safe to share, so the session object is
      created by the export run that uses it and never handed elsewhere.

    How:
      Network calls that may fail transiently go through
      :func:`~mailmark.utils.retry.with_retry`.
    """

    def __init__(
        self,
        account: ResolvedAccount,
        network: Optional[NetworkSettings] = None,
        *,
        logger: Optional[JsonLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._account = account
        self._network = network or NetworkSettings()
        self._logger = logger or get_logger("mailmark.imap")
        self._sleep = sleep
        self._client: Optional[IMAPClient] = None
        self._selected: Optional[FolderInfo] = None

    def __enter__(self) -> "ImapSession":
        """Connect, log in and return the session.

        Raises:
          MissingPasswordError: When no password was resolved for the account.
          ExportError: When connecting or logging in fails after retries.
        """

        if not self._account.password:
            raise MissingPasswordError(
                f"No password for account '{self._account.name}' "
                "(set <NAME>_PASSWORD or <NAME>_APPLICATION_PASSWORD)"
            )
        timeout = SocketTimeout(
            connect=self._network.connect_timeout, read=self._network.read_timeout
        )
        try:
            client = self._retry(
                "connect",
                lambda: IMAPClient(
                    self._account.server, port=self._account.port, ssl=True, timeout=timeout
                ),
            )
            client.folder_encode = False
            self._retry(
                "login", lambda: client.login(self._account.username, self._account.password)
            )
        except (IMAPClientError, OSError) as exc:
            raise ExportError(
                f"Unable to open IMAP session for {self._account.server}:{self._account.port}: {exc}"
            ) from exc
        self._client = client
        self._logger.info(
            "imap_connected", account=self._account.name, server=self._account.server
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._client is None:
            return
        try:
            self._client.logout()
        except (IMAPClientError, OSError) as error:
            self._logger.warning("imap_logout_failed", account=self._account.name, error=str(error))
        finally:
            self._client = None
            self._selected = None

    def _retry(self, operation: str, fn):
        return with_retry(
            operation, fn, settings=self._network, logger=self._logger, sleep=self._sleep
        )

    @property
    def client(self) -> IMAPClient:
        if self._client is None:
            raise RuntimeError("IMAP session not connected")
        return self._client

    def list_folders(self) -> List[FolderInfo]:
        """Return every folder reported by LIST, in server order."""

        listing = self._retry("list_folders", lambda: self.client.list_folders())
        return [
            FolderInfo.from_listing(flags, delimiter, name) for flags, delimiter, name in listing
        ]

    def select(self, folder: FolderInfo, *, readonly: bool = True) -> None:
        self._retry("select", lambda: self.client.select_folder(folder.raw, readonly=readonly))
        self._selected = folder

    def search_all(self) -> List[int]:
        """Return the UIDs of every message in the selected folder, ascending."""

        return sorted(self._retry("search", lambda: self.client.search(["ALL"])))

    def fetch_headers(self, uids: Sequence[int]) -> Dict[int, bytes]:
        """Fetch header blocks for ``uids`` in batches.

        Messages the server omits from the response are absent from the result.
        """

        headers: Dict[int, bytes] = {}
        for start in range(0, len(uids), FETCH_BATCH):
            batch = list(uids[start:start + FETCH_BATCH])
            response = self._retry("fetch_headers", lambda: self.client.fetch(batch, [HEADER_FETCH]))
            for uid, data in response.items():
                payload = data.get(HEADER_KEY)
                if payload is not None:
                    headers[uid] = payload
        return headers

    def fetch_message(self, uid: int) -> bytes:
        """Fetch the complete raw message for ``uid``.

        Raises:
          ExportError: When the server returns no body for ``uid``.
        """

        response = self._retry("fetch_message", lambda: self.client.fetch([uid], [BODY_FETCH]))
        data = response.get(uid) or {}
        payload = data.get(BODY_KEY)
        if payload is None:
            raise ExportError(f"Server returned no body for UID {uid}")
        return payload

    def delete(self, uids: Iterable[int]) -> None:
        """Flag ``uids`` as deleted in the selected folder and expunge."""

        uid_list = list(uids)
        if not uid_list:
            return
        self._retry("delete", lambda: self.client.delete_messages(uid_list))
        self._retry("expunge", lambda: self.client.expunge())
