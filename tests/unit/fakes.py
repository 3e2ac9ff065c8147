"""In-memory IMAP backend used by unit and end-to-end tests.

What:
  Provide a drop-in replacement for :class:`imapclient.IMAPClient` that stores
  raw messages per folder and answers the subset of the API the exporter
  uses: LIST, SELECT, SEARCH, FETCH of header and full bodies, and deletion.

Why:
  Export runs must be exercised without contacting real servers. Keeping the
  mailbox in dictionaries also lets tests assert on what was selected,
  fetched and deleted.

How:
  Folders map wire names to ``{uid: raw_bytes}``. :meth:`FakeImapBackend.connect`
  stands in for the ``IMAPClient`` constructor and can be told to fail a
  number of times first. :func:`build_message` assembles RFC822 payloads with
  :class:`email.message.EmailMessage`.

Interfaces:
  :class:`FakeImapBackend`, :func:`build_message`.

Invariants & Safety:
  - UIDs increment monotonically per backend instance.
  - Methods never touch the network.
"""

from __future__ import annotations

from email import policy
from email.message import EmailMessage
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from imapclient.exceptions import IMAPClientError, LoginError


def build_message(
    *,
    sender: str = "John Doe <john@example.com>",
    to: str = "jane.doe@example.com",
    cc: Optional[str] = None,
    subject: str = "Project update",
    date: str = "Tue, 02 Jan 2024 10:00:00 +0000",
    message_id: Optional[str] = "<m1@example.com>",
    body: str = "Hello Jane,\n\nThe report is attached.\n",
    html: Optional[str] = None,
    attachments: Sequence[Tuple[str, str, bytes]] = (),
    extra_headers: Optional[Dict[str, str]] = None,
) -> bytes:
    """Assemble a raw message.

    Args:
      attachments: ``(filename, mime_type, payload)`` triples.
      extra_headers: Additional headers such as ``List-Id``.
    """

    message = EmailMessage(policy=policy.SMTP)
    message["From"] = sender
    message["To"] = to
    if cc:
        message["Cc"] = cc
    message["Subject"] = subject
    if date:
        message["Date"] = date
    if message_id:
        message["Message-ID"] = message_id
    for name, value in (extra_headers or {}).items():
        message[name] = value
    message.set_content(body)
    if html is not None:
        message.add_alternative(html, subtype="html")
    for filename, mime_type, payload in attachments:
        maintype, subtype = mime_type.split("/", 1)
        message.add_attachment(payload, maintype=maintype, subtype=subtype, filename=filename)
    return message.as_bytes()


def _header_block(raw: bytes) -> bytes:
    for separator in (b"\r\n\r\n", b"\n\n"):
        index = raw.find(separator)
        if index != -1:
            return raw[: index + len(separator)]
    return raw


class FakeImapBackend:
    """Minimal IMAP backend satisfying the subset the exporter relies upon.

    Attributes:
      folders: Wire folder name to ``{uid: raw message}``.
      flags: Wire folder name to LIST flags.
      selected: Folder selected last, ``None`` before the first SELECT.
      selections: ``(folder, readonly)`` pairs in call order.
      fetched_bodies: UIDs whose full body was requested.
      deleted: ``(folder, uids)`` pairs passed to ``delete_messages``.
      connect_failures: Remaining connection attempts that raise
        :class:`ConnectionRefusedError`.
      select_failures: Remaining SELECT calls that raise
        :class:`ConnectionResetError`.
      broken_uids: UIDs whose full body fetch returns nothing.
      broken_folders: Folders listed by LIST whose SELECT always fails.
    """

    def __init__(self, password: str = "secret", delimiter: str = "/") -> None:
        self.password = password
        self.delimiter = delimiter
        self.folders: Dict[str, Dict[int, bytes]] = {"INBOX": {}}
        self.flags: Dict[str, Tuple[bytes, ...]] = {"INBOX": (b"\\HasNoChildren",)}
        self.selected: Optional[str] = None
        self.selections: List[Tuple[str, bool]] = []
        self.fetched_bodies: List[int] = []
        self.deleted: List[Tuple[str, List[int]]] = []
        self.connect_failures = 0
        self.connect_calls = 0
        self.select_failures = 0
        self.broken_uids: set[int] = set()
        self.broken_folders: set[str] = set()
        self.logged_in = False
        self.logged_out = False
        self.folder_encode = True
        self.uid_counter = 1

    # Session management -------------------------------------------------
    def connect(self, host: str, port: int = 993, ssl: bool = True, timeout=None) -> "FakeImapBackend":
        """Stand in for the ``IMAPClient`` constructor."""

        self.connect_calls += 1
        self.host = host
        self.port = port
        self.timeout = timeout
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise ConnectionRefusedError(f"connection to {host}:{port} refused")
        return self

    def login(self, username: str, password: str) -> None:
        if password != self.password:
            raise LoginError("[AUTHENTICATIONFAILED] Invalid credentials")
        self.username = username
        self.logged_in = True

    def logout(self) -> None:
        self.logged_out = True

    # Mailbox helpers ----------------------------------------------------
    def add_folder(self, name: str, flags: Iterable[bytes] = (b"\\HasNoChildren",)) -> None:
        self.folders.setdefault(name, {})
        self.flags[name] = tuple(flags)

    def append(self, folder: str, raw: bytes) -> int:
        """Store ``raw`` in ``folder`` and return its UID."""

        if folder not in self.folders:
            self.add_folder(folder)
        uid = self.uid_counter
        self.folders[folder][uid] = raw
        self.uid_counter += 1
        return uid

    def list_folders(self):
        return [
            (self.flags.get(name, ()), self.delimiter.encode("ascii"), name.encode("ascii"))
            for name in self.folders
        ]

    def select_folder(self, name: str, readonly: bool = False):
        if self.select_failures > 0:
            self.select_failures -= 1
            raise ConnectionResetError("connection reset during SELECT")
        if name not in self.folders or name in self.broken_folders:
            raise IMAPClientError(f"SELECT failed: no such folder {name}")
        self.selected = name
        self.selections.append((name, readonly))
        return {b"EXISTS": len(self.folders[name])}

    # Message operations -------------------------------------------------
    def search(self, criteria):
        return list(self.folders[self.selected])

    def fetch(self, uids: Iterable[int], parts: Iterable[str]):
        requested = [part.upper() for part in parts]
        mailbox = self.folders[self.selected]
        response: Dict[int, Dict[bytes, bytes]] = {}
        for uid in uids:
            if uid not in mailbox:
                continue
            raw = mailbox[uid]
            payload: Dict[bytes, bytes] = {}
            for part in requested:
                if part in {"BODY.PEEK[HEADER]", "BODY[HEADER]"}:
                    payload[b"BODY[HEADER]"] = _header_block(raw)
                elif part in {"BODY.PEEK[]", "BODY[]"}:
                    self.fetched_bodies.append(uid)
                    if uid not in self.broken_uids:
                        payload[b"BODY[]"] = raw
            response[uid] = payload
        return response

    def delete_messages(self, uids: Iterable[int]) -> None:
        uid_list = list(uids)
        self.deleted.append((self.selected, uid_list))
        for uid in uid_list:
            self.folders[self.selected].pop(uid, None)

    def expunge(self) -> None:
        return None
