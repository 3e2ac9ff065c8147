"""Folder name handling for IMAP mailboxes.

What:
  Decode and encode modified UTF-7 folder names, decide whether a folder is
  ignored, and map a folder onto a relative path inside the export tree.

Why:
  IMAP servers report non-ASCII folder names in a 7-bit encoding
  (``INBOX.Envoy&AOk-s``). The raw form is what SELECT expects; the decoded
  form is what users write in ``ignored_folders`` and what should appear on
  disk.

How:
  Delegate the codec to :mod:`imapclient.imap_utf7` and keep both forms on a
  :class:`FolderInfo` record.

Interfaces:
  :class:`FolderInfo`, :func:`decode_folder_name`, :func:`encode_folder_name`,
  :func:`is_ignored`, :func:`folder_relative_path`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Tuple, Union

from imapclient import imap_utf7

from ..utils.text import sanitize_filename


NOSELECT_FLAGS = {"\\noselect", "\\nonexistent"}


def decode_folder_name(raw: Union[str, bytes]) -> str:
    """Decode a modified UTF-7 folder name.

    ``"INBOX.&AOk-"`` becomes ``"INBOX.é"`` and ``"Tom &- Jerry"`` becomes
    ``"Tom & Jerry"``. Strings that are not pure ASCII are assumed to be
    decoded already and are returned as-is.
    """

    if isinstance(raw, str):
        try:
            raw = raw.encode("ascii")
        except UnicodeEncodeError:
            return raw
    return imap_utf7.decode(raw)


def encode_folder_name(name: str) -> str:
    """Encode ``name`` to its modified UTF-7 wire form."""

    return imap_utf7.encode(name).decode("ascii")


def _as_text(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("ascii", errors="replace")
    return str(value)


@dataclass(frozen=True)
class FolderInfo:
    """One mailbox as listed by the server.

    Attributes:
      raw: Wire name used for SELECT.
      name: Decoded human-readable name.
      delimiter: Hierarchy delimiter reported by LIST (may be empty).
      flags: Lowercase LIST flags.
    """

    raw: str
    name: str
    delimiter: str = "/"
    flags: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_listing(cls, flags: Iterable, delimiter, raw_name) -> "FolderInfo":
        raw = _as_text(raw_name)
        return cls(
            raw=raw,
            name=decode_folder_name(raw),
            delimiter=_as_text(delimiter),
            flags=tuple(_as_text(flag).lower() for flag in flags or ()),
        )

    @property
    def selectable(self) -> bool:
        return not NOSELECT_FLAGS.intersection(self.flags)

    @property
    def relative_path(self) -> str:
        return folder_relative_path(self.name, self.delimiter)


def is_ignored(folder: FolderInfo, ignored_folders: Iterable[str]) -> bool:
    """Return ``True`` when ``folder`` matches an ignore entry, ignoring case.

    Entries are compared against both the decoded and the raw name.
    """

    candidates = {folder.name.lower(), folder.raw.lower()}
    return any(entry.strip().lower() in candidates for entry in ignored_folders)


def folder_relative_path(name: str, delimiter: str = "/") -> str:
    """Map a decoded folder name onto a relative POSIX path.

    Each hierarchy level becomes one sanitised directory, so
    ``"INBOX.Envoyés"`` with delimiter ``"."`` maps to ``"INBOX/Envoyés"``.
    """

    parts = name.split(delimiter) if delimiter else [name]
    segments = [sanitize_filename(part) for part in parts if part.strip()]
    return "/".join(segments) or "INBOX"
