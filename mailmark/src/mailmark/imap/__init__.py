"""Facade for the IMAP integration layer.

What:
  Re-export :class:`~mailmark.imap.client.ImapSession` and the folder helpers
  used by the exporter.

Interfaces:
  ``ImapSession``, ``ExportError``, ``FolderInfo``, ``decode_folder_name``,
  ``encode_folder_name``, ``is_ignored``.
"""

from .client import ExportError, ImapSession
from .folders import FolderInfo, decode_folder_name, encode_folder_name, is_ignored

__all__ = [
    "ExportError",
    "FolderInfo",
    "ImapSession",
    "decode_folder_name",
    "encode_folder_name",
    "is_ignored",
]
