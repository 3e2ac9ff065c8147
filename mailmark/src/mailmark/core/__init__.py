"""Aggregated exports for mailmark's archiving core.

What:
  Provide a package facade over the exporter, the message transform, the
  contact ledger, the category engine and the legacy repair pass.

Why:
  The exporter pulls in ``imapclient`` and ``html2text`` while the sort and
  repair passes only need PyYAML. Resolving names lazily keeps ``mailmark
  sort`` and ``mailmark fix`` from importing the IMAP stack.

How:
  ``__getattr__`` maps each public name to the submodule that owns it and
  imports that submodule on first access.

Interfaces:
  ``MailboxExporter``, ``ExportStats``, ``FolderStats``, ``transform_message``,
  ``TransformedMessage``, ``build_filename``, ``limit_quote_depth``,
  ``is_signature_image``, ``ContactLedger``, ``classify_message``,
  ``ExportedDocument``, ``SortReport``, ``classify``, ``sort_directory``,
  ``write_report``, ``RepairStats``, ``repair_directory``.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

_OWNERS = {
    "MailboxExporter": "exporter",
    "ExportStats": "exporter",
    "FolderStats": "exporter",
    "transform_message": "transform",
    "TransformedMessage": "transform",
    "build_filename": "transform",
    "limit_quote_depth": "transform",
    "is_signature_image": "transform",
    "ContactLedger": "contacts",
    "classify_message": "contacts",
    "ExportedDocument": "categorize",
    "SortReport": "categorize",
    "classify": "categorize",
    "sort_directory": "categorize",
    "write_report": "categorize",
    "RepairStats": "repair",
    "repair_directory": "repair",
}

__all__ = sorted(_OWNERS)


def __getattr__(name: str) -> Any:
    """Import the owning submodule of ``name`` and return the attribute.

    Raises:
      AttributeError: If ``name`` is not part of the public surface.
    """

    owner = _OWNERS.get(name)
    if owner is None:
        raise AttributeError(name)
    return getattr(import_module(f"{__name__}.{owner}"), name)
