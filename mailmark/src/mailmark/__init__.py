"""
Module: mailmark.__init__

What:
  Package root for mailmark, the IMAP-to-Markdown archiver. Exposes the
  namespace segments used by the command-line tools: configuration resolution,
  the export and categorisation core, the IMAP session layer, and utilities.

Why:
  Entry points and tests import subpackages by name. Keeping the list explicit
  documents which parts of the tree are meant to be consumed from outside.

How:
  Declare ``__all__`` with the public subpackages only. Helper modules such as
  :mod:`mailmark.tasks` are imported directly by their callers.

Interfaces:
  - config: accounts/settings/rules loading and the account resolver.
  - core: message transform, mailbox exporter, contact ledger, category engine.
  - imap: authenticated session wrapper and folder name handling.
  - utils: logging, MIME, text, identifier and retry helpers.

Invariants:
  - Importing the package performs no I/O and opens no network connection.
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "core",
    "imap",
    "utils",
]
