"""Expose the public utility surface for mailmark.

What:
  Re-export the logging, identifier and retry helpers that the rest of the
  package imports without knowing the module layout.

Interfaces:
  ``get_logger``, ``JsonLogger``, ``new_run_id``, ``checksum``,
  ``short_hash``, ``with_retry``.
"""

from .ids import checksum, new_run_id, short_hash
from .logging import JsonLogger, get_logger
from .retry import with_retry

__all__ = [
    "get_logger",
    "JsonLogger",
    "new_run_id",
    "checksum",
    "short_hash",
    "with_retry",
]
