"""Pytest fixtures for unit tests requiring IMAP fakes.

What:
  Make ``tests/unit`` importable and expose fixtures for the in-memory IMAP
  backend and for resolved accounts pointing at a temporary archive.

Why:
  Exporter and session tests interact with the IMAP client constructor.
  Replacing it with :class:`FakeImapBackend` keeps message flows
  deterministic and offline.

How:
  Monkeypatch ``mailmark.imap.client.IMAPClient`` with
  :meth:`FakeImapBackend.connect` and build :class:`ResolvedAccount` objects
  with the built-in behaviour defaults.

Interfaces:
  :func:`imap_backend`, :func:`make_account`, :func:`no_sleep` (fixtures).
"""

import sys
from pathlib import Path

import pytest

from mailmark.config.schema import ResolvedAccount

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeImapBackend


@pytest.fixture
def imap_backend(monkeypatch: pytest.MonkeyPatch) -> FakeImapBackend:
    """Return a fresh backend installed in place of ``IMAPClient``."""

    backend = FakeImapBackend()
    monkeypatch.setattr("mailmark.imap.client.IMAPClient", backend.connect)
    return backend


@pytest.fixture
def no_sleep():
    """Collect requested delays instead of sleeping."""

    delays = []
    return delays


@pytest.fixture
def make_account(tmp_path: Path):
    """Return a factory for :class:`ResolvedAccount` exporting under ``tmp_path``."""

    def _make(**overrides) -> ResolvedAccount:
        fields = {
            "name": "work",
            "server": "imap.example.com",
            "port": 993,
            "username": "me@example.com",
            "ignored_folders": [],
            "quote_depth": 1,
            "skip_existing": True,
            "collect_contacts": False,
            "skip_signature_images": True,
            "delete_after_export": False,
            "export_directory": str(tmp_path / "archive" / "work"),
            "password": "secret",
        }
        fields.update(overrides)
        return ResolvedAccount(**fields)

    return _make
