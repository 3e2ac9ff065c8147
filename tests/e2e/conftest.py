"""Fixtures for end-to-end tests driving the command line against a fake server.

What:
  Reuse :class:`FakeImapBackend` from the unit suite and install it in place
  of ``IMAPClient`` for whole command invocations.

How:
  Put ``tests/unit`` on ``sys.path`` so :mod:`fakes` imports the same way in
  both suites.
"""

import sys
from pathlib import Path

import pytest

UNIT_DIR = Path(__file__).resolve().parents[1] / "unit"
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeImapBackend


@pytest.fixture
def imap_backend(monkeypatch: pytest.MonkeyPatch) -> FakeImapBackend:
    backend = FakeImapBackend()
    monkeypatch.setattr("mailmark.imap.client.IMAPClient", backend.connect)
    return backend


@pytest.fixture
def work_account(write_config):
    """Configure one account ``work`` whose password lives in ``.env``."""

    return write_config(
        [{"name": "work", "server": "imap.example.com", "username": "me@example.com"}],
        env={"WORK_PASSWORD": "secret"},
    )
