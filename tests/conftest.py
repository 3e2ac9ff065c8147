"""Pytest configuration shared by every suite.

What:
  Put the in-repo ``mailmark/src`` tree on ``sys.path`` and isolate each test
  from the user's real configuration directory.

Why:
  The suites must run against the source tree rather than an installed wheel,
  and nothing under ``~/.config/mailmark`` or the process environment may
  leak into a test.

How:
  Prepend the source directory at import time. The autouse
  :func:`config_home` fixture points ``MAILMARK_CONFIG_DIR`` at a fresh
  temporary directory and removes password variables inherited from the shell.

Interfaces:
  :func:`config_home`, :func:`write_config` (pytest fixtures).
"""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailmark" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest
import yaml


@pytest.fixture(autouse=True)
def config_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Return an empty configuration directory registered in the environment."""

    directory = tmp_path / "config"
    directory.mkdir()
    monkeypatch.setenv("MAILMARK_CONFIG_DIR", str(directory))
    for key in list(os.environ):
        if key.endswith("_PASSWORD"):
            monkeypatch.delenv(key, raising=False)
    return directory


@pytest.fixture
def write_config(config_home: Path, tmp_path: Path):
    """Return a helper writing ``accounts.yaml``, ``settings.yaml`` and ``.env``.

    The helper defaults ``export_base_dir`` to ``<tmp_path>/archive`` so the
    exported files land inside the test's temporary directory.
    """

    def _write(accounts, settings=None, env=None) -> Path:
        (config_home / "accounts.yaml").write_text(
            yaml.safe_dump({"accounts": accounts}), encoding="utf-8"
        )
        payload = {"export_base_dir": str(tmp_path / "archive")}
        payload.update(settings or {})
        (config_home / "settings.yaml").write_text(yaml.safe_dump(payload), encoding="utf-8")
        if env:
            lines = [f"{key}={value}" for key, value in env.items()]
            (config_home / ".env").write_text("\n".join(lines) + "\n", encoding="utf-8")
        return config_home

    return _write
