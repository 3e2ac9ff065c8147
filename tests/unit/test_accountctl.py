"""Unit tests for the ``mailmark-accountctl`` command.

What:
  Drive :func:`mailmark.accountctl.main` through its subcommands and inspect
  the JSON it prints and the ``accounts.yaml`` it writes.

Why:
  Provisioning scripts rely on the tool's exit codes and JSON lines; a
  regression there silently breaks automated setups.

How:
  The autouse ``config_home`` fixture points the default accounts path at a
  temporary directory; output is captured with ``capsys``.
"""
from __future__ import annotations

import json
from pathlib import Path

import yaml

from mailmark.accountctl import main


def _last_json(capsys) -> dict:
    lines = capsys.readouterr().out.strip().splitlines()
    return json.loads(lines[-1])


def test_set_creates_and_merges(config_home: Path, capsys) -> None:
    assert main(["set", "work", "--server", "imap.example.com", "--username", "me"]) == 0
    assert _last_json(capsys) == {"status": "created", "name": "work"}

    assert main(["set", "WORK", "--port", "143", "--ignore-folder", "Spam"]) == 0
    assert _last_json(capsys) == {"status": "updated", "name": "work"}

    data = yaml.safe_load((config_home / "accounts.yaml").read_text())
    assert data == {
        "accounts": [
            {
                "name": "work",
                "server": "imap.example.com",
                "port": 143,
                "username": "me",
                "ignored_folders": ["Spam"],
            }
        ]
    }


def test_clear_ignored_replaces_folders(config_home: Path, capsys) -> None:
    main(["set", "work", "--server", "s", "--username", "u", "--ignore-folder", "Spam"])
    main(["set", "work", "--clear-ignored", "--ignore-folder", "Trash"])
    capsys.readouterr()

    assert main(["show", "work"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["ignored_folders"] == ["Trash"]
    assert payload["password_key"] == "WORK_PASSWORD"


def test_new_entry_requires_server_and_username(config_home: Path, capsys) -> None:
    assert main(["set", "work", "--server", "imap.example.com"]) == 1

    assert _last_json(capsys) == {
        "error": "missing_fields",
        "detail": {"name": "work", "fields": ["username"]},
    }
    assert not (config_home / "accounts.yaml").exists()


def test_list_show_and_remove(config_home: Path, capsys) -> None:
    main(["set", "zeta", "--server", "s", "--username", "u"])
    main(["set", "Alpha", "--server", "s", "--username", "u"])
    capsys.readouterr()

    assert main(["list"]) == 0
    assert capsys.readouterr().out.splitlines() == ["Alpha", "zeta"]

    assert main(["remove", "alpha"]) == 0
    assert _last_json(capsys) == {"status": "removed", "name": "Alpha"}

    assert main(["show", "alpha"]) == 1
    assert _last_json(capsys)["error"] == "not_found"


def test_invalid_document_reports_validation_error(config_home: Path, capsys) -> None:
    (config_home / "accounts.yaml").write_text(
        "accounts:\n- name: work\n  server: s\n  username: u\n  password: leak\n"
    )

    assert main(["list"]) == 1
    assert _last_json(capsys)["error"] == "validation_error"


def test_explicit_accounts_path(tmp_path: Path, capsys) -> None:
    target = tmp_path / "elsewhere" / "accounts.yaml"

    assert main(["--accounts", str(target), "set", "home", "--server", "s", "--username", "u"]) == 0

    assert yaml.safe_load(target.read_text())["accounts"][0]["name"] == "home"
