"""End-to-end tests for the ``mailmark`` Typer application.

What:
  Invoke every command with :class:`typer.testing.CliRunner` against a
  configuration directory under ``tmp_path`` and the in-memory IMAP backend.

Why:
  Cron jobs depend on the exit codes: ``0`` for complete and partial runs,
  ``1`` only when an operation could not run at all.

How:
  ``write_config`` and ``work_account`` prepare ``accounts.yaml``,
  ``settings.yaml`` and ``.env``; ``imap_backend`` replaces ``IMAPClient``.
"""
from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from fakes import build_message
from mailmark.cli import app


runner = CliRunner()


def test_export_reports_success(imap_backend, work_account, tmp_path: Path) -> None:
    imap_backend.append("INBOX", build_message())

    result = runner.invoke(app, ["export", "work"])

    assert result.exit_code == 0, result.output
    assert "Export complete: work: 1 exported, 0 skipped, 0 errors" in result.output
    assert len(list((tmp_path / "archive" / "work").glob("*.md"))) == 1


def test_partial_export_still_exits_zero(imap_backend, work_account) -> None:
    broken = imap_backend.append("INBOX", build_message(message_id="<broken@example.com>"))
    imap_backend.append("INBOX", build_message(message_id="<fine@example.com>"))
    imap_backend.broken_uids.add(broken)

    result = runner.invoke(app, ["export", "work"])

    assert result.exit_code == 0, result.output
    assert "Export finished with errors" in result.output
    assert "1 exported, 0 skipped, 1 errors" in result.output


def test_unknown_account_fails(imap_backend, work_account) -> None:
    result = runner.invoke(app, ["export", "home"])

    assert result.exit_code == 1
    assert "Account not found" in result.output
    assert imap_backend.connect_calls == 0


def test_missing_password_fails_before_connecting(imap_backend, write_config) -> None:
    write_config([{"name": "work", "server": "imap.example.com", "username": "me"}])

    result = runner.invoke(app, ["export", "work"])

    assert result.exit_code == 1
    assert "Missing password" in result.output
    assert imap_backend.connect_calls == 0


def test_application_password_takes_precedence(imap_backend, write_config) -> None:
    write_config(
        [{"name": "work", "server": "imap.example.com", "username": "me"}],
        env={"WORK_PASSWORD": "stale", "WORK_APPLICATION_PASSWORD": "secret"},
    )

    result = runner.invoke(app, ["export", "work"])

    assert result.exit_code == 0, result.output
    assert imap_backend.logged_in


def test_export_all_reports_rejected_accounts(imap_backend, write_config) -> None:
    write_config(
        [
            {"name": "work", "server": "imap.example.com", "username": "me"},
            {"name": "broken", "server": "imap.example.com", "username": "me", "port": 0},
        ],
        env={"WORK_PASSWORD": "secret"},
    )
    imap_backend.append("INBOX", build_message())

    result = runner.invoke(app, ["export-all"])

    assert result.exit_code == 1
    assert "Invalid account configuration: account 'broken': port must not be 0" in result.output
    assert "[ok] Export complete: work: 1 exported" in result.output


def test_export_all_exports_siblings_of_a_malformed_entry(imap_backend, write_config) -> None:
    write_config(
        [
            {"name": "work", "server": "imap.example.com", "username": "me"},
            {"name": "broken", "server": "imap.example.com"},
        ],
        env={"WORK_PASSWORD": "secret"},
    )
    imap_backend.append("INBOX", build_message())

    result = runner.invoke(app, ["export-all"])

    assert result.exit_code == 1
    assert "account 'broken': username: Field required" in result.output
    assert "[ok] Export complete: work: 1 exported" in result.output


def test_export_all_without_accounts(write_config) -> None:
    write_config([])

    result = runner.invoke(app, ["export-all"])

    assert result.exit_code == 1
    assert "No accounts" in result.output


def test_sort_after_export_writes_report(imap_backend, work_account, tmp_path: Path) -> None:
    imap_backend.append("INBOX", build_message())
    assert runner.invoke(app, ["export", "work"]).exit_code == 0

    result = runner.invoke(app, ["sort", "work"])

    assert result.exit_code == 0, result.output
    assert "Sort complete" in result.output
    assert (tmp_path / "archive" / "work" / "sort_report.json").exists()


def test_sort_without_export_directory_fails(work_account) -> None:
    result = runner.invoke(app, ["sort", "work"])

    assert result.exit_code == 1
    assert "Nothing to sort" in result.output


def test_sort_rejects_invalid_rules(imap_backend, work_account, tmp_path: Path) -> None:
    imap_backend.append("INBOX", build_message())
    runner.invoke(app, ["export", "work"])
    rules = tmp_path / "rules.json"
    rules.write_text('{"unknown_rule": true}')

    result = runner.invoke(app, ["sort", "work", "--rules", str(rules)])

    assert result.exit_code == 1
    assert "Configuration parse failure" in result.output


def test_fix_is_dry_until_applied(tmp_path: Path) -> None:
    archive = tmp_path / "legacy"
    archive.mkdir()
    document = archive / "old.md"
    legacy = (
        "---\n"
        "from: alice@example.com\n"
        "subject: !!python/object:email.header.Header\n"
        "  _chunks:\n"
        "  - - \"Budget\"\n"
        "    - &id001 utf-8\n"
        "---\n"
        "\n"
        "Body\n"
    )
    document.write_text(legacy, encoding="utf-8")

    dry = runner.invoke(app, ["fix", str(archive)])

    assert dry.exit_code == 0, dry.output
    assert "1 fixed" in dry.output and "(dry run)" in dry.output
    assert document.read_text(encoding="utf-8") == legacy

    applied = runner.invoke(app, ["fix", str(archive), "--apply"])

    assert applied.exit_code == 0
    assert "(applied)" in applied.output
    frontmatter = document.read_text(encoding="utf-8").split("---\n")[1]
    assert yaml.safe_load(frontmatter)["subject"] == "Budget"


def test_fix_missing_directory_fails(tmp_path: Path) -> None:
    result = runner.invoke(app, ["fix", str(tmp_path / "absent")])

    assert result.exit_code == 1
    assert "Nothing to fix" in result.output


def test_accounts_lists_password_presence(write_config, tmp_path: Path) -> None:
    write_config(
        [
            {"name": "work", "server": "imap.example.com", "username": "me"},
            {"name": "home", "server": "mail.example.org", "port": 143, "username": "me"},
        ],
        env={"WORK_PASSWORD": "secret"},
    )

    result = runner.invoke(app, ["accounts"])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    work_dir = (tmp_path / "archive").as_posix() + "/work"
    assert f"work\timap.example.com:993\t{work_dir}\tpassword set" in lines
    assert any(line.startswith("home\tmail.example.org:143\t") and line.endswith("no password") for line in lines)
    assert "secret" not in result.output


def test_set_export_dir_updates_settings(config_home: Path, tmp_path: Path) -> None:
    target = tmp_path / "mail-archive"

    result = runner.invoke(app, ["set-export-dir", str(target)])

    assert result.exit_code == 0, result.output
    assert f"Settings saved: export_base_dir = {target}" in result.output
    settings = yaml.safe_load((config_home / "settings.yaml").read_text())
    assert settings["export_base_dir"] == str(target)
