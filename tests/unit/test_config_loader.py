"""Unit tests for :mod:`mailmark.config.loader`.

What:
  Validate directory discovery, strict parsing of the configuration
  documents, and the atomic writers.

Why:
  Configuration is hand-edited. Every malformed input must surface as one of
  the closed :class:`ConfigLoadError` subclasses instead of a raw traceback.

How:
  Write documents into ``tmp_path`` and call the loader functions directly.
"""
from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from mailmark.config import (
    ConfigParseError,
    FileUnreadableError,
    SettingsDocument,
    config_dir,
    load_account_entries,
    load_accounts,
    load_settings,
    load_settings_per_account,
    load_sort_rules,
    save_sort_rules,
    set_export_base_dir,
)
from mailmark.config.loader import ConfigLoadError


def test_config_dir_precedence(tmp_path: Path) -> None:
    explicit = config_dir(tmp_path / "explicit", {"MAILMARK_CONFIG_DIR": str(tmp_path / "env")})
    from_env = config_dir(None, {"MAILMARK_CONFIG_DIR": str(tmp_path / "env")})
    default = config_dir(None, {})

    assert explicit.root == tmp_path / "explicit"
    assert from_env.accounts == tmp_path / "env" / "accounts.yaml"
    assert default.root == Path("~/.config/mailmark").expanduser()


def test_missing_accounts_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(FileUnreadableError) as excinfo:
        load_accounts(tmp_path / "accounts.yaml")

    assert excinfo.value.kind == "file_unreadable"
    assert isinstance(excinfo.value, ConfigLoadError)


def test_invalid_yaml_is_a_parse_error(tmp_path: Path) -> None:
    path = tmp_path / "accounts.yaml"
    path.write_text("accounts: [unclosed\n")

    with pytest.raises(ConfigParseError):
        load_accounts(path)


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    """Behaviour fields do not belong in the connection document."""

    path = tmp_path / "accounts.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "accounts": [
                    {
                        "name": "work",
                        "server": "imap.example.com",
                        "username": "me",
                        "quote_depth": 2,
                    }
                ]
            }
        )
    )

    with pytest.raises(ConfigParseError) as excinfo:
        load_accounts(path)

    assert "quote_depth" in str(excinfo.value)


def test_missing_settings_file_yields_defaults(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "settings.yaml")

    assert settings == SettingsDocument()
    assert settings.signature_images.max_bytes == 50 * 1024


def test_set_export_base_dir_keeps_other_settings(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({"defaults": {"quote_depth": 2}}))

    set_export_base_dir(path, "/srv/mail")

    payload = yaml.safe_load(path.read_text())
    assert payload["export_base_dir"] == "/srv/mail"
    assert payload["defaults"] == {"quote_depth": 2}
    assert [item.name for item in tmp_path.iterdir() if item.is_file()] == ["settings.yaml"]


def test_sort_rules_default_and_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "sort_config.json"
    rules = load_sort_rules(path)

    assert "newsletter" in rules.delete_keywords
    assert "invoice" in rules.keep_keywords
    assert rules.recent_threshold_days == 30
    assert rules.old_threshold_days == 365

    save_sort_rules(path, rules.model_copy(update={"whitelist": ["@example.com"]}))
    assert load_sort_rules(path).whitelist == ["@example.com"]


def test_sort_rules_reject_unknown_fields(tmp_path: Path) -> None:
    path = tmp_path / "sort_config.json"
    path.write_text(json.dumps({"whitelist": [], "archive_everything": True}))

    with pytest.raises(ConfigParseError):
        load_sort_rules(path)


def test_account_entries_are_validated_one_by_one(tmp_path: Path) -> None:
    path = tmp_path / "accounts.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "accounts": [
                    {"name": "work", "server": "imap.example.com", "username": "me"},
                    {"name": "home", "server": "imap.example.com", "username": "me", "quote_depth": 2},
                    "not-a-mapping",
                ]
            }
        )
    )

    connections, errors = load_account_entries(path)

    assert [connection.name for connection in connections] == ["work"]
    assert [error.account for error in errors] == ["home", "accounts[2]"]
    assert errors[0].problems == ["quote_depth: Extra inputs are not permitted"]
    assert errors[0].kind == "validation_failure"


def test_account_entries_still_require_a_list(tmp_path: Path) -> None:
    path = tmp_path / "accounts.yaml"
    path.write_text(yaml.safe_dump({"accounts": {"name": "work"}}))

    with pytest.raises(ConfigParseError):
        load_account_entries(path)


def test_settings_override_blocks_are_validated_one_by_one(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "export_base_dir": "/srv/mail",
                "accounts": {"work": {"quote_depth": 2}, "home": {"colour": "red"}},
            }
        )
    )

    settings, rejected = load_settings_per_account(path)

    assert settings.export_base_dir == "/srv/mail"
    assert settings.accounts["work"].quote_depth == 2
    assert "home" not in settings.accounts
    assert rejected == {"home": ["colour: Extra inputs are not permitted"]}
