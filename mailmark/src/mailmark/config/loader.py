"""Strict loaders and serialisers for mailmark configuration files.

What:
  Locate, parse, validate and persist the documents living in the
  configuration directory: ``accounts.yaml`` (connections), ``settings.yaml``
  (behaviour), and ``sort_config.json`` (retention rules).

Why:
  Configuration is hand-edited and can be malformed. Parsing it in one place
  turns every failure into one of a small, closed set of error types that the
  command line can present as a single title and message.

How:
  Resolve the directory from an explicit argument, the ``MAILMARK_CONFIG_DIR``
  environment variable, or ``~/.config/mailmark``. Parse YAML with
  ``yaml.safe_load`` and JSON with :mod:`json`, validate with the pydantic
  models from :mod:`mailmark.config.schema`, and write documents back through
  a temporary file renamed into place.

Interfaces:
  - :func:`config_dir` / :class:`ConfigPaths`: directory and file discovery.
  - :func:`load_accounts` / :func:`load_account_entries`: connection
    document, whole or entry by entry; a missing file is an error.
  - :func:`load_settings_per_account`: behaviour document with each
    per-account override block validated on its own.
  - :func:`load_settings` / :func:`save_settings` /
    :func:`set_export_base_dir`: behaviour document; a missing file yields
    defaults.
  - :func:`load_sort_rules` / :func:`save_sort_rules`: retention rules.
  - :class:`ConfigLoadError` and its subclasses.

Invariants:
  - Every external payload passes strict pydantic validation (unknown keys are
    rejected) before it is returned.
  - OS and parser errors are re-raised as :class:`ConfigLoadError` subclasses
    chained to the original exception.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ValidationError as _PydanticValidationError

from .schema import (
    AccountConnection,
    AccountsDocument,
    BehaviorOverrides,
    SettingsDocument,
    SortRuleSet,
)


CONFIG_DIR_ENV = "MAILMARK_CONFIG_DIR"
DEFAULT_CONFIG_DIR = Path("~/.config/mailmark")

ACCOUNTS_FILENAME = "accounts.yaml"
SETTINGS_FILENAME = "settings.yaml"
SECRETS_FILENAME = ".env"
SORT_RULES_FILENAME = "sort_config.json"


class ConfigLoadError(Exception):
    """Base error for configuration problems.

    What:
      Groups every failure that stems from user-provided configuration rather
      than from the network or the archive itself.

    How:
      Each subclass sets :attr:`kind`, a stable identifier callers can match on
      without importing the concrete class.
    """

    kind = "config_error"
    title = "Configuration error"


class FileUnreadableError(ConfigLoadError):
    """A required configuration file is missing or cannot be read."""

    kind = "file_unreadable"
    title = "Configuration file unreadable"


class ConfigParseError(ConfigLoadError):
    """A configuration file is not valid YAML/JSON or violates the schema."""

    kind = "parse_failure"
    title = "Configuration parse failure"


class AccountNotFoundError(ConfigLoadError):
    """The requested account is not present in ``accounts.yaml``."""

    kind = "account_not_found"
    title = "Account not found"


class MissingPasswordError(ConfigLoadError):
    """No password could be found for an account that needs the network."""

    kind = "missing_password"
    title = "Missing password"


class ConfigValidationError(ConfigLoadError):
    """An account failed semantic validation after merging."""

    kind = "validation_failure"
    title = "Invalid account configuration"

    def __init__(self, account: str, problems: list[str]):
        self.account = account
        self.problems = list(problems)
        super().__init__(f"account '{account}': {'; '.join(self.problems)}")


@dataclass(frozen=True)
class ConfigPaths:
    """Locations of the files inside one configuration directory."""

    root: Path

    @property
    def accounts(self) -> Path:
        return self.root / ACCOUNTS_FILENAME

    @property
    def settings(self) -> Path:
        return self.root / SETTINGS_FILENAME

    @property
    def secrets(self) -> Path:
        return self.root / SECRETS_FILENAME

    @property
    def sort_rules(self) -> Path:
        return self.root / SORT_RULES_FILENAME


def config_dir(
    explicit: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ConfigPaths:
    """Resolve the configuration directory.

    What:
      Pick the directory from ``explicit``, then ``MAILMARK_CONFIG_DIR``, then
      :data:`DEFAULT_CONFIG_DIR`.

    Args:
      explicit: Directory requested by the caller (``--config-dir``).
      environ: Environment mapping; defaults to :data:`os.environ`.

    Returns:
      :class:`ConfigPaths` rooted at the expanded directory.
    """

    if explicit is not None:
        return ConfigPaths(Path(explicit).expanduser())
    env = os.environ if environ is None else environ
    from_env = env.get(CONFIG_DIR_ENV)
    if from_env:
        return ConfigPaths(Path(from_env).expanduser())
    return ConfigPaths(DEFAULT_CONFIG_DIR.expanduser())


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise FileUnreadableError(f"Configuration file missing: {path}") from exc
    except OSError as exc:
        raise FileUnreadableError(f"Unable to read {path}: {exc}") from exc


def _parse_yaml_mapping(text: str, source: Path) -> dict[str, Any]:
    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigParseError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigParseError(f"{source.name} must contain a mapping at the top-level")
    return payload


def _validate(model: type[BaseModel], payload: dict[str, Any], source: Path) -> Any:
    try:
        return model.model_validate(payload)
    except _PydanticValidationError as exc:
        raise ConfigParseError(f"Invalid {source.name}: {exc}") from exc


def load_accounts(path: Path) -> AccountsDocument:
    """Load ``accounts.yaml``.

    What:
      Read and validate the connection document.

    Why:
      Without connection data there is nothing to export, so unlike the
      behaviour file a missing document is reported instead of defaulted.

    Raises:
      FileUnreadableError: When the file is missing or unreadable.
      ConfigParseError: When the YAML is invalid or violates the schema.
    """

    payload = _parse_yaml_mapping(_read_text(path), path)
    return _validate(AccountsDocument, payload, path)


def _validation_problems(exc: _PydanticValidationError) -> list[str]:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "entry"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return problems


def _entry_label(entry: Any, index: int) -> str:
    if isinstance(entry, dict):
        name = entry.get("name")
        if isinstance(name, str) and name.strip():
            return name
    return f"accounts[{index}]"


def load_account_entries(
    path: Path,
) -> tuple[list[AccountConnection], list[ConfigValidationError]]:
    """Load ``accounts.yaml`` validating each entry on its own.

    What:
      Parses the document like :func:`load_accounts` but validates every item
      of ``accounts`` separately.

    Why:
      A missing ``username`` or a negative ``port`` in one entry must not stop
      the export of its siblings.

    Returns:
      The valid connection entries in file order, and one
      :class:`ConfigValidationError` per entry that failed the schema. Entries
      without a usable ``name`` are labelled ``accounts[<index>]``.

    Raises:
      FileUnreadableError: When the file is missing or unreadable.
      ConfigParseError: When the YAML is invalid or the top-level shape is
        wrong.
    """

    payload = _parse_yaml_mapping(_read_text(path), path)
    unknown = sorted(str(key) for key in payload if key != "accounts")
    if unknown:
        raise ConfigParseError(f"Invalid {path.name}: unknown keys {', '.join(unknown)}")
    entries = payload.get("accounts") or []
    if not isinstance(entries, list):
        raise ConfigParseError(f"Invalid {path.name}: 'accounts' must be a list")
    connections: list[AccountConnection] = []
    errors: list[ConfigValidationError] = []
    for index, entry in enumerate(entries):
        try:
            connections.append(AccountConnection.model_validate(entry))
        except _PydanticValidationError as exc:
            label = _entry_label(entry, index)
            errors.append(ConfigValidationError(label, _validation_problems(exc)))
    return connections, errors


def load_settings(path: Path) -> SettingsDocument:
    """Load ``settings.yaml``, returning all defaults when it does not exist.

    Raises:
      FileUnreadableError: When the file exists but cannot be read.
      ConfigParseError: When the YAML is invalid or violates the schema.
    """

    if not path.exists():
        return SettingsDocument()
    payload = _parse_yaml_mapping(_read_text(path), path)
    return _validate(SettingsDocument, payload, path)


def load_settings_per_account(path: Path) -> tuple[SettingsDocument, dict[str, list[str]]]:
    """Load ``settings.yaml`` validating each per-account override on its own.

    What:
      Validates the document without its ``accounts`` block, then validates
      every override block separately.

    Returns:
      The settings holding only the valid override blocks, and the schema
      problems of each rejected block keyed by account name.

    Raises:
      FileUnreadableError: When the file exists but cannot be read.
      ConfigParseError: When the YAML is invalid or any other section
        violates the schema.
    """

    if not path.exists():
        return SettingsDocument(), {}
    payload = _parse_yaml_mapping(_read_text(path), path)
    blocks = payload.pop("accounts", None) or {}
    if not isinstance(blocks, dict):
        raise ConfigParseError(f"Invalid {path.name}: 'accounts' must be a mapping")
    settings = _validate(SettingsDocument, payload, path)
    overrides: dict[str, BehaviorOverrides] = {}
    rejected: dict[str, list[str]] = {}
    for name, block in blocks.items():
        try:
            overrides[str(name)] = BehaviorOverrides.model_validate(block or {})
        except _PydanticValidationError as exc:
            rejected[str(name)] = _validation_problems(exc)
    return settings.model_copy(update={"accounts": overrides}), rejected


def _atomic_write(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", dir=str(path.parent), delete=False, encoding="utf-8"
    ) as handle:
        handle.write(payload)
        temp_path = Path(handle.name)
    temp_path.replace(path)


def save_settings(path: Path, settings: SettingsDocument) -> None:
    """Persist ``settings`` as YAML, omitting override fields left unset.

    The file is written to a temporary sibling and renamed over ``path``.
    """

    payload = settings.model_dump(mode="json", exclude_none=True)
    _atomic_write(path, yaml.safe_dump(payload, sort_keys=False, allow_unicode=True))


def set_export_base_dir(path: Path, export_base_dir: Union[str, Path]) -> SettingsDocument:
    """Update only ``export_base_dir`` in the settings file at ``path``."""

    settings = load_settings(path)
    updated = settings.model_copy(update={"export_base_dir": str(export_base_dir)})
    save_settings(path, updated)
    return updated


def load_sort_rules(path: Path) -> SortRuleSet:
    """Load ``sort_config.json``; a missing file yields the default rules.

    Raises:
      FileUnreadableError: When the file exists but cannot be read.
      ConfigParseError: When the JSON is invalid or carries unknown keys.
    """

    if not path.exists():
        return SortRuleSet()
    text = _read_text(path)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigParseError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigParseError(f"{path.name} must contain a JSON object")
    return _validate(SortRuleSet, payload, path)


def save_sort_rules(path: Path, rules: SortRuleSet) -> None:
    """Write ``rules`` as indented JSON so users can start from the defaults."""

    _atomic_write(path, json.dumps(rules.model_dump(mode="json"), indent=2) + "\n")
