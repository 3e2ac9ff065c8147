"""Merge connection data, behaviour overrides and secrets into resolved accounts.

What:
  Implement the account resolver: for every connection entry, pick each
  behaviour value from the per-account override, else the global default,
  else the built-in default; derive the export directory; attach the password
  from an explicit secret map; validate the result.

Why:
  Merge order bugs are silent. An account that quietly loses its
  ``skip_existing`` flag re-downloads a whole mailbox, and one that loses its
  ``folder_name`` writes into a sibling's directory. Resolution therefore lives
  in one pure function that tests can drive with plain mappings.

How:
  :func:`resolve` takes already-parsed documents and a ``secrets`` mapping.
  Failures are collected per account into :class:`Resolution.errors` so one
  broken entry never hides its siblings. :func:`load_secrets` builds the
  secret mapping from the ``.env`` file and the process environment using
  ``python-dotenv``; the resolver itself never reads the environment.

Interfaces:
  :data:`BUILTIN_BEHAVIOR`, :func:`resolve`,
  :func:`load_resolved`, :func:`load_secrets`, :func:`password_for`,
  :func:`secret_key`, :func:`find_account`, :class:`Resolution`.

Invariants:
  - A :class:`~mailmark.config.schema.ResolvedAccount` always has a non-empty
    ``export_directory`` and a non-zero ``port``.
  - ``export_directory`` uses forward slashes whatever the origin platform.
  - No two accepted accounts share an ``export_directory``.
  - A missing password does not fail resolution; network operations check it.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, TypeVar, Union

from dotenv import dotenv_values

from .loader import (
    AccountNotFoundError,
    ConfigPaths,
    ConfigValidationError,
    config_dir,
    load_account_entries,
    load_settings_per_account,
)
from .schema import (
    AccountConnection,
    BehaviorOverrides,
    ResolvedAccount,
    SettingsDocument,
)


BUILTIN_BEHAVIOR = BehaviorOverrides(
    quote_depth=1,
    skip_existing=True,
    collect_contacts=False,
    skip_signature_images=True,
    delete_after_export=False,
    folder_name=None,
)

_BEHAVIOR_FIELDS = tuple(BehaviorOverrides.model_fields)
_KEY_SEPARATORS = ("@", ".", "-", " ")

_T = TypeVar("_T")


@dataclass
class Resolution:
    """Outcome of resolving a batch of accounts.

    Attributes:
      accounts: Accounts that passed validation, in input order.
      errors: One :class:`ConfigValidationError` per rejected account.
    """

    accounts: List[ResolvedAccount] = field(default_factory=list)
    errors: List[ConfigValidationError] = field(default_factory=list)

    def get(self, name: str) -> ResolvedAccount:
        return find_account(self.accounts, name)


def secret_key(account_name: str) -> str:
    """Return the environment prefix for ``account_name``.

    ``"me@mail.example.com"`` becomes ``"ME_MAIL_EXAMPLE_COM"``.
    """

    key = account_name.upper()
    for separator in _KEY_SEPARATORS:
        key = key.replace(separator, "_")
    return key


def password_for(account_name: str, secrets: Mapping[str, Optional[str]]) -> Optional[str]:
    """Look up the password for ``account_name``.

    ``<KEY>_APPLICATION_PASSWORD`` takes precedence over ``<KEY>_PASSWORD``;
    empty values are treated as absent.
    """

    key = secret_key(account_name)
    for candidate in (f"{key}_APPLICATION_PASSWORD", f"{key}_PASSWORD"):
        value = secrets.get(candidate)
        if value:
            return value
    return None


def load_secrets(
    env_file: Optional[Path],
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Build the secret mapping handed to :func:`resolve`.

    What:
      Reads ``KEY=value`` pairs from ``env_file`` with
      :func:`dotenv.dotenv_values` and overlays the process environment.

    Why:
      Keeping the lookup outside the resolver means tests and callers pass an
      explicit mapping and the resolver has no hidden global input.

    Args:
      env_file: Path to the ``.env`` file, ignored when missing.
      environ: Environment overlay; defaults to :data:`os.environ`.

    Returns:
      Mapping of variable names to non-empty values.
    """

    secrets: Dict[str, str] = {}
    if env_file is not None and env_file.exists():
        for key, value in dotenv_values(env_file).items():
            if value:
                secrets[key] = value
    overlay = os.environ if environ is None else environ
    for key, value in overlay.items():
        if value:
            secrets[key] = value
    return secrets


def _merge_behavior(
    overrides: Optional[BehaviorOverrides],
    defaults: BehaviorOverrides,
) -> Dict[str, object]:
    merged: Dict[str, object] = {}
    for name in _BEHAVIOR_FIELDS:
        value = getattr(overrides, name) if overrides is not None else None
        if value is None:
            value = getattr(defaults, name)
        if value is None:
            value = getattr(BUILTIN_BEHAVIOR, name)
        merged[name] = value
    return merged


def export_directory_for(export_base_dir: Optional[str], folder: str) -> str:
    """Join ``export_base_dir`` and ``folder`` using forward slashes.

    Returns an empty string when no base directory is configured.
    """

    if not export_base_dir or not export_base_dir.strip():
        return ""
    base = export_base_dir.strip().replace("\\", "/")
    if base != "/":
        base = base.rstrip("/")
    segment = folder.replace("\\", "/").strip("/")
    if not segment:
        return base
    if base == "/":
        return f"/{segment}"
    return f"{base}/{segment}"


def _problems(connection: AccountConnection, export_directory: str) -> List[str]:
    problems: List[str] = []
    if not connection.name.strip():
        problems.append("name is empty")
    if not connection.server.strip():
        problems.append("server is empty")
    if not connection.username.strip():
        problems.append("username is empty")
    if connection.port == 0:
        problems.append("port must not be 0")
    if not export_directory:
        problems.append("export_directory is empty (set export_base_dir)")
    return problems


def _override_for(name: str, per_account: Mapping[str, _T]) -> Optional[_T]:
    if name in per_account:
        return per_account[name]
    lowered = name.lower()
    for key, value in per_account.items():
        if key.lower() == lowered:
            return value
    return None


def resolve(
    raw_accounts: Iterable[AccountConnection],
    global_defaults: BehaviorOverrides,
    per_account_overrides: Mapping[str, BehaviorOverrides],
    *,
    export_base_dir: Optional[str],
    secrets: Mapping[str, Optional[str]],
    rejected_overrides: Optional[Mapping[str, List[str]]] = None,
) -> Resolution:
    """Resolve every connection entry into a :class:`ResolvedAccount`.

    What:
      Merges behaviour per field (per-account override, global default,
      built-in default), derives ``export_directory``, injects the password,
      and validates the outcome.

    Why:
      Rejecting an account here, before any network use, means a typo in one
      entry can be reported without stopping the export of the others.

    How:
      Iterates in input order, records a :class:`ConfigValidationError` for
      each failing account and keeps going. Duplicate names are compared
      case-insensitively. An account whose export directory is already used
      by an accepted account is rejected.

    Args:
      raw_accounts: Connection entries from ``accounts.yaml``.
      global_defaults: ``defaults`` block from ``settings.yaml``.
      per_account_overrides: ``accounts`` block from ``settings.yaml``.
      export_base_dir: Root of all account export directories.
      secrets: Explicit secret mapping, see :func:`load_secrets`.
      rejected_overrides: Schema problems of override blocks that failed
        validation, keyed by account name. The matching accounts are rejected
        instead of falling back to the defaults.

    Returns:
      :class:`Resolution` holding accepted accounts and collected errors.
    """

    resolution = Resolution()
    seen: set[str] = set()
    directories: Dict[str, str] = {}
    for connection in raw_accounts:
        behavior = _merge_behavior(
            _override_for(connection.name, per_account_overrides), global_defaults
        )
        folder = behavior["folder_name"] or connection.name
        export_directory = export_directory_for(export_base_dir, str(folder))
        problems = _problems(connection, export_directory)
        override_problems = _override_for(connection.name, rejected_overrides or {})
        if override_problems:
            problems.extend(f"settings override {problem}" for problem in override_problems)
        lowered = connection.name.strip().lower()
        if lowered and lowered in seen:
            problems.append("duplicate account name")
        seen.add(lowered)
        owner = directories.get(export_directory)
        if export_directory and owner is not None:
            problems.append(
                f"export_directory '{export_directory}' is already used by account '{owner}'"
            )
        if problems:
            resolution.errors.append(ConfigValidationError(connection.name, problems))
            continue
        directories[export_directory] = connection.name
        resolution.accounts.append(
            ResolvedAccount(
                **connection.model_dump(),
                **behavior,
                export_directory=export_directory,
                password=password_for(connection.name, secrets),
            )
        )
    return resolution


def load_resolved(
    directory: Optional[Union[str, Path, ConfigPaths]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[Resolution, SettingsDocument]:
    """Load the three configuration files and resolve every account.

    What:
      Connection entries and per-account override blocks are validated one
      by one, so a schema error rejects only the account it belongs to.

    Returns:
      The :class:`Resolution` and the loaded :class:`SettingsDocument`, which
      the exporter needs for the signature and network policies. Entries that
      failed the schema are listed first in ``Resolution.errors``.
    """

    paths = directory if isinstance(directory, ConfigPaths) else config_dir(directory, environ)
    connections, entry_errors = load_account_entries(paths.accounts)
    settings, rejected_overrides = load_settings_per_account(paths.settings)
    secrets = load_secrets(paths.secrets, environ)
    resolution = resolve(
        connections,
        settings.defaults,
        settings.accounts,
        export_base_dir=settings.export_base_dir,
        secrets=secrets,
        rejected_overrides=rejected_overrides,
    )
    resolution.errors[:0] = entry_errors
    return resolution, settings


def find_account(accounts: Iterable[ResolvedAccount], name: str) -> ResolvedAccount:
    """Return the account called ``name``, compared case-insensitively.

    Raises:
      AccountNotFoundError: When no account matches.
    """

    lowered = name.lower()
    for account in accounts:
        if account.name.lower() == lowered:
            return account
    raise AccountNotFoundError(f"Account '{name}' not found")
