"""mailmark configuration package.

What:
  Provide one import surface for configuration loading, account resolution
  and the pydantic models behind them.

Why:
  The exporter, the category engine and the command line all need resolved
  accounts. Importing them from here keeps callers independent of how the
  loader and the resolver are split.

Interfaces:
  - load_accounts / load_account_entries / load_settings /
    load_settings_per_account / save_settings / set_export_base_dir /
    load_sort_rules / save_sort_rules / config_dir: file handling.
  - resolve / load_resolved / load_secrets / find_account:
    account resolution.
  - ConfigLoadError and subclasses: the closed set of configuration errors.
  - Schema models.
"""

from .loader import (
    AccountNotFoundError,
    ConfigLoadError,
    ConfigParseError,
    ConfigPaths,
    ConfigValidationError,
    FileUnreadableError,
    MissingPasswordError,
    config_dir,
    load_account_entries,
    load_accounts,
    load_settings,
    load_settings_per_account,
    load_sort_rules,
    save_settings,
    save_sort_rules,
    set_export_base_dir,
)
from .resolver import (
    BUILTIN_BEHAVIOR,
    Resolution,
    find_account,
    load_resolved,
    load_secrets,
    password_for,
    resolve,
)
from .schema import (
    AccountConnection,
    AccountsDocument,
    BehaviorOverrides,
    NetworkSettings,
    ResolvedAccount,
    SettingsDocument,
    SignatureImagePolicy,
    SortRuleSet,
)

__all__ = [
    "AccountConnection",
    "AccountNotFoundError",
    "AccountsDocument",
    "BUILTIN_BEHAVIOR",
    "BehaviorOverrides",
    "ConfigLoadError",
    "ConfigParseError",
    "ConfigPaths",
    "ConfigValidationError",
    "FileUnreadableError",
    "MissingPasswordError",
    "NetworkSettings",
    "Resolution",
    "ResolvedAccount",
    "SettingsDocument",
    "SignatureImagePolicy",
    "SortRuleSet",
    "config_dir",
    "find_account",
    "load_account_entries",
    "load_accounts",
    "load_resolved",
    "load_secrets",
    "load_settings",
    "load_settings_per_account",
    "load_sort_rules",
    "password_for",
    "resolve",
    "save_settings",
    "save_sort_rules",
    "set_export_base_dir",
]
