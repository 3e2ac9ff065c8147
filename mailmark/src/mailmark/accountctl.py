"""Module: mailmark/accountctl.py

What:
  Provide a non-interactive command-line utility for editing the connection
  entries stored in ``accounts.yaml``. Operators can list, inspect, create,
  update, and delete the accounts the exporter connects to.

Why:
  Connection data lives apart from behaviour settings and is edited by
  provisioning scripts as often as by hand. A dedicated tool keeps the file
  valid against the same schema the exporter loads, so a typo never surfaces
  as a failed overnight export.

How:
  - Parse ``accounts.yaml`` into :class:`~mailmark.config.schema.AccountsDocument`.
  - Expose ``list``, ``show``, ``set``, and ``remove`` subcommands through
    ``argparse`` with script-friendly arguments.
  - Write the validated document back with ``yaml.safe_dump`` through a
    temporary file renamed into place.
  - Print JSON for ``show`` and for every status or error line.

Interfaces:
  - main(argv: Optional[List[str]] = None) -> int

Invariants:
  - Passwords never appear in ``accounts.yaml``; they live in ``.env``. The
    tool only prints the secret key name the resolver will look up.
  - ``accounts.yaml`` is rewritten atomically.
  - Account names are unique (case-insensitive); ``set`` merges into an
    existing entry and keeps fields that were not passed.
"""
from __future__ import annotations

import argparse
import json
import pathlib
import tempfile
from typing import List, Optional

import yaml
from pydantic import ValidationError

from .config.loader import config_dir
from .config.resolver import secret_key
from .config.schema import AccountConnection, AccountsDocument


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the ``mailmark-accountctl`` command-line utility.

    Args:
      argv: Optional list of argument strings; defaults to ``sys.argv[1:]`` when
        ``None``.

    Returns:
      ``0`` on success and ``1`` on validation or lookup failures.
    """

    parser = _build_parser()
    args = parser.parse_args(argv)

    path = pathlib.Path(args.accounts) if args.accounts else config_dir().accounts
    try:
        if args.command == "list":
            return _cmd_list(path)
        if args.command == "show":
            return _cmd_show(path, args.name)
        if args.command == "set":
            return _cmd_set(
                path=path,
                name=args.name,
                server=args.server,
                port=args.port,
                username=args.username,
                ignore_folders=args.ignore_folder,
                clear_ignored=args.clear_ignored,
            )
        if args.command == "remove":
            return _cmd_remove(path, args.name)
    except ValidationError as exc:
        _print_error("validation_error", exc.errors(include_url=False))
        return 1
    except yaml.YAMLError as exc:
        _print_error("parse_error", str(exc))
        return 1
    parser.error("Unknown command")
    return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage mailmark IMAP account definitions")
    parser.add_argument(
        "--accounts",
        type=str,
        default=None,
        help="Path to accounts.yaml (defaults to the mailmark configuration directory)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List configured account names")

    show_parser = subparsers.add_parser("show", help="Show a single account as JSON")
    show_parser.add_argument("name", help="Account name to inspect")

    set_parser = subparsers.add_parser("set", help="Create or update an account definition")
    set_parser.add_argument("name", help="Account name")
    set_parser.add_argument("--server", help="IMAP server hostname")
    set_parser.add_argument("--port", type=int, default=None, help="IMAP server port (993)")
    set_parser.add_argument("--username", help="IMAP username")
    set_parser.add_argument(
        "--ignore-folder",
        action="append",
        default=[],
        help="Folder to skip during export; repeat for several folders",
    )
    set_parser.add_argument(
        "--clear-ignored",
        action="store_true",
        help="Drop the existing ignored folders before adding --ignore-folder values",
    )

    remove_parser = subparsers.add_parser("remove", help="Delete an account definition")
    remove_parser.add_argument("name", help="Account name to delete")

    return parser


def _find(document: AccountsDocument, name: str) -> Optional[AccountConnection]:
    lowered = name.lower()
    for entry in document.accounts:
        if entry.name.lower() == lowered:
            return entry
    return None


def _cmd_list(path: pathlib.Path) -> int:
    document = _load_accounts(path)
    for entry in sorted(document.accounts, key=lambda item: item.name.lower()):
        print(entry.name)
    return 0


def _cmd_show(path: pathlib.Path, name: str) -> int:
    """Render a single account as JSON, adding the ``.env`` key it reads."""

    document = _load_accounts(path)
    entry = _find(document, name)
    if entry is None:
        _print_error("not_found", {"name": name})
        return 1
    payload = entry.model_dump()
    payload["password_key"] = f"{secret_key(entry.name)}_PASSWORD"
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


def _cmd_set(
    *,
    path: pathlib.Path,
    name: str,
    server: Optional[str],
    port: Optional[int],
    username: Optional[str],
    ignore_folders: List[str],
    clear_ignored: bool,
) -> int:
    """Create or update an account definition in ``accounts.yaml``.

    What:
      Merge the given fields into the entry called ``name``, or create it.

    How:
      - Load the existing document (an absent file is an empty document).
      - Start from the existing entry's fields, overlay the ones passed on
        the command line and validate the result as
        :class:`AccountConnection`; a new entry needs ``--server`` and
        ``--username``.
      - Persist the document atomically via :func:`_write_accounts`.

    Returns:
      ``0`` on success, ``1`` when a new entry lacks required fields.
    """

    document = _load_accounts(path)
    existing = _find(document, name)
    fields = existing.model_dump() if existing is not None else {"name": name}
    if server is not None:
        fields["server"] = server
    if port is not None:
        fields["port"] = port
    if username is not None:
        fields["username"] = username
    ignored = [] if clear_ignored else list(fields.get("ignored_folders", []))
    fields["ignored_folders"] = ignored + list(ignore_folders)

    missing = [key for key in ("server", "username") if not fields.get(key)]
    if missing:
        _print_error("missing_fields", {"name": name, "fields": missing})
        return 1

    entry = AccountConnection.model_validate(fields)
    remaining = [item for item in document.accounts if item is not existing]
    remaining.append(entry)
    document.accounts = sorted(remaining, key=lambda item: item.name.lower())
    _write_accounts(path, document)
    status = "updated" if existing is not None else "created"
    print(json.dumps({"status": status, "name": entry.name}))
    return 0


def _cmd_remove(path: pathlib.Path, name: str) -> int:
    document = _load_accounts(path)
    entry = _find(document, name)
    if entry is None:
        _print_error("not_found", {"name": name})
        return 1
    document.accounts = [item for item in document.accounts if item is not entry]
    _write_accounts(path, document)
    print(json.dumps({"status": "removed", "name": entry.name}))
    return 0


def _load_accounts(path: pathlib.Path) -> AccountsDocument:
    """Load the accounts document, returning an empty one when absent."""

    if not path.exists():
        return AccountsDocument()
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return AccountsDocument.model_validate(data)


def _write_accounts(path: pathlib.Path, document: AccountsDocument) -> None:
    """Persist the accounts document to disk atomically.

    How:
      - Create parent directories when missing.
      - Serialise the document into YAML keeping field order.
      - Write to a temporary file in the target directory and rename it into
        place.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    payload = yaml.safe_dump(document.model_dump(mode="json"), sort_keys=False, allow_unicode=True)
    with tempfile.NamedTemporaryFile(
        "w", dir=str(path.parent), delete=False, encoding="utf-8"
    ) as handle:
        handle.write(payload)
        temp_path = pathlib.Path(handle.name)
    temp_path.replace(path)


def _print_error(kind: str, detail: object) -> None:
    """Print a JSON object with ``error`` and ``detail`` keys to stdout."""

    print(json.dumps({"error": kind, "detail": detail}, sort_keys=True, default=str))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
