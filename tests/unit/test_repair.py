"""Unit tests for :mod:`mailmark.core.repair`.

What:
  Feed documents carrying ``!!python/object`` frontmatter through the repair
  pass and check that the result parses with ``yaml.safe_load``.

Why:
  Archives written by older tools dump raw header objects. Until repaired,
  the sort pass counts them as errors.

How:
  Write legacy documents under ``tmp_path`` and call :func:`repair_text` and
  :func:`repair_directory` with and without ``dry_run``.
"""
from __future__ import annotations

from pathlib import Path

import yaml

from mailmark.core.repair import needs_repair, repair_directory, repair_text
from mailmark.utils.text import split_frontmatter


LEGACY = (
    "---\n"
    "from: alice@example.com\n"
    "to: bob@example.com\n"
    "date: '2020-01-01'\n"
    "subject: !!python/object:email.header.Header\n"
    "  _chunks:\n"
    "  - - \"Quarterly report\"\n"
    "    - &id001 utf-8\n"
    "  _continuation_ws: ' '\n"
    "  _headerlen: 9\n"
    "  _maxlinelen: 78\n"
    "attachments: []\n"
    "---\n"
    "\n"
    "Numbers are attached.\n"
)

UNPARSEABLE = (
    "---\n"
    "from: alice@example.com\n"
    "to: !!python/object:email.header.Header\n"
    "  bad: [unclosed\n"
    "subject: 'Hello'\n"
    "---\n"
    "\n"
    "Body stays.\n"
)


def _meta(text: str) -> dict:
    frontmatter, _ = split_frontmatter(text)
    return yaml.safe_load(frontmatter)


def test_tags_are_stripped_and_subject_recovered() -> None:
    fixed, action = repair_text(LEGACY)

    assert action == "fixed"
    meta = _meta(fixed)
    assert meta["subject"] == "Quarterly report"
    assert meta["from"] == "alice@example.com"
    assert meta["attachments"] == []
    assert fixed.endswith("\nNumbers are attached.\n")


def test_unparseable_frontmatter_is_rebuilt() -> None:
    rewritten, action = repair_text(UNPARSEABLE)

    assert action == "rewritten"
    assert _meta(rewritten) == {
        "from": "alice@example.com",
        "to": "Unknown",
        "date": "Unknown",
        "subject": "Hello",
        "tags": [],
        "attachments": [],
    }
    assert rewritten.endswith("\nBody stays.\n")


def test_clean_documents_are_left_alone() -> None:
    clean = "---\nsubject: Fine\n---\n\nBody\n"

    assert not needs_repair(clean)
    assert repair_text(clean) == (None, "unchanged")
    assert repair_text("# no frontmatter\n") == (None, "unchanged")


def test_repair_directory_is_dry_by_default(tmp_path: Path) -> None:
    legacy = tmp_path / "legacy.md"
    legacy.write_text(LEGACY, encoding="utf-8")
    (tmp_path / "clean.md").write_text("---\nsubject: Fine\n---\n\nBody\n", encoding="utf-8")

    preview = repair_directory(tmp_path)

    assert (preview.total_scanned, preview.files_fixed, preview.errors) == (2, 1, 0)
    assert preview.changed == ["legacy.md"]
    assert legacy.read_text(encoding="utf-8") == LEGACY

    applied = repair_directory(tmp_path, dry_run=False)

    assert applied.files_fixed == 1
    assert not needs_repair(legacy.read_text(encoding="utf-8"))
    assert repair_directory(tmp_path).files_fixed == 0
