"""Repair legacy frontmatter written by older archivers.

What:
  Scan an export directory for documents whose frontmatter contains Python
  object tags (``!!python/object:email.header.Header`` and friends, plus the
  anchors and aliases that come with them) and rewrite it as plain YAML.

Why:
  Archives produced with ``yaml.dump`` on raw header objects cannot be read
  with ``yaml.safe_load``, so the category engine rejects them. Repairing the
  frontmatter in place brings those files back into the sort pass.

How:
  Tags, anchors and aliases are stripped from the frontmatter block only; an
  encoded subject is recovered from its ``_chunks`` list. When the cleaned text
  still fails to parse, a minimal frontmatter (``from``, ``to``, ``date``,
  ``subject``, empty ``tags`` and ``attachments``) is rebuilt from the
  original lines. The body is never modified. Runs are dry by default.

Interfaces:
  :class:`RepairStats`, :func:`needs_repair`, :func:`repair_text`,
  :func:`repair_file`, :func:`repair_directory`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..utils.logging import JsonLogger, get_logger
from ..utils.text import split_frontmatter
from .categorize import iter_documents


LEGACY_MARKER = "!!python/"

_SUBJECT_OBJECT_RE = re.compile(
    r"^subject:[ \t]*!!python/object[^\n]*\n(?P<block>(?:[ \t]+[^\n]*(?:\n|$))*)", re.MULTILINE
)
_CHUNK_TEXT_RE = re.compile(r"-\s*(?:-\s*)?(?P<quote>[\"'])(?P<text>.*?)(?P=quote)")
_PYTHON_TAG_RE = re.compile(r"!!python/[\w/]+(?::[\w.]+)?(?:\s*\[[^\]]*\])?[ \t]*")
_ANCHOR_RE = re.compile(r"(?<=[\s:\-])&[\w-]+[ \t]*")
_ALIAS_RE = re.compile(r"(?<=[\s:\-])\*[\w-]+")
_SIMPLE_FIELDS = ("from", "to", "date")


@dataclass
class RepairStats:
    """Counters for one repair pass.

    Attributes:
      total_scanned: Markdown files inspected.
      files_fixed: Files whose tags were stripped and now parse.
      files_rewritten: Files that needed a rebuilt minimal frontmatter.
      errors: Files that could not be read or written.
      changed: Relative paths of fixed or rewritten files.
    """

    total_scanned: int = 0
    files_fixed: int = 0
    files_rewritten: int = 0
    errors: int = 0
    changed: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{self.total_scanned} scanned, {self.files_fixed} fixed, "
            f"{self.files_rewritten} rewritten, {self.errors} errors"
        )


def needs_repair(text: str) -> bool:
    parts = split_frontmatter(text)
    return parts is not None and LEGACY_MARKER in parts[0]


def _recover_subject(frontmatter: str) -> str:
    match = _SUBJECT_OBJECT_RE.search(frontmatter)
    if not match:
        return frontmatter
    chunk = _CHUNK_TEXT_RE.search(match.group("block"))
    subject = chunk.group("text") if chunk else "Unknown"
    replacement = yaml.safe_dump({"subject": subject}, allow_unicode=True, width=10_000)
    return frontmatter[: match.start()] + replacement + frontmatter[match.end():]


def strip_legacy_tags(frontmatter: str) -> str:
    """Remove Python tags, anchors and aliases from a frontmatter block."""

    cleaned = _recover_subject(frontmatter)
    cleaned = _PYTHON_TAG_RE.sub("", cleaned)
    cleaned = _ANCHOR_RE.sub("", cleaned)
    return _ALIAS_RE.sub("", cleaned)


def _first_value(frontmatter: str, name: str) -> str:
    match = re.search(rf"^{name}:[ \t]*(?P<value>[^\n]+)", frontmatter, re.MULTILINE)
    if not match:
        return "Unknown"
    value = _PYTHON_TAG_RE.sub("", match.group("value")).strip().strip("\"'")
    return value or "Unknown"


def simple_frontmatter(frontmatter: str) -> Dict[str, Any]:
    """Rebuild a minimal metadata mapping from unparseable frontmatter."""

    meta: Dict[str, Any] = {name: _first_value(frontmatter, name) for name in _SIMPLE_FIELDS}
    recovered = _recover_subject(frontmatter)
    subject = _first_value(recovered, "subject")
    meta["subject"] = subject
    meta["tags"] = []
    meta["attachments"] = []
    return meta


def _parses(frontmatter: str) -> bool:
    try:
        return isinstance(yaml.safe_load(frontmatter), dict)
    except yaml.YAMLError:
        return False


def repair_text(text: str) -> Tuple[Optional[str], str]:
    """Repair one document's text.

    Returns:
      ``(new_text, action)`` where ``action`` is ``"unchanged"``, ``"fixed"``
      or ``"rewritten"``; ``new_text`` is ``None`` when unchanged.
    """

    parts = split_frontmatter(text)
    if parts is None or LEGACY_MARKER not in parts[0]:
        return None, "unchanged"
    frontmatter, body = parts
    cleaned = strip_legacy_tags(frontmatter)
    if _parses(cleaned):
        if not cleaned.endswith("\n"):
            cleaned += "\n"
        return f"---\n{cleaned}---\n{body}", "fixed"
    meta = yaml.safe_dump(simple_frontmatter(frontmatter), sort_keys=False, allow_unicode=True)
    return f"---\n{meta}---\n{body}", "rewritten"


def repair_file(path: Path, *, dry_run: bool = True) -> str:
    """Repair ``path`` in place unless ``dry_run``; return the action taken."""

    text = path.read_text(encoding="utf-8")
    new_text, action = repair_text(text)
    if new_text is not None and not dry_run:
        path.write_text(new_text, encoding="utf-8")
    return action


def repair_directory(
    directory: Path,
    *,
    dry_run: bool = True,
    logger: Optional[JsonLogger] = None,
) -> RepairStats:
    """Scan ``directory`` and repair every legacy document.

    Per-file failures are counted and logged; the scan continues.
    """

    logger = logger or get_logger("mailmark.repair")
    stats = RepairStats()
    for path in iter_documents(directory):
        stats.total_scanned += 1
        relative = path.relative_to(directory).as_posix()
        try:
            action = repair_file(path, dry_run=dry_run)
        except (OSError, UnicodeDecodeError) as exc:
            stats.errors += 1
            logger.error("repair_failed", file=relative, error=str(exc))
            continue
        if action == "fixed":
            stats.files_fixed += 1
        elif action == "rewritten":
            stats.files_rewritten += 1
        else:
            continue
        stats.changed.append(relative)
        logger.info("document_repaired", file=relative, action=action, dry_run=dry_run)
    return stats
