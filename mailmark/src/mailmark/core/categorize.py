"""Category engine: sort exported documents into delete / summarize / keep.

What:
  Read the Markdown documents produced by the exporter, evaluate each against
  a :class:`~mailmark.config.schema.SortRuleSet`, and produce a report listing
  the documents per retention category with the rule that decided each one.

Why:
  Deciding what to keep in a large archive is tedious and error-prone by hand.
  The rules are simple on their own; what makes results trustworthy is a
  fixed evaluation order where the first matching step wins and every verdict
  names its rule.

How:
  :func:`classify` is a pure function over an :class:`ExportedDocument` (whose
  age is computed once when the file is loaded) and the rule set. It runs the
  five steps in order: whitelist, delete rules, keep rules, list traffic, age.
  :func:`sort_directory` loads every document under an export directory,
  counts and logs per-file failures, and gathers a :class:`SortReport` that
  :func:`write_report` saves as JSON.

Interfaces:
  :class:`ExportedDocument`, :class:`ClassificationVerdict`,
  :class:`SortReport`, :func:`load_document`, :func:`classify`,
  :func:`sender_matches`, :func:`sort_directory`, :func:`write_report`.

Invariants:
  - Classification never touches the network or the filesystem.
  - A whitelisted sender is kept even when a delete keyword matches.
  - A document without a known date never matches an age rule.
"""
from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from ..config.schema import SortRuleSet
from ..utils.logging import JsonLogger, get_logger
from ..utils.text import split_frontmatter
from .contacts import MAILING_LIST, NEWSLETTER, NEWSLETTER_MARKERS


DELETE = "delete"
SUMMARIZE = "summarize"
KEEP = "keep"
CATEGORIES = (DELETE, SUMMARIZE, KEEP)

REPORT_FILENAME = "sort_report.json"
TOP_SENDERS = 10

_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y")


class DocumentError(ValueError):
    """An exported document exists but its frontmatter cannot be read."""


@dataclass(frozen=True)
class ExportedDocument:
    """Metadata of one exported message as read back from disk.

    Attributes:
      id: Path relative to the export directory, POSIX separators.
      sender: Raw ``from`` value.
      recipients: ``to`` addresses.
      subject: Message subject.
      body: Markdown body after the frontmatter.
      date: Parsed message date, ``None`` when unknown.
      age_days: Whole days between ``date`` and the evaluation time.
      attachments: Attachment paths listed in the frontmatter.
      email_type: ``direct``, ``group``, ``newsletter`` or ``mailing_list``.
    """

    id: str
    sender: str
    subject: str = ""
    body: str = ""
    recipients: tuple = ()
    date: Optional[datetime] = None
    age_days: Optional[int] = None
    attachments: tuple = ()
    email_type: Optional[str] = None

    @property
    def sender_address(self) -> str:
        for _, address in getaddresses([self.sender]):
            if address:
                return address.strip().lower()
        return self.sender.strip().lower()


@dataclass(frozen=True)
class ClassificationVerdict:
    """Category assigned to a document plus the rule that produced it."""

    category: str
    rule: str
    detail: Optional[str] = None


def parse_date(value: Any) -> Optional[datetime]:
    """Parse frontmatter dates in the formats found in exported archives.

    Accepts ``datetime``/``date`` objects (unquoted YAML timestamps), ISO 8601,
    RFC 2822, ``YYYY-MM-DD[ HH:MM:SS]``, ``DD/MM/YYYY`` and ``MM/DD/YYYY``.
    Naive values are taken as UTC.
    """

    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is None:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                parsed = None
        if parsed is None:
            for pattern in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, pattern)
                    break
                except ValueError:
                    continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    text = str(value).strip()
    return [text] if text else []


def _infer_type(subject: str) -> str:
    lowered = subject.lower()
    if any(marker in lowered for marker in NEWSLETTER_MARKERS):
        return NEWSLETTER
    return "direct"


def load_document(path: Path, base_dir: Path, now: Optional[datetime] = None) -> Optional[ExportedDocument]:
    """Read ``path`` and return its metadata.

    Returns:
      :class:`ExportedDocument`, or ``None`` when the file has no frontmatter
      block (notes and other Markdown files living in the tree).

    Raises:
      DocumentError: When the frontmatter is not a valid YAML mapping.
      OSError: When the file cannot be read.
    """

    text = path.read_text(encoding="utf-8", errors="replace")
    parts = split_frontmatter(text)
    if parts is None:
        return None
    frontmatter, body = parts
    try:
        meta = yaml.safe_load(frontmatter) or {}
    except yaml.YAMLError as exc:
        raise DocumentError(f"invalid frontmatter in {path.name}: {exc}") from exc
    if not isinstance(meta, dict):
        raise DocumentError(f"frontmatter of {path.name} is not a mapping")

    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    when = parse_date(meta.get("date"))
    age = (moment - when).days if when is not None else None
    subject = str(meta.get("subject") or "")
    return ExportedDocument(
        id=path.relative_to(base_dir).as_posix(),
        sender=str(meta.get("from") or ""),
        subject=subject,
        body=body,
        recipients=tuple(_as_list(meta.get("to"))),
        date=when,
        age_days=age,
        attachments=tuple(_as_list(meta.get("attachments"))),
        email_type=str(meta.get("type") or _infer_type(subject)),
    )


def sender_matches(address: str, pattern: str, *, allow_substring: bool = False) -> bool:
    """Match a sender address against one rule pattern.

    What:
      ``@domain`` matches addresses ending with it, ``prefix@`` matches
      addresses starting with it, any other pattern containing ``@`` must
      equal the address. Patterns without ``@`` match as case-insensitive
      substrings when ``allow_substring`` is set and never otherwise.
    """

    address = address.strip().lower()
    candidate = pattern.strip().lower()
    if not candidate or not address:
        return False
    if candidate.startswith("@"):
        return address.endswith(candidate)
    if candidate.endswith("@"):
        return address.startswith(candidate)
    if "@" in candidate:
        return address == candidate
    return allow_substring and candidate in address


def _first_keyword(document: ExportedDocument, keywords: Iterable[str]) -> Optional[str]:
    haystack = f"{document.subject}\n{document.body}".lower()
    for keyword in keywords:
        needle = keyword.strip().lower()
        if needle and needle in haystack:
            return keyword
    return None


def classify(document: ExportedDocument, rules: SortRuleSet) -> ClassificationVerdict:
    """Assign a retention category to ``document``.

    What:
      Evaluates, in order, and returns at the first match:

      1. sender on the whitelist: ``keep``;
      2. sender matches ``delete_senders`` or a ``delete_keywords`` term
         appears in subject/body: ``delete``;
      3. a ``keep_keywords`` term appears, or ``keep_with_attachments`` is set
         and the document has attachments: ``keep``;
      4. newsletter or mailing-list traffic: ``delete`` when older than
         ``old_threshold_days``, otherwise ``summarize``;
      5. age at most ``recent_threshold_days``: ``summarize``; age at least
         ``old_threshold_days``: ``delete``; otherwise ``keep``.

    Args:
      document: Metadata loaded with :func:`load_document`.
      rules: Rule set.

    Returns:
      :class:`ClassificationVerdict` naming the step that matched.
    """

    address = document.sender_address
    for pattern in rules.whitelist:
        if sender_matches(address, pattern):
            return ClassificationVerdict(KEEP, "whitelist", pattern)

    for pattern in rules.delete_senders:
        if sender_matches(address, pattern, allow_substring=True):
            return ClassificationVerdict(DELETE, "delete_senders", pattern)
    keyword = _first_keyword(document, rules.delete_keywords)
    if keyword is not None:
        return ClassificationVerdict(DELETE, "delete_keywords", keyword)

    keyword = _first_keyword(document, rules.keep_keywords)
    if keyword is not None:
        return ClassificationVerdict(KEEP, "keep_keywords", keyword)
    if rules.keep_with_attachments and document.attachments:
        return ClassificationVerdict(KEEP, "keep_with_attachments")

    age = document.age_days
    if document.email_type in (NEWSLETTER, MAILING_LIST):
        if age is not None and age > rules.old_threshold_days:
            return ClassificationVerdict(DELETE, "old_list_mail", document.email_type)
        return ClassificationVerdict(SUMMARIZE, "list_mail", document.email_type)

    if age is not None:
        if age <= rules.recent_threshold_days:
            return ClassificationVerdict(SUMMARIZE, "recent")
        if age >= rules.old_threshold_days:
            return ClassificationVerdict(DELETE, "old")
    return ClassificationVerdict(KEEP, "default")


@dataclass
class SortReport:
    """Result of sorting one export directory."""

    directory: str
    generated_at: str
    delete: List[str] = field(default_factory=list)
    summarize: List[str] = field(default_factory=list)
    keep: List[str] = field(default_factory=list)
    verdicts: Dict[str, ClassificationVerdict] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    ignored: int = 0
    by_type: Counter = field(default_factory=Counter)
    senders: Counter = field(default_factory=Counter)
    by_month: Counter = field(default_factory=Counter)

    @property
    def total(self) -> int:
        return len(self.delete) + len(self.summarize) + len(self.keep)

    def counts(self) -> Dict[str, int]:
        return {category: len(getattr(self, category)) for category in CATEGORIES}

    def add(self, document: ExportedDocument, verdict: ClassificationVerdict) -> None:
        getattr(self, verdict.category).append(document.id)
        self.verdicts[document.id] = verdict
        self.by_type[document.email_type or "unknown"] += 1
        self.senders[document.sender_address or "unknown"] += 1
        if document.date is not None:
            self.by_month[document.date.strftime("%Y-%m")] += 1

    def to_dict(self) -> Dict[str, Any]:
        counts = self.counts()
        total = self.total
        return {
            "summary": {
                "directory": self.directory,
                "generated_at": self.generated_at,
                "total": total,
                "counts": counts,
                "percentages": {
                    category: round(100.0 * count / total, 1) if total else 0.0
                    for category, count in counts.items()
                },
                "errors": len(self.errors),
                "ignored": self.ignored,
            },
            "delete": list(self.delete),
            "summarize": list(self.summarize),
            "keep": list(self.keep),
            "rules": {
                doc_id: {"category": verdict.category, "rule": verdict.rule, "detail": verdict.detail}
                for doc_id, verdict in self.verdicts.items()
            },
            "details": {
                "by_type": dict(self.by_type),
                "top_senders": [
                    {"sender": sender, "count": count}
                    for sender, count in self.senders.most_common(TOP_SENDERS)
                ],
                "by_month": dict(sorted(self.by_month.items())),
            },
            "errors": list(self.errors),
        }


def iter_documents(directory: Path) -> List[Path]:
    """Return Markdown files under ``directory`` outside attachment folders."""

    paths = []
    for path in sorted(directory.rglob("*.md")):
        if "attachments" in path.relative_to(directory).parts:
            continue
        paths.append(path)
    return paths


def sort_directory(
    directory: Path,
    rules: SortRuleSet,
    *,
    now: Optional[datetime] = None,
    logger: Optional[JsonLogger] = None,
) -> SortReport:
    """Classify every exported document under ``directory``.

    Per-file failures are logged and listed in :attr:`SortReport.errors`;
    they never abort the pass.
    """

    logger = logger or get_logger("mailmark.sort")
    moment = now or datetime.now(timezone.utc)
    report = SortReport(directory=directory.as_posix(), generated_at=moment.isoformat())
    for path in iter_documents(directory):
        try:
            document = load_document(path, directory, moment)
        except (OSError, DocumentError) as exc:
            report.errors.append(path.relative_to(directory).as_posix())
            logger.error("document_failed", file=path.name, error=str(exc))
            continue
        if document is None:
            report.ignored += 1
            continue
        report.add(document, classify(document, rules))
    logger.info("sort_finished", directory=directory.as_posix(), **report.counts())
    return report


def write_report(report: SortReport, path: Optional[Path] = None) -> Path:
    """Save ``report`` as JSON, by default to ``<directory>/sort_report.json``."""

    target = path or Path(report.directory) / REPORT_FILENAME
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(
        json.dumps(report.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
    )
    return target
