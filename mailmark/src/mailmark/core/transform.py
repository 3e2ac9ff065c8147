"""Message transform: turn one raw message into a Markdown document.

What:
  Pure functions that parse a raw RFC822 message, limit quoted text, decide
  which attachments to keep, compute the deterministic filename, and render
  the YAML frontmatter plus Markdown body.

Why:
  The exporter's idempotency contract depends on the filename being a
  function of the message alone. Keeping every decision about a message's
  on-disk form in side-effect-free helpers makes that property directly
  testable without an IMAP server.

How:
  Parsing goes through :mod:`mailmark.utils.mime`. Filenames are derived from
  the header mapping only, so the exporter can compute them from a cheap
  ``BODY.PEEK[HEADER]`` fetch and skip a message before downloading it. The
  frontmatter is a plain dictionary dumped with ``yaml.safe_dump``.

Interfaces:
  :func:`limit_quote_depth`, :func:`is_signature_image`,
  :func:`select_attachments`, :func:`build_filename`, :func:`message_date`,
  :func:`build_frontmatter`, :func:`render_document`,
  :func:`transform_message`, :class:`TransformedMessage`,
  :data:`SIGNATURE_IMAGE_MAX_BYTES`.

Invariants:
  - The same message always produces the same filename. Messages without a
    ``Message-ID`` are named from their complete raw bytes.
  - Two messages with different identities produce different hash suffixes
    unless their MD5 prefixes collide.
  - Lines quoted deeper than ``quote_depth`` never reach the document.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

from ..config.schema import DEFAULT_SIGNATURE_MAX_BYTES, SignatureImagePolicy
from ..utils.ids import short_hash
from ..utils.mime import AttachmentPart, iter_attachments, parse_message
from ..utils.text import get_short_name, normalize_line_breaks, sanitize_filename
from .contacts import classify_message


SIGNATURE_IMAGE_MAX_BYTES = DEFAULT_SIGNATURE_MAX_BYTES
"""Images strictly smaller than this many bytes may be signature images."""

UNDATED = "undated"
FILENAME_PREFIX = "email"
_QUOTE_PREFIX_RE = re.compile(r"^[ \t]*((?:>[ \t]?)+)")


def quote_level(line: str) -> int:
    """Return the number of leading ``>`` markers on ``line``."""

    match = _QUOTE_PREFIX_RE.match(line)
    if not match:
        return 0
    return match.group(1).count(">")


def limit_quote_depth(text: str, depth: int) -> str:
    """Drop quoted lines nested deeper than ``depth``.

    What:
      Keeps unquoted lines and quoted lines whose level is at most ``depth``.
      ``depth=0`` removes every quoted line; there is no upper bound.

    Why:
      Long threads repeat the whole conversation in every reply. Keeping one
      level preserves the context being answered without duplicating history.

    Args:
      text: Message body.
      depth: Maximum quoting level to keep.

    Returns:
      Filtered body with runs of blank lines collapsed.
    """

    if depth < 0:
        raise ValueError("quote depth must not be negative")
    kept = [line for line in text.splitlines() if quote_level(line) <= depth]
    return normalize_line_breaks("\n".join(kept)).strip("\n")


def is_signature_image(
    filename: str,
    content_type: str,
    size: int,
    *,
    disposition: Optional[str] = None,
    content_id: Optional[str] = None,
    policy: Optional[SignatureImagePolicy] = None,
) -> bool:
    """Decide whether an attachment is a signature image.

    What:
      Returns ``True`` when the part is an image, is strictly smaller than the
      policy threshold, and either has a signature-like name or is referenced
      inline (``Content-Disposition: inline`` or a ``Content-ID``).

    Why:
      Corporate signatures attach the same logo to every message. Extracting
      it thousands of times buries the real attachments.

    Args:
      filename: Attachment filename.
      content_type: MIME type as declared by the part.
      size: Decoded payload size in bytes.
      disposition: ``inline``, ``attachment`` or ``None``.
      content_id: Content-ID of the part, if any.
      policy: Thresholds; defaults to :class:`SignatureImagePolicy` defaults.
    """

    policy = policy or SignatureImagePolicy()
    name = (filename or "").lower()
    is_image = (content_type or "").lower().startswith("image/") or name.endswith(
        tuple(extension.lower() for extension in policy.image_extensions)
    )
    if not is_image or size >= policy.max_bytes:
        return False
    if any(pattern.lower() in name for pattern in policy.name_patterns):
        return True
    return disposition == "inline" or bool(content_id)


def select_attachments(
    parts: Sequence[AttachmentPart],
    *,
    skip_signature_images: bool,
    policy: Optional[SignatureImagePolicy] = None,
) -> Tuple[List[AttachmentPart], List[AttachmentPart]]:
    """Split ``parts`` into ``(kept, skipped)`` according to the signature rule."""

    if not skip_signature_images:
        return list(parts), []
    kept: List[AttachmentPart] = []
    skipped: List[AttachmentPart] = []
    for part in parts:
        if is_signature_image(
            part.filename,
            part.content_type,
            part.size,
            disposition=part.disposition,
            content_id=part.content_id,
            policy=policy,
        ):
            skipped.append(part)
        else:
            kept.append(part)
    return kept, skipped


def message_date(headers: Mapping[str, str]) -> Optional[datetime]:
    """Parse the ``Date`` header, returning ``None`` when absent or malformed."""

    value = headers.get("date")
    if not value:
        return None
    try:
        return parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return None


def has_message_id(headers: Mapping[str, str]) -> bool:
    return bool((headers.get("message-id") or "").strip())


def message_identity(headers: Mapping[str, str], raw: Optional[bytes] = None) -> Union[str, bytes]:
    """Return the value hashed into the filename suffix.

    The ``Message-ID`` when present. Without one, the complete raw message
    when it is available, so two messages with identical headers but
    different bodies never share a filename. The date, sender, recipients and
    subject joined together are the last resort.
    """

    message_id = (headers.get("message-id") or "").strip()
    if message_id:
        return message_id
    if raw is not None:
        return raw
    return "|".join(
        str(headers.get(name) or "").strip() for name in ("date", "from", "to", "subject")
    )


def first_recipient(headers: Mapping[str, str]) -> str:
    values = [headers[name] for name in ("to", "cc") if headers.get(name)]
    for display, address in getaddresses(values):
        if display or address:
            return f"{display} <{address}>" if display else address
    return ""


def build_filename(headers: Mapping[str, str], raw: Optional[bytes] = None) -> str:
    """Compute ``email_<date>_<sender>_to_<recipient>_<hash6>.md``.

    Messages carrying a ``Message-ID`` are named from their headers alone;
    ``raw`` only matters for messages without one, see :func:`message_identity`.
    """

    date = message_date(headers)
    date_part = date.strftime("%Y-%m-%d") if date else UNDATED
    sender = get_short_name(headers.get("from"))
    recipient = get_short_name(first_recipient(headers))
    digest = short_hash(message_identity(headers, raw))
    return f"{FILENAME_PREFIX}_{date_part}_{sender}_to_{recipient}_{digest}.md"


def _address_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    result: List[str] = []
    for display, address in getaddresses([value]):
        if not (display or address):
            continue
        result.append(f"{display} <{address}>" if display else address)
    return result


def build_frontmatter(
    headers: Mapping[str, str],
    *,
    folder: str,
    attachments: Sequence[str] = (),
    email_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the metadata mapping written at the top of each document."""

    date = message_date(headers)
    return {
        "from": str(headers.get("from") or ""),
        "to": _address_list(headers.get("to")),
        "cc": _address_list(headers.get("cc")),
        "date": date.isoformat() if date else None,
        "subject": str(headers.get("subject") or ""),
        "message_id": str(headers.get("message-id") or "").strip() or None,
        "folder": folder,
        "type": email_type or classify_message(headers),
        "sender_short": get_short_name(headers.get("from")),
        "recipient_short": get_short_name(first_recipient(headers)),
        "attachments": list(attachments),
        "tags": [],
    }


def render_document(frontmatter: Mapping[str, Any], body: str) -> str:
    """Render ``---`` delimited YAML frontmatter followed by the Markdown body."""

    meta = yaml.safe_dump(dict(frontmatter), sort_keys=False, allow_unicode=True)
    subject = frontmatter.get("subject") or "(no subject)"
    return f"---\n{meta}---\n\n# {subject}\n\n{body.strip()}\n"


@dataclass
class TransformedMessage:
    """Result of :func:`transform_message`, before attachment paths are known.

    Attributes:
      filename: Deterministic Markdown filename.
      identity_hash: Hash suffix of the filename, reused for clashing
        attachment names.
      headers: Lowercase header mapping.
      body: Quote-limited Markdown body.
      email_type: Classification from :func:`classify_message`.
      attachments: Parts to write.
      skipped_attachments: Parts recognised as signature images.
    """

    filename: str
    headers: Dict[str, str]
    body: str
    email_type: str
    folder: str
    identity_hash: str
    attachments: List[AttachmentPart] = field(default_factory=list)
    skipped_attachments: List[AttachmentPart] = field(default_factory=list)

    def render(self, attachment_paths: Sequence[str] = ()) -> str:
        frontmatter = build_frontmatter(
            self.headers,
            folder=self.folder,
            attachments=attachment_paths,
            email_type=self.email_type,
        )
        return render_document(frontmatter, self.body)


def transform_message(
    raw: bytes,
    *,
    folder: str,
    quote_depth: int,
    skip_signature_images: bool,
    policy: Optional[SignatureImagePolicy] = None,
) -> TransformedMessage:
    """Parse ``raw`` and apply every per-message rule.

    Args:
      raw: Complete message bytes.
      folder: Decoded folder name, stored in the frontmatter.
      quote_depth: Maximum quoting level kept in the body.
      skip_signature_images: Whether signature images are dropped.
      policy: Signature image thresholds.

    Returns:
      :class:`TransformedMessage` ready to be written.
    """

    message, headers, body = parse_message(raw)
    kept, skipped = select_attachments(
        iter_attachments(message),
        skip_signature_images=skip_signature_images,
        policy=policy,
    )
    return TransformedMessage(
        filename=build_filename(headers, raw),
        headers=headers,
        body=limit_quote_depth(body, quote_depth),
        email_type=classify_message(headers),
        folder=folder,
        identity_hash=short_hash(message_identity(headers, raw)),
        attachments=kept,
        skipped_attachments=skipped,
    )


def attachment_filename(part: AttachmentPart) -> str:
    return sanitize_filename(part.filename, fallback="attachment")
