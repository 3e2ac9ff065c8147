"""MIME parsing helpers for the Markdown export pipeline.

What:
  Turn raw RFC822 payloads into :class:`email.message.EmailMessage` objects,
  lowercase header dictionaries, a readable text body and a list of attachment
  parts.

Why:
  Messages come from arbitrary senders and clients. The exporter needs one
  predictable representation whether a message is plain text, HTML only,
  multipart/alternative, or carries inline images and attachments.

How:
  Use :class:`~email.parser.BytesParser` with the default policy. Text bodies
  prefer ``text/plain`` and fall back to ``text/html`` converted with
  :mod:`html2text`. Attachment parts are collected while walking the MIME tree
  and keep their disposition and ``Content-ID`` so the signature-image
  heuristic can tell inline images from real attachments.

Interfaces:
  :func:`parse_message`, :func:`parse_headers`, :func:`iter_attachments`,
  :class:`AttachmentPart`.

Invariants & Safety:
  - Body text is always ``str``; undecodable bytes are replaced, unknown
    charsets fall back to UTF-8.
  - Truncation is performed on encoded bytes so multi-byte characters are
    never split.
"""
from __future__ import annotations

from dataclasses import dataclass
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Dict, List, Optional, Tuple

import html2text


MAX_BODY_BYTES = 5_000_000
"""Upper bound for a decoded body; larger bodies are truncated."""


@dataclass(frozen=True)
class AttachmentPart:
    """One leaf MIME part that should be considered for extraction.

    Attributes:
      filename: Decoded filename, possibly synthesised for nameless inline
        images.
      content_type: Lowercase ``maintype/subtype``.
      payload: Transfer-decoded bytes.
      disposition: ``"attachment"``, ``"inline"`` or ``None``.
      content_id: ``Content-ID`` header without angle brackets, if present.
    """

    filename: str
    content_type: str
    payload: bytes
    disposition: Optional[str] = None
    content_id: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.payload)


def parse_message(raw: bytes) -> Tuple[EmailMessage, Dict[str, str], str]:
    """Parse a raw message into the structures used by the transform.

    What:
      Returns the parsed :class:`EmailMessage`, a header mapping keyed by
      lowercase names, and the best textual body.

    Args:
      raw: Bytes from a ``BODY[]`` fetch.

    Returns:
      ``(message, headers, body_text)``.
    """

    parser = BytesParser(policy=policy.default)
    message = parser.parsebytes(raw)
    headers = _header_map(message)
    body_text = _extract_body_text(message)
    return message, headers, body_text


def parse_headers(raw: bytes) -> Dict[str, str]:
    """Parse a ``BODY[HEADER]`` block into a lowercase header mapping."""

    message = BytesParser(policy=policy.default).parsebytes(raw, headersonly=True)
    return _header_map(message)


def _header_map(message: EmailMessage) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for name, value in message.items():
        key = name.lower()
        # Repeated headers (To split over two lines by some clients) are joined.
        if key in headers and key in {"to", "cc"}:
            headers[key] = f"{headers[key]}, {value}"
        elif key not in headers:
            headers[key] = str(value)
    return headers


def _decode_part(part: EmailMessage) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _is_attachment(part: EmailMessage) -> bool:
    disposition = part.get_content_disposition()
    if disposition == "attachment":
        return True
    if part.get_content_maintype() == "text" and not part.get_filename():
        return False
    return bool(part.get_filename()) or part.get_content_maintype() in {"image", "application"}


def html_to_markdown(html: str) -> str:
    """Convert an HTML body to Markdown without hard line wrapping."""

    converter = html2text.HTML2Text()
    converter.ignore_links = False
    converter.ignore_images = True
    converter.body_width = 0
    return converter.handle(html)


def _extract_body_text(message: EmailMessage) -> str:
    """Select the textual representation of ``message``.

    What:
      Prefers the first non-attachment ``text/plain`` leaf, then the first
      ``text/html`` leaf converted to Markdown.

    Why:
      Newsletters frequently ship HTML only; returning an empty body for them
      would make keyword rules blind to most of the archive.
    """

    plain: Optional[str] = None
    html: Optional[str] = None
    for part in message.walk():
        if part.is_multipart() or _is_attachment(part):
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain" and plain is None:
            plain = _decode_part(part)
        elif content_type == "text/html" and html is None:
            html = _decode_part(part)
    if plain is not None and plain.strip():
        return _truncate(plain)
    if html is not None:
        return _truncate(html_to_markdown(html))
    return _truncate(plain or "")


def iter_attachments(message: EmailMessage) -> List[AttachmentPart]:
    """Collect attachment candidates in MIME order.

    Nameless inline images get a synthetic ``inline-<n>.<subtype>`` filename so
    they can still be written or filtered.
    """

    parts: List[AttachmentPart] = []
    for index, part in enumerate(message.walk()):
        if part.is_multipart() or not _is_attachment(part):
            continue
        content_type = part.get_content_type()
        filename = part.get_filename()
        if not filename:
            filename = f"inline-{index}.{part.get_content_subtype()}"
        content_id = part.get("Content-ID")
        if content_id:
            content_id = str(content_id).strip().strip("<>")
        parts.append(
            AttachmentPart(
                filename=str(filename),
                content_type=content_type,
                payload=part.get_payload(decode=True) or b"",
                disposition=part.get_content_disposition(),
                content_id=content_id or None,
            )
        )
    return parts


def _truncate(text: str) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= MAX_BODY_BYTES:
        return text
    return encoded[:MAX_BODY_BYTES].decode("utf-8", errors="ignore")
