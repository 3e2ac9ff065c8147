"""Text helpers shared by the message transform and the category engine.

What:
  Short-name extraction for filenames, address extraction, line-break
  normalisation, filename sanitising and frontmatter splitting.

Why:
  These helpers are used on both sides of the archive: while writing documents
  and while reading them back for categorisation or repair. A single
  implementation keeps the two passes in agreement.

How:
  Plain functions over ``str`` built on :mod:`re` and :mod:`email.utils`.

Interfaces:
  :func:`get_short_name`, :func:`extract_emails`,
  :func:`normalize_line_breaks`, :func:`sanitize_filename`,
  :func:`split_frontmatter`.

Invariants:
  - :func:`get_short_name` isolates the display-name segment before deriving
    initials and never splits the combined ``"Name <addr>"`` string.
  - :func:`get_short_name` always returns a non-empty uppercase token.
"""
from __future__ import annotations

import re
from email.utils import getaddresses
from typing import List, Optional, Tuple


UNKNOWN_SHORT_NAME = "UNK"
SHORT_NAME_LENGTH = 3

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w.-]+\.\w+")
_EXCESS_BREAKS_RE = re.compile(r"\n{3,}")
_UNSAFE_FILENAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WORD_SPLIT_RE = re.compile(r"[\s,;]+")
FRONTMATTER_DELIMITER = "---"


def _letters(value: str) -> str:
    return "".join(char for char in value if char.isalpha())


def short_name_for(display_name: str, address: str, length: int = SHORT_NAME_LENGTH) -> str:
    """Derive a short identifier from an already separated name and address.

    What:
      With a display name, returns the initials of its first ``length`` words,
      or the first ``length`` letters when the name is a single word. Without
      one, returns the first ``length`` letters of the address local part.

    Args:
      display_name: Display-name segment, possibly empty.
      address: Bare address, possibly empty.
      length: Maximum number of characters kept.

    Returns:
      Uppercase letters only, or :data:`UNKNOWN_SHORT_NAME`.
    """

    display_name = display_name.strip().strip("\"'")
    result = ""
    if display_name and "@" not in display_name:
        words = [word for word in _WORD_SPLIT_RE.split(display_name) if _letters(word)]
        if len(words) > 1:
            result = "".join(_letters(word)[0] for word in words[:length])
        elif words:
            result = _letters(words[0])[:length]
    if not result:
        source = address or display_name
        local_part = source.split("@", 1)[0]
        result = _letters(local_part)[:length]
    return result.upper() or UNKNOWN_SHORT_NAME


def get_short_name(value: Optional[str], length: int = SHORT_NAME_LENGTH) -> str:
    """Return the short identifier used in exported filenames.

    ``"John Doe <john@example.com>"`` yields ``"JD"`` and
    ``"jane.doe@example.com"`` yields ``"JAN"``. A value without ``@`` is a
    bare display name, so ``"John Doe"`` also yields ``"JD"``. Header values
    holding several addresses use the first one.
    """

    if not value or not value.strip():
        return UNKNOWN_SHORT_NAME
    if "@" not in value:
        return short_name_for(value, "", length)
    pairs = [pair for pair in getaddresses([value]) if pair[0] or pair[1]]
    display_name, address = pairs[0] if pairs else ("", value)
    return short_name_for(display_name, address, length)


def extract_emails(text: str) -> List[str]:
    """Return the lowercase addresses found in ``text``, first occurrence order."""

    seen: List[str] = []
    for match in _EMAIL_RE.findall(text or ""):
        address = match.lower()
        if address not in seen:
            seen.append(address)
    return seen


def normalize_line_breaks(text: str) -> str:
    """Convert CRLF to LF and collapse runs of three or more newlines to two."""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _EXCESS_BREAKS_RE.sub("\n\n", text)


def sanitize_filename(name: str, fallback: str = "unnamed") -> str:
    """Replace characters that are unsafe in filenames with ``_``.

    Leading and trailing whitespace and dots are dropped so that a name can
    never resolve to ``.`` or ``..``.
    """

    cleaned = _UNSAFE_FILENAME_RE.sub("_", name or "").strip().strip(".")
    return cleaned or fallback


def split_frontmatter(text: str) -> Optional[Tuple[str, str]]:
    """Split a document into its frontmatter block and the remaining body.

    What:
      Recognises documents whose first line is ``---`` and returns the text
      between that line and the next ``---`` line, plus everything after it.

    Returns:
      ``(frontmatter, body)`` or ``None`` when the document has no delimited
      block.
    """

    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        return None
    for index in range(1, len(lines)):
        if lines[index].strip() == FRONTMATTER_DELIMITER:
            frontmatter = "".join(lines[1:index])
            body = "".join(lines[index + 1:])
            return frontmatter, body
    return None
