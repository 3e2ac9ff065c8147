"""Run identifiers and content digests for mailmark artefacts.

What:
  Provide helpers for run IDs, namespaced SHA-256 checksums and the short MD5
  prefixes embedded in exported filenames.

Why:
  Filenames must be reproducible across runs for the skip-existing contract to
  hold. Keeping the hashing in one place stops the exporter and the attachment
  writer from drifting apart.

How:
  Wrap :mod:`hashlib` and :mod:`secrets`. :func:`short_hash` accepts ``str`` or
  ``bytes`` and encodes text as UTF-8.

Interfaces:
  :func:`new_run_id`, :func:`checksum`, :func:`short_hash`.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone
from typing import Union


SHORT_HASH_LENGTH = 6


def new_run_id() -> str:
    """Return an identifier such as ``2024-01-01T00:00:00+00:00#1a2b3c``."""

    timestamp = datetime.now(timezone.utc).isoformat()
    suffix = secrets.token_hex(3)
    return f"{timestamp}#{suffix}"


def checksum(data: bytes) -> str:
    """Compute a ``sha256:``-prefixed digest for ``data``."""

    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def short_hash(data: Union[str, bytes], length: int = SHORT_HASH_LENGTH) -> str:
    """Return the first ``length`` hex characters of the MD5 digest of ``data``.

    What:
      Produces the collision-avoidance suffix used in Markdown filenames and
      in prefixes for clashing attachment names.

    Why:
      MD5 is not used for integrity here, only to spread message identities
      over a short, stable token. Six hex characters keep filenames readable.

    Args:
      data: Message identity (usually the ``Message-ID`` header).
      length: Number of hex characters to keep.

    Returns:
      Lowercase hexadecimal prefix.
    """

    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.md5(data).hexdigest()[:length]
