"""mailmark logging helpers with JSON emission and redaction of message content.

What:
  Offer a small facade over Python streams so the export and sort pipelines can
  emit one JSON object per line with a stable set of fields.

Why:
  Archive runs can process tens of thousands of messages. Operators grep the
  output for failures and counters, and the log must never contain message
  subjects, bodies or credentials even when a debug context is attached.

How:
  Provide a :class:`JsonLogger` dataclass bound to a stream and a component
  label. ``extra`` dictionaries are scrubbed recursively before being
  serialised with ``json.dump``.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`.

Invariants & Safety:
  - Each payload includes ``ts``, ``lvl``, ``msg`` and ``component``.
  - Keys listed in :data:`SENSITIVE_KEYS` are replaced with ``[redacted]`` at
    any nesting depth.
  - Streams are flushed after every entry so interrupted runs keep their tail.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"

SENSITIVE_KEYS = frozenset({"subject", "body", "password", "snippet"})


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Emits single-line JSON entries carrying a timestamp, severity, component
      tag and optional context fields.

    Why:
      The exporter, the category engine and the task coordinator all report
      progress the same way, which keeps test assertions and log parsing
      uniform.

    How:
      Stores the destination stream and component label and exposes
      :meth:`log` plus the ``info``/``warning``/``error`` shortcuts.
    """

    stream: Any = field(default_factory=lambda: sys.stderr)
    component: str = "mailmark"

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Serialise ``message`` and redacted ``extra`` to the stream.

        Args:
          level: Severity label, uppercased in the payload.
          message: Event name, usually a snake_case token such as
            ``message_exported``.
          extra: Optional context merged into the payload after redaction.
        """

        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            payload.update(self._redact(extra))
        json.dump(payload, self.stream, separators=(",", ":"), default=str)
        self.stream.write("\n")
        self.stream.flush()

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("ERROR", message, extra=kwargs)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``data`` with sensitive keys masked.

        What:
          Walks the mapping and replaces values stored under
          :data:`SENSITIVE_KEYS`, recursing into nested dictionaries.

        Why:
          Context dictionaries are built close to the message being processed
          and it is easy to attach a header mapping that contains the subject.

        Args:
          data: Arbitrary metadata to sanitise.

        Returns:
          Redacted copy of ``data``; the input is left untouched.
        """

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS:
                result[key] = REDACTED
            elif isinstance(value, dict):
                result[key] = JsonLogger._redact(value)
            else:
                result[key] = value
        return result


def get_logger(component: str, stream: Any = None) -> JsonLogger:
    """Construct a :class:`JsonLogger` for ``component``.

    Args:
      component: Subsystem name included in every payload.
      stream: Optional destination; defaults to ``stderr`` so command output on
        ``stdout`` stays clean for scripts.

    Returns:
      Configured :class:`JsonLogger` instance.
    """

    if stream is None:
        return JsonLogger(component=component)
    return JsonLogger(stream=stream, component=component)
