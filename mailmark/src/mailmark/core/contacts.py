"""Contact ledger: aggregate and classify correspondents across an export.

What:
  Count how often each address appears in exported messages, remember a
  display name for it, and classify each contact as ``direct``, ``group``,
  ``newsletter`` or ``mailing_list`` from the kind of messages it appears in.

Why:
  The contacts file gives users a quick map of who they actually correspond
  with and which senders are bulk mail, and the per-message classification is
  reused by the category engine to treat list traffic differently.

How:
  :func:`classify_message` inspects list headers, subject and sender markers,
  and the recipient count. :class:`ContactLedger` keeps a
  :class:`collections.Counter` of classifications per address; on write the
  dominant classification wins, ties broken by :data:`CLASSIFICATION_PRECEDENCE`.
  Output is a CSV written with :mod:`csv`, merged with an existing file.

Interfaces:
  :func:`classify_message`, :class:`Contact`, :class:`ContactLedger`.
"""
from __future__ import annotations

import csv
from collections import Counter
from dataclasses import dataclass
from email.utils import getaddresses
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple


DIRECT = "direct"
GROUP = "group"
NEWSLETTER = "newsletter"
MAILING_LIST = "mailing_list"

CLASSIFICATION_PRECEDENCE = (NEWSLETTER, MAILING_LIST, GROUP, DIRECT)
NEWSLETTER_MARKERS = ("newsletter", "bulletin", "digest")
CSV_COLUMNS = ("address", "display_name", "classification", "count")


def _addresses(headers: Mapping[str, str], *names: str) -> List[Tuple[str, str]]:
    values = [headers[name] for name in names if headers.get(name)]
    pairs: List[Tuple[str, str]] = []
    for display, address in getaddresses(values):
        address = address.strip().lower()
        if "@" in address:
            pairs.append((display.strip(), address))
    return pairs


def classify_message(headers: Mapping[str, str]) -> str:
    """Classify one message from its lowercase header mapping.

    Order: ``List-Id`` means ``mailing_list``; a newsletter marker in the
    subject or sender, or a ``List-Unsubscribe`` header, means ``newsletter``;
    two or more To/Cc recipients mean ``group``; anything else is ``direct``.
    """

    if headers.get("list-id"):
        return MAILING_LIST
    subject = (headers.get("subject") or "").lower()
    sender = (headers.get("from") or "").lower()
    if any(marker in subject or marker in sender for marker in NEWSLETTER_MARKERS):
        return NEWSLETTER
    if headers.get("list-unsubscribe"):
        return NEWSLETTER
    if len(_addresses(headers, "to", "cc")) >= 2:
        return GROUP
    return DIRECT


@dataclass
class Contact:
    """One row of the contacts file."""

    address: str
    display_name: str
    classification: str
    count: int


class ContactLedger:
    """Accumulate contacts for one export run.

    What:
      Collects ``(address, display_name, classification)`` observations and
      renders them as :class:`Contact` rows.

    Why:
      Addresses appear many times across a mailbox, often with different
      classifications (a colleague both in direct threads and on group
      threads). Counting every observation and picking the dominant
      classification at the end gives a stable answer regardless of order.

    How:
      Keeps a ``Counter`` per address. The owner's own addresses are ignored.
    """

    def __init__(self, owner_addresses: Iterable[str] = ()):
        self._owners = {address.strip().lower() for address in owner_addresses if address}
        self._classifications: Dict[str, Counter] = {}
        self._names: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._classifications)

    def add(self, address: str, display_name: str, message_context: str) -> None:
        """Record one occurrence of ``address`` in a message of kind ``message_context``.

        Args:
          address: Email address; compared case-insensitively.
          display_name: Name seen alongside the address, may be empty.
          message_context: Classification of the message, as returned by
            :func:`classify_message`.
        """

        if message_context not in CLASSIFICATION_PRECEDENCE:
            raise ValueError(f"unknown contact classification: {message_context!r}")
        key = address.strip().lower()
        if not key or key in self._owners:
            return
        self._classifications.setdefault(key, Counter())[message_context] += 1
        if display_name and not self._names.get(key):
            self._names[key] = display_name.strip().strip('"')

    def add_message(self, headers: Mapping[str, str]) -> str:
        """Classify a message and record each distinct address it carries.

        Returns:
          The message classification.
        """

        classification = classify_message(headers)
        seen: set[str] = set()
        for display, address in _addresses(headers, "from", "to", "cc"):
            if address in seen:
                continue
            seen.add(address)
            self.add(address, display, classification)
        return classification

    def rows(self) -> List[Contact]:
        """Return one :class:`Contact` per address, most frequent first."""

        contacts: List[Contact] = []
        for address, counter in self._classifications.items():
            dominant = max(
                CLASSIFICATION_PRECEDENCE,
                key=lambda kind: (counter.get(kind, 0), -CLASSIFICATION_PRECEDENCE.index(kind)),
            )
            contacts.append(
                Contact(
                    address=address,
                    display_name=self._names.get(address, ""),
                    classification=dominant,
                    count=sum(counter.values()),
                )
            )
        contacts.sort(key=lambda contact: (-contact.count, contact.address))
        return contacts

    def write_csv(self, path: Path, *, merge: bool = True) -> List[Contact]:
        """Write the ledger to ``path``.

        What:
          Writes ``address,display_name,classification,count`` rows. With
          ``merge`` enabled, counts from an existing file are added to the
          current run's counts so repeated exports accumulate.

        Returns:
          The rows written.
        """

        rows = {contact.address: contact for contact in self.rows()}
        if merge and path.exists():
            for previous in read_contacts(path):
                current = rows.get(previous.address)
                if current is None:
                    rows[previous.address] = previous
                    continue
                current.count += previous.count
                if not current.display_name:
                    current.display_name = previous.display_name
        ordered = sorted(rows.values(), key=lambda contact: (-contact.count, contact.address))
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(CSV_COLUMNS)
            for contact in ordered:
                writer.writerow(
                    [contact.address, contact.display_name, contact.classification, contact.count]
                )
        return ordered


def read_contacts(path: Path) -> List[Contact]:
    """Read a contacts CSV written by :meth:`ContactLedger.write_csv`."""

    contacts: List[Contact] = []
    with path.open(newline="", encoding="utf-8") as handle:
        for record in csv.DictReader(handle):
            try:
                count = int(record.get("count") or 0)
            except ValueError:
                count = 0
            contacts.append(
                Contact(
                    address=(record.get("address") or "").lower(),
                    display_name=record.get("display_name") or "",
                    classification=record.get("classification") or DIRECT,
                    count=count,
                )
            )
    return contacts


def owner_addresses(username: str, account_name: Optional[str] = None) -> List[str]:
    """Return the addresses that identify the mailbox owner."""

    return [value for value in (username, account_name) if value and "@" in value]
