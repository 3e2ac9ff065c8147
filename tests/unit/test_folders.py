"""Unit tests for :mod:`mailmark.imap.folders`."""
from __future__ import annotations

from mailmark.imap.folders import (
    FolderInfo,
    decode_folder_name,
    encode_folder_name,
    folder_relative_path,
    is_ignored,
)


def test_modified_utf7_decoding() -> None:
    assert decode_folder_name("INBOX.&AOk-") == "INBOX.é"
    assert decode_folder_name(b"INBOX.&AOk-") == "INBOX.é"
    assert decode_folder_name("Tom &- Jerry") == "Tom & Jerry"
    assert decode_folder_name("Envoyés") == "Envoyés"


def test_modified_utf7_round_trip() -> None:
    assert encode_folder_name("INBOX.é") == "INBOX.&AOk-"
    assert encode_folder_name("Tom & Jerry") == "Tom &- Jerry"
    assert decode_folder_name(encode_folder_name("Éléments envoyés")) == "Éléments envoyés"


def test_folder_info_from_listing_keeps_wire_name() -> None:
    folder = FolderInfo.from_listing((b"\\HasNoChildren",), b".", b"INBOX.&AOk-")

    assert folder.raw == "INBOX.&AOk-"
    assert folder.name == "INBOX.é"
    assert folder.relative_path == "INBOX/é"
    assert folder.selectable


def test_noselect_folders_are_not_selectable() -> None:
    folder = FolderInfo.from_listing((b"\\Noselect", b"\\HasChildren"), b"/", b"[Gmail]")

    assert not folder.selectable


def test_ignored_folders_match_decoded_or_raw_names_case_insensitively() -> None:
    folder = FolderInfo.from_listing((), b"/", b"&AMk-l&AOk-ments envoy&AOk-s")

    assert folder.name == "Éléments envoyés"
    assert is_ignored(folder, ["éléments envoyés"])
    assert is_ignored(folder, ["&AMk-l&AOk-ments envoy&AOk-s"])
    assert not is_ignored(folder, ["INBOX"])


def test_folder_relative_path_sanitises_segments() -> None:
    assert folder_relative_path("Archive/2024: Q1", "/") == "Archive/2024_ Q1"
    assert folder_relative_path("", "/") == "INBOX"
    assert folder_relative_path("INBOX", "") == "INBOX"
