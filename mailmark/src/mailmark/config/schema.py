"""Pydantic models describing mailmark configuration documents."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_SIGNATURE_MAX_BYTES = 50 * 1024
DEFAULT_SIGNATURE_NAME_PATTERNS = (
    "signature",
    "logo",
    "banner",
    "footer",
    "header",
    "company",
    "corporate",
    "brand",
    "societe",
    "entreprise",
)
DEFAULT_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".svg", ".ico")

DEFAULT_DELETE_KEYWORDS = (
    "newsletter",
    "bulletin",
    "digest",
    "promotion",
    "offer",
    "coupon",
    "sale",
    "unsubscribe",
    "marketing",
    "advertisement",
)
DEFAULT_KEEP_KEYWORDS = ("contract", "invoice", "legal", "urgent", "important", "confidential")


class AccountConnection(BaseModel):
    """Connection entry from ``accounts.yaml``; never carries behaviour fields."""

    model_config = ConfigDict(extra="forbid")

    name: str
    server: str
    port: int = Field(default=993, ge=0, le=65535)
    username: str
    ignored_folders: List[str] = Field(default_factory=list)

    @field_validator("ignored_folders")
    @classmethod
    def _dedupe_folders(cls, value: List[str]) -> List[str]:
        unique: List[str] = []
        for folder in value:
            if folder not in unique:
                unique.append(folder)
        return unique


class AccountsDocument(BaseModel):
    """Top-level ``accounts.yaml`` document."""

    model_config = ConfigDict(extra="forbid")

    accounts: List[AccountConnection] = Field(default_factory=list)


class BehaviorOverrides(BaseModel):
    """Per-account or global behaviour values; ``None`` means inherit."""

    model_config = ConfigDict(extra="forbid")

    quote_depth: Optional[int] = Field(default=None, ge=0)
    skip_existing: Optional[bool] = None
    collect_contacts: Optional[bool] = None
    skip_signature_images: Optional[bool] = None
    delete_after_export: Optional[bool] = None
    folder_name: Optional[str] = None


class SignatureImagePolicy(BaseModel):
    """Thresholds used to recognise signature images among attachments."""

    model_config = ConfigDict(extra="forbid")

    max_bytes: int = Field(default=DEFAULT_SIGNATURE_MAX_BYTES, gt=0)
    name_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_SIGNATURE_NAME_PATTERNS))
    image_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_IMAGE_EXTENSIONS))


class NetworkSettings(BaseModel):
    """Timeouts and retry budget applied to IMAP operations."""

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=3, ge=1)
    initial_retry_delay: float = Field(default=1.0, ge=0)
    max_retry_delay: float = Field(default=30.0, ge=0)
    connect_timeout: float = Field(default=30.0, gt=0)
    read_timeout: float = Field(default=60.0, gt=0)


class SettingsDocument(BaseModel):
    """Behaviour document loaded from ``settings.yaml``."""

    model_config = ConfigDict(extra="forbid")

    export_base_dir: Optional[str] = None
    defaults: BehaviorOverrides = Field(default_factory=BehaviorOverrides)
    accounts: Dict[str, BehaviorOverrides] = Field(default_factory=dict)
    signature_images: SignatureImagePolicy = Field(default_factory=SignatureImagePolicy)
    network: NetworkSettings = Field(default_factory=NetworkSettings)


class ResolvedAccount(BaseModel):
    """Connection data merged with concrete behaviour values.

    Instances are frozen so an export run can rely on the values staying put
    for its whole duration. The password is excluded from dumps and reprs.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    server: str
    port: int
    username: str
    ignored_folders: List[str] = Field(default_factory=list)
    quote_depth: int
    skip_existing: bool
    collect_contacts: bool
    skip_signature_images: bool
    delete_after_export: bool
    folder_name: Optional[str] = None
    export_directory: str
    password: Optional[str] = Field(default=None, exclude=True, repr=False)


class SortRuleSet(BaseModel):
    """Retention rules read from ``sort_config.json``."""

    model_config = ConfigDict(extra="forbid")

    whitelist: List[str] = Field(default_factory=list)
    delete_senders: List[str] = Field(default_factory=list)
    delete_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_DELETE_KEYWORDS))
    keep_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_KEEP_KEYWORDS))
    keep_with_attachments: bool = True
    recent_threshold_days: int = Field(default=30, ge=0)
    old_threshold_days: int = Field(default=365, ge=0)
