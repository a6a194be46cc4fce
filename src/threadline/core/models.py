"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


@dataclass(slots=True, frozen=True)
class ImapEndpoint:
    """Connection parameters for one IMAP server."""

    host: str
    port: int = 993
    use_tls: bool = True
    use_starttls: bool = False


@dataclass(slots=True, frozen=True)
class SmtpEndpoint:
    """Outgoing server parameters, kept for provider completeness."""

    host: str
    port: int
    use_tls: bool
    use_starttls: bool


@dataclass(slots=True, frozen=True)
class ProviderConfig:
    """Static description of a mail provider."""

    name: str
    display_name: str
    imap: ImapEndpoint
    smtp: SmtpEndpoint
    oauth_supported: bool


class AuthType(StrEnum):
    PASSWORD = "password"
    OAUTH = "oauth"


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Account:
    """A stored mailbox identity together with its sync cursor."""

    id: int
    email: str
    provider: str
    imap: ImapEndpoint
    auth_type: AuthType
    password: str | None
    oauth_access_token: str | None
    oauth_refresh_token: str | None
    oauth_token_expires_at: int | None
    last_synced_uid: int
    created_at: datetime | None


@dataclass(slots=True)
class AccountSummary:
    """Account fields safe to hand to the UI."""

    id: int
    email: str
    provider: str
    auth_type: AuthType
    last_synced_uid: int
    created_at: datetime | None


@dataclass(slots=True)
class OAuthTokens:
    """Token pair produced by the external OAuth flow."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None


@dataclass(slots=True)
class ParsedAttachment:
    """Attachment payload extracted from a MIME part."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class ParsedMessage:
    """Structured view of one raw RFC822 message."""

    message_id: str
    subject: str
    sender: str
    to: tuple[str, ...]
    cc: tuple[str, ...]
    date: datetime
    body_text: str | None
    body_html: str | None
    attachments: tuple[ParsedAttachment, ...]
    in_reply_to: str | None
    references: tuple[str, ...]


@dataclass(slots=True)
class RawMessage:
    """Raw IMAP payload paired with its UID."""

    uid: int
    raw: bytes


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class StoredMessage:
    """A message row as persisted in the database."""

    id: int
    message_id: str
    account_id: int
    thread_id: str | None
    project_id: int | None
    subject: str | None
    sender: str | None
    recipients: tuple[str, ...]
    date: datetime | None
    body_text: str | None
    body_html: str | None
    has_attachments: bool
    source_uid: int | None


@dataclass(slots=True, frozen=True)
class AttachmentFile:
    """An attachment written to disk, not yet recorded in the database."""

    filename: str
    file_type: str
    size: int
    mime_type: str | None
    storage_path: str
    content_hash: str


@dataclass(slots=True)
class StoredAttachment:
    """Attachment metadata row; the bytes live in the attachment store."""

    id: int
    message_id: int
    filename: str
    file_type: str
    size: int
    mime_type: str | None
    storage_path: str
    content_hash: str


class ProjectStatus(StrEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Project:
    """A classification bucket grouping related messages."""

    id: int
    name: str
    description: str | None
    status: ProjectStatus
    pinned: bool
    tags: tuple[str, ...]
    message_count: int
    attachment_count: int
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(slots=True)
class LastActivity:
    sender: str
    date: datetime | None


@dataclass(slots=True)
class ProjectOverview:
    """Project enriched with the latest activity and recent participants."""

    project: Project
    last_activity: LastActivity | None
    participants: tuple[str, ...]


@dataclass(slots=True)
class Milestone:
    """A notable dated marker attached to a project."""

    id: int
    project_id: int
    message_id: int | None
    kind: str
    title: str
    date: datetime | None


class SyncStatus(StrEnum):
    STARTING = "starting"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class SyncProgress:
    """Progress notification for one account's sync run."""

    account_id: int
    current: int
    total: int
    status: SyncStatus


@dataclass(slots=True)
class SyncReport:
    """Outcome summary for a sync run."""

    account_id: int
    processed: int
    failed: int
    new_last_uid: int
    failed_uids: list[int] = field(default_factory=list)

    def to_progress(self) -> SyncProgress:
        return SyncProgress(
            account_id=self.account_id,
            current=self.processed,
            total=self.processed,
            status=SyncStatus.COMPLETED,
        )


__all__ = [
    "Account",
    "AccountSummary",
    "AttachmentFile",
    "AuthType",
    "ImapEndpoint",
    "LastActivity",
    "Milestone",
    "OAuthTokens",
    "ParsedAttachment",
    "ParsedMessage",
    "Project",
    "ProjectOverview",
    "ProjectStatus",
    "ProviderConfig",
    "RawMessage",
    "SmtpEndpoint",
    "StoredAttachment",
    "StoredMessage",
    "SyncProgress",
    "SyncReport",
    "SyncStatus",
]
