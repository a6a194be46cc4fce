"""Shared fixtures and builders for the test suite."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import format_datetime
from pathlib import Path

import pytest

from threadline.core.config import AppSettings, StorageSettings, SyncSettings
from threadline.core.errors import MessageNotFoundError
from threadline.core.models import AuthType, ImapEndpoint
from threadline.storage import ConnectionPool, SqliteRepository

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


# pylint: disable=too-many-arguments
def build_email(
    *,
    message_id: str | None = "<msg-1@example.com>",
    subject: str | None = "Quarterly Report",
    sender: str = "Alice Example <alice@example.com>",
    to: str = "bob@example.com",
    cc: str | None = None,
    date: datetime | None = NOW,
    body: str = "Hello world.",
    html: str | None = None,
    in_reply_to: str | None = None,
    references: str | None = None,
    attachments: tuple[tuple[str, bytes], ...] = (),
) -> bytes:
    """Assemble RFC822 bytes with the requested headers and parts."""
    text_part = MIMEText(body, "plain", "utf-8")
    if html is None and not attachments:
        message = text_part
    else:
        message = MIMEMultipart("mixed")
        if html is not None:
            alternative = MIMEMultipart("alternative")
            alternative.attach(text_part)
            alternative.attach(MIMEText(html, "html", "utf-8"))
            message.attach(alternative)
        else:
            message.attach(text_part)
        for filename, data in attachments:
            part = MIMEApplication(data, Name=filename)
            part["Content-Disposition"] = f'attachment; filename="{filename}"'
            message.attach(part)

    if message_id is not None:
        message["Message-ID"] = message_id
    if subject is not None:
        message["Subject"] = subject
    message["From"] = sender
    message["To"] = to
    if cc is not None:
        message["Cc"] = cc
    if date is not None:
        message["Date"] = format_datetime(date)
    if in_reply_to is not None:
        message["In-Reply-To"] = in_reply_to
    if references is not None:
        message["References"] = references
    return message.as_bytes()


class FakeSession:
    """In-memory mailbox session recording the commands it receives."""

    def __init__(
        self,
        messages: dict[int, bytes],
        *,
        mailbox_size: int | None = None,
        missing: tuple[int, ...] = (),
        auth_error: Exception | None = None,
        select_error: Exception | None = None,
        logout_error: Exception | None = None,
    ) -> None:
        self.messages = dict(messages)
        self.mailbox_size = len(messages) if mailbox_size is None else mailbox_size
        self.missing = set(missing)
        self.auth_error = auth_error
        self.select_error = select_error
        self.logout_error = logout_error
        self.authenticated = False
        self.selected: list[str] = []
        self.ranges: list[str] = []
        self.fetched: list[int] = []
        self.logged_out = False

    async def authenticate(self) -> None:
        if self.auth_error is not None:
            raise self.auth_error
        self.authenticated = True

    async def select_folder(self, name: str) -> int:
        self.selected.append(name)
        if self.select_error is not None:
            raise self.select_error
        return self.mailbox_size

    async def fetch_uids(self, uid_range: str) -> list[int]:
        self.ranges.append(uid_range)
        start = int(uid_range.split(":", 1)[0])
        return sorted(uid for uid in (*self.messages, *self.missing) if uid >= start)

    async def fetch_raw(self, uid: int) -> bytes:
        self.fetched.append(uid)
        if uid in self.missing:
            raise MessageNotFoundError(uid)
        return self.messages[uid]

    async def logout(self) -> None:
        self.logged_out = True
        if self.logout_error is not None:
            raise self.logout_error


@pytest.fixture
def storage_settings(tmp_path: Path) -> StorageSettings:
    return StorageSettings(
        db_path=tmp_path / "threadline.db",
        attachments_dir=tmp_path / "attachments",
        pool_size=2,
    )


@pytest.fixture
def app_settings(storage_settings: StorageSettings) -> AppSettings:
    return AppSettings(storage=storage_settings, sync=SyncSettings(max_sync_count=100))


@pytest.fixture
def repository(storage_settings: StorageSettings) -> Iterator[SqliteRepository]:
    repo = SqliteRepository(storage_settings)
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture
def pool(storage_settings: StorageSettings) -> Iterator[ConnectionPool]:
    connection_pool = ConnectionPool(storage_settings)
    try:
        yield connection_pool
    finally:
        connection_pool.close()


def add_password_account(
    repository: SqliteRepository, email: str = "user@gmail.com", password: str = "secret"
) -> int:
    return repository.create_account(
        email,
        "gmail",
        ImapEndpoint(host="imap.gmail.com", port=993),
        AuthType.PASSWORD,
        password=password,
    )
