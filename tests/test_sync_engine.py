"""Tests for the incremental sync engine."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from conftest import FakeSession, add_password_account, build_email
from threadline.core.config import SYNC_ALL_SENTINEL, StorageSettings, SyncSettings
from threadline.core.errors import AuthError, NetworkError
from threadline.core.events import ProgressEmitter
from threadline.core.models import Account, SyncProgress, SyncStatus
from threadline.ingestion import AttachmentStore, SyncEngine, compute_sync_range, limit_to_newest
from threadline.ingestion.sync import SyncRun, SyncState
from threadline.projects import ProjectClassifier
from threadline.storage import ConnectionPool
from threadline.transport import ImapError, PasswordAuth

AUTH = PasswordAuth(username="user@gmail.com", password="secret")


@pytest.mark.parametrize(
    ("cursor", "mailbox_size", "cap", "expected"),
    [
        (9900, 12000, 100, "9901:*"),
        (0, 600, 100, "501:*"),
        (0, 50, 100, "1:*"),
        (0, 600, SYNC_ALL_SENTINEL, "1:*"),
    ],
)
def test_compute_sync_range(cursor: int, mailbox_size: int, cap: int, expected: str) -> None:
    assert compute_sync_range(cursor, mailbox_size, cap) == expected


def test_limit_to_newest_keeps_highest_uids() -> None:
    assert limit_to_newest([5, 1, 9, 3], 2) == [5, 9]
    assert limit_to_newest([2, 1], 5) == [1, 2]


def test_sync_run_records_the_step_that_failed() -> None:
    run = SyncRun(account_id=1)
    run.advance(SyncState.AUTHENTICATING)
    run.advance(SyncState.FOLDER_SELECTED)
    run.fail(NetworkError("dropped"))

    assert run.failed_in is SyncState.FOLDER_SELECTED
    assert run.state is SyncState.FAILED
    assert run.history == [
        SyncState.CONNECTING,
        SyncState.AUTHENTICATING,
        SyncState.FOLDER_SELECTED,
        SyncState.FAILED,
    ]


class _Harness:
    def __init__(self, pool: ConnectionPool, storage_settings: StorageSettings) -> None:
        self.pool = pool
        self.events: list[SyncProgress] = []
        self.session: FakeSession | None = None
        self.engine = SyncEngine(
            pool,
            AttachmentStore(storage_settings.attachments_dir),
            classifier=ProjectClassifier(pool),
            emitter=ProgressEmitter(self.events.append),
            connect=self._connect,
        )

    async def _connect(self, endpoint, auth) -> FakeSession:
        del endpoint, auth
        assert self.session is not None
        return self.session

    async def account(self, cursor: int = 0) -> Account:
        def setup(repo):
            account_id = add_password_account(repo)
            if cursor:
                repo.update_sync_cursor(account_id, cursor)
            return repo.fetch_account(account_id)

        return await self.pool.run(setup)

    async def cursor(self, account_id: int) -> int:
        account = await self.pool.run(lambda repo: repo.fetch_account(account_id))
        return account.last_synced_uid


@pytest.fixture
def harness(pool: ConnectionPool, storage_settings: StorageSettings) -> _Harness:
    return _Harness(pool, storage_settings)


def _mailbox(*uids: int) -> dict[int, bytes]:
    return {uid: build_email(message_id=f"<uid-{uid}@example.com>") for uid in uids}


@pytest.mark.asyncio
async def test_missing_message_is_skipped_and_sync_completes(harness: _Harness) -> None:
    account = await harness.account()
    harness.session = FakeSession(_mailbox(40, 41, 43), missing=(42,))

    report = await harness.engine.run(account, AUTH, SyncSettings())

    assert report.processed == 3
    assert report.failed == 1
    assert report.failed_uids == [42]
    assert report.new_last_uid == 43
    assert await harness.cursor(account.id) == 43
    assert harness.session.logged_out
    assert [event.status for event in harness.events] == [
        SyncStatus.STARTING,
        SyncStatus.SYNCING,
        SyncStatus.SYNCING,
        SyncStatus.SYNCING,
        SyncStatus.SYNCING,
        SyncStatus.COMPLETED,
    ]
    assert [(event.current, event.total) for event in harness.events[1:5]] == [
        (1, 4),
        (2, 4),
        (3, 4),
        (4, 4),
    ]
    assert harness.events[-1] == SyncProgress(account.id, 3, 3, SyncStatus.COMPLETED)


@pytest.mark.asyncio
async def test_sync_resumes_after_cursor(harness: _Harness) -> None:
    account = await harness.account(cursor=41)
    harness.session = FakeSession(_mailbox(40, 41, 42, 43))

    report = await harness.engine.run(account, AUTH, SyncSettings())

    assert harness.session.ranges == ["42:*"]
    assert harness.session.fetched == [42, 43]
    assert report.processed == 2
    assert await harness.cursor(account.id) == 43


@pytest.mark.asyncio
async def test_first_sync_is_capped_to_newest(harness: _Harness) -> None:
    account = await harness.account()
    harness.session = FakeSession(_mailbox(10, 20, 30), mailbox_size=3)

    await harness.engine.run(account, AUTH, SyncSettings(max_sync_count=2))

    assert harness.session.ranges == ["2:*"]
    assert harness.session.fetched == [20, 30]
    assert await harness.cursor(account.id) == 30


@pytest.mark.asyncio
async def test_sync_all_fetches_everything(harness: _Harness) -> None:
    account = await harness.account()
    harness.session = FakeSession(_mailbox(1, 2, 3, 4), mailbox_size=4)

    report = await harness.engine.run(
        account, AUTH, SyncSettings(max_sync_count=SYNC_ALL_SENTINEL)
    )

    assert harness.session.ranges == ["1:*"]
    assert report.processed == 4


@pytest.mark.asyncio
async def test_unparseable_message_does_not_stop_sync(harness: _Harness) -> None:
    account = await harness.account()
    mailbox = _mailbox(2)
    mailbox[1] = b""
    harness.session = FakeSession(mailbox)

    report = await harness.engine.run(account, AUTH, SyncSettings())

    assert report.processed == 1
    assert report.failed_uids == [1]
    assert await harness.cursor(account.id) == 2


@pytest.mark.asyncio
async def test_empty_mailbox_keeps_cursor(harness: _Harness) -> None:
    account = await harness.account(cursor=7)
    harness.session = FakeSession({})

    report = await harness.engine.run(account, AUTH, SyncSettings())

    assert report.processed == 0
    assert report.new_last_uid == 7
    assert await harness.cursor(account.id) == 7
    assert harness.events[-1].status is SyncStatus.COMPLETED


@pytest.mark.asyncio
async def test_logout_failure_fails_run_but_keeps_cursor(harness: _Harness) -> None:
    account = await harness.account()
    harness.session = FakeSession(_mailbox(5), logout_error=ImapError("Logout failed"))

    with pytest.raises(ImapError):
        await harness.engine.run(account, AUTH, SyncSettings())

    assert await harness.cursor(account.id) == 5
    assert harness.events[-1].status is SyncStatus.FAILED


@pytest.mark.asyncio
async def test_connect_failure_propagates(
    pool: ConnectionPool, storage_settings: StorageSettings, caplog: pytest.LogCaptureFixture
) -> None:
    events: list[SyncProgress] = []

    async def refuse(endpoint, auth):
        raise AuthError("Login failed")

    engine = SyncEngine(
        pool,
        AttachmentStore(storage_settings.attachments_dir),
        emitter=ProgressEmitter(events.append),
        connect=refuse,
    )
    account = await pool.run(lambda repo: repo.fetch_account(add_password_account(repo)))

    with caplog.at_level(logging.ERROR, logger="threadline.ingestion.sync"):
        with pytest.raises(AuthError):
            await engine.run(account, AUTH, SyncSettings())

    assert [event.status for event in events] == [SyncStatus.STARTING, SyncStatus.FAILED]
    assert "failed while connecting" in caplog.text


@pytest.mark.asyncio
async def test_folder_failure_logs_out_and_is_attributed_to_folder_step(
    harness: _Harness, caplog: pytest.LogCaptureFixture
) -> None:
    account = await harness.account()
    harness.session = FakeSession({}, select_error=ImapError("NO [NONEXISTENT] folder"))

    with caplog.at_level(logging.ERROR, logger="threadline.ingestion.sync"):
        with pytest.raises(ImapError):
            await harness.engine.run(account, AUTH, SyncSettings())

    assert harness.session.authenticated
    assert harness.session.logged_out
    assert "failed while folder_selected: NO [NONEXISTENT] folder" in caplog.text


@pytest.mark.asyncio
async def test_login_failure_is_attributed_to_authentication(
    harness: _Harness, caplog: pytest.LogCaptureFixture
) -> None:
    account = await harness.account()
    harness.session = FakeSession({}, auth_error=NetworkError("XOAUTH2 exchange timed out"))

    with caplog.at_level(logging.ERROR, logger="threadline.ingestion.sync"):
        with pytest.raises(NetworkError):
            await harness.engine.run(account, AUTH, SyncSettings())

    assert harness.session.selected == []
    assert "failed while authenticating: XOAUTH2 exchange timed out" in caplog.text


@pytest.mark.asyncio
async def test_attachments_are_stored_and_counted(
    harness: _Harness, storage_settings: StorageSettings
) -> None:
    account = await harness.account()
    harness.session = FakeSession(
        {7: build_email(attachments=(("report.pdf", b"%PDF-1.4"),))}
    )

    await harness.engine.run(account, AUTH, SyncSettings())

    def load(repo):
        message_id = repo.list_project_messages(1)[0].id
        return repo.fetch_project(1), repo.list_attachments(message_id)

    project, attachments = await harness.pool.run(load)
    assert project.name == "Quarterly Report"
    assert project.message_count == 1
    assert project.attachment_count == 1
    assert attachments[0].filename == "report.pdf"
    assert attachments[0].file_type == "pdf"
    stored = Path(storage_settings.attachments_dir) / attachments[0].storage_path
    assert stored.read_bytes() == b"%PDF-1.4"


@pytest.mark.asyncio
async def test_attachments_skipped_when_disabled(harness: _Harness) -> None:
    account = await harness.account()
    harness.session = FakeSession(
        {7: build_email(attachments=(("report.pdf", b"%PDF-1.4"),))}
    )

    await harness.engine.run(account, AUTH, SyncSettings(sync_attachments=False))

    project = await harness.pool.run(lambda repo: repo.fetch_project(1))
    assert project.attachment_count == 0
