"""Incremental mailbox synchronisation for a single account."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from functools import partial

from ..core.config import SYNC_ALL_SENTINEL, SyncSettings, TimeoutSettings
from ..core.errors import MessageNotFoundError
from ..core.events import ProgressEmitter
from ..core.interfaces import MailSession, MessageClassifier
from ..core.models import Account, AttachmentFile, ImapEndpoint, SyncReport, SyncStatus
from ..storage.connection_pool import ConnectionPool
from ..transport.auth import AuthMethod
from ..transport.imap_client import ImapSession
from .attachments import AttachmentStore
from .parser import MessageParser, generate_thread_id

LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[[ImapEndpoint, AuthMethod], Awaitable[MailSession]]


def compute_sync_range(cursor: int, mailbox_size: int, cap: int) -> str:
    """Return the ``UID SEARCH`` range for the next run.

    A never-synced account fetches only the newest ``cap`` messages unless
    ``cap`` is the sync-all sentinel; otherwise fetching resumes strictly
    after ``cursor``.
    """
    if cursor > 0:
        return f"{cursor + 1}:*"
    if cap >= SYNC_ALL_SENTINEL:
        return "1:*"
    if mailbox_size > cap:
        return f"{mailbox_size - cap + 1}:*"
    return "1:*"


def limit_to_newest(uids: Sequence[int], cap: int) -> list[int]:
    """Keep the ``cap`` highest UIDs, still in ascending order."""
    ordered = sorted(uids)
    if len(ordered) <= cap:
        return ordered
    return ordered[-cap:]


class SyncState(Enum):
    """Steps of a run; each is entered when its step begins."""

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    FOLDER_SELECTED = "folder_selected"
    RANGE_COMPUTED = "range_computed"
    FETCHING = "fetching"
    LOGGED_OUT = "logged_out"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class SyncRun:
    """State of one sync invocation; ``cause`` is set once it has failed."""

    account_id: int
    state: SyncState = SyncState.CONNECTING
    failed_in: SyncState | None = None
    cause: Exception | None = None
    history: list[SyncState] = field(default_factory=lambda: [SyncState.CONNECTING])

    def advance(self, state: SyncState) -> None:
        LOGGER.debug("Sync of account %s: %s -> %s", self.account_id, self.state.value, state.value)
        self.history.append(state)
        self.state = state

    def fail(self, cause: Exception) -> None:
        self.failed_in = self.state
        self.cause = cause
        self.advance(SyncState.FAILED)


class SyncEngine:
    """Drive a mail session through one bounded incremental sync run."""

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        pool: ConnectionPool,
        attachment_store: AttachmentStore,
        *,
        parser: MessageParser | None = None,
        classifier: MessageClassifier | None = None,
        emitter: ProgressEmitter | None = None,
        connect: SessionFactory | None = None,
        timeouts: TimeoutSettings | None = None,
    ) -> None:
        self._pool = pool
        self._attachments = attachment_store
        self._parser = parser or MessageParser()
        self._classifier = classifier
        self._emitter = emitter or ProgressEmitter()
        self._connect: SessionFactory = connect or partial(
            ImapSession.open, timeouts=timeouts or TimeoutSettings()
        )

    async def run(self, account: Account, auth: AuthMethod, settings: SyncSettings) -> SyncReport:
        """Synchronise ``account``; any non-per-message failure propagates."""
        LOGGER.info(
            "Starting sync for account %s (cursor %s, cap %s)",
            account.id,
            account.last_synced_uid,
            settings.max_sync_count,
        )
        run = SyncRun(account_id=account.id)
        self._emitter.emit(account.id, 0, 0, SyncStatus.STARTING)
        try:
            report = await self._execute(run, account, auth, settings)
        except Exception as exc:
            run.fail(exc)
            LOGGER.error(
                "Sync of account %s failed while %s: %s",
                account.id,
                run.failed_in.value if run.failed_in else "unknown",
                exc,
            )
            self._emitter.emit(account.id, 0, 0, SyncStatus.FAILED)
            raise
        progress = report.to_progress()
        self._emitter.emit(account.id, progress.current, progress.total, progress.status)
        LOGGER.info(
            "Sync completed for account %s: %s processed, %s failed, cursor %s",
            account.id,
            report.processed,
            report.failed,
            report.new_last_uid,
        )
        return report

    # Run phases ----------------------------------------------------------------
    async def _execute(
        self, run: SyncRun, account: Account, auth: AuthMethod, settings: SyncSettings
    ) -> SyncReport:
        session = await self._connect(account.imap, auth)
        try:
            run.advance(SyncState.AUTHENTICATING)
            await session.authenticate()

            run.advance(SyncState.FOLDER_SELECTED)
            mailbox_size = await session.select_folder(settings.mailbox)

            run.advance(SyncState.RANGE_COMPUTED)
            cursor = account.last_synced_uid
            uid_range = compute_sync_range(cursor, mailbox_size, settings.max_sync_count)
            uids = [uid for uid in await session.fetch_uids(uid_range) if uid > cursor]
            if not settings.sync_all:
                uids = limit_to_newest(uids, settings.max_sync_count)
            LOGGER.info(
                "Account %s: range %s yields %s new messages", account.id, uid_range, len(uids)
            )

            run.advance(SyncState.FETCHING)
            report = await self._fetch_all(session, account, uids, settings)
            if report.new_last_uid > cursor:
                await self._pool.run(
                    lambda repo: repo.update_sync_cursor(account.id, report.new_last_uid)
                )
        except Exception:
            await _abandon(session, account.id)
            raise

        run.advance(SyncState.LOGGED_OUT)
        await session.logout()
        run.advance(SyncState.COMPLETED)
        return report

    async def _fetch_all(
        self,
        session: MailSession,
        account: Account,
        uids: Sequence[int],
        settings: SyncSettings,
    ) -> SyncReport:
        report = SyncReport(
            account_id=account.id,
            processed=0,
            failed=0,
            new_last_uid=account.last_synced_uid,
        )
        total = len(uids)
        for index, uid in enumerate(uids, start=1):
            try:
                await self._process(session, account, uid, settings)
            except MessageNotFoundError as exc:
                LOGGER.warning("UID %s vanished before it could be fetched: %s", uid, exc)
                report.failed += 1
                report.failed_uids.append(uid)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("Failed to sync UID %s: %s", uid, exc, exc_info=True)
                report.failed += 1
                report.failed_uids.append(uid)
            else:
                report.processed += 1
                report.new_last_uid = max(report.new_last_uid, uid)
            self._emitter.emit(account.id, index, total, SyncStatus.SYNCING)
        return report

    async def _process(
        self, session: MailSession, account: Account, uid: int, settings: SyncSettings
    ) -> None:
        raw = await session.fetch_raw(uid)
        parsed = self._parser.parse(raw)
        thread_id = generate_thread_id(parsed)

        message_row_id = await self._pool.run(
            lambda repo: repo.upsert_message(account.id, parsed, thread_id, uid)
        )

        if settings.sync_attachments:
            files: list[AttachmentFile] = []
            for attachment in parsed.attachments:
                files.append(await self._attachments.save(account.id, message_row_id, attachment))
            await self._pool.run(lambda repo: repo.replace_attachments(message_row_id, files))

        if self._classifier is not None:
            try:
                project_id = await self._classifier.classify(message_row_id)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Failed to classify message %s: %s", message_row_id, exc)
            else:
                LOGGER.debug("Message %s belongs to project %s", message_row_id, project_id)


async def _abandon(session: MailSession, account_id: int) -> None:
    """Best-effort logout on the failure path; the original error wins."""
    try:
        await session.logout()
    except Exception as exc:  # pylint: disable=broad-except
        LOGGER.debug("Logout after failed sync of account %s also failed: %s", account_id, exc)


__all__ = [
    "SessionFactory",
    "SyncEngine",
    "SyncRun",
    "SyncState",
    "compute_sync_range",
    "limit_to_newest",
]
