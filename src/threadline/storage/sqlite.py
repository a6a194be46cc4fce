"""SQLite-backed repository for accounts, messages, and projects."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from types import TracebackType

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utc_now
from ..core.errors import StorageError, ValidationError
from ..core.models import (
    Account,
    AccountSummary,
    AttachmentFile,
    AuthType,
    ImapEndpoint,
    LastActivity,
    Milestone,
    ParsedMessage,
    Project,
    ProjectOverview,
    ProjectStatus,
    StoredAttachment,
    StoredMessage,
)

LOGGER = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000
PARTICIPANT_LIMIT = 5
LIKE_ESCAPE = "\\"


# pylint: disable=too-many-public-methods
class SqliteRepository:
    """Persist mail, projects, and account state using SQLite."""

    def __init__(self, settings: StorageSettings) -> None:
        """Open the database, switch it to WAL mode, and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(
            db_path,
            timeout=BUSY_TIMEOUT_MS / 1000,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure_connection()
        self._apply_migrations()
        self._ensure_indexes()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteRepository:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Accounts ------------------------------------------------------------------
    # pylint: disable=too-many-arguments
    def create_account(
        self,
        email: str,
        provider: str,
        imap: ImapEndpoint,
        auth_type: AuthType,
        *,
        password: str | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expires_at: int | None = None,
    ) -> int:
        """Insert a new account row and return its id."""
        LOGGER.debug("Creating %s account for %s", auth_type, email)
        try:
            with self._connection:
                cursor = self._connection.execute(
                    """
                    INSERT INTO accounts (
                        email,
                        provider,
                        imap_config,
                        auth_type,
                        password,
                        oauth_access_token,
                        oauth_refresh_token,
                        oauth_token_expires_at,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        email,
                        provider,
                        json.dumps(asdict(imap)),
                        str(auth_type),
                        password,
                        access_token,
                        refresh_token,
                        expires_at,
                        serialize_datetime(utc_now()),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Account {email} already exists") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to insert account {email}: {exc}") from exc
        return int(cursor.lastrowid or 0)

    def fetch_account(self, account_id: int) -> Account | None:
        """Return the account with ``account_id`` if present."""
        with _storage_errors("fetch account"):
            row = self._connection.execute(
                "SELECT * FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        return _row_to_account(row) if row else None

    def fetch_account_by_email(self, email: str) -> Account | None:
        """Return the account registered for ``email`` if present."""
        with _storage_errors("fetch account"):
            row = self._connection.execute(
                "SELECT * FROM accounts WHERE email = ?", (email,)
            ).fetchone()
        return _row_to_account(row) if row else None

    def list_accounts(self) -> list[AccountSummary]:
        """Return every account, newest first, without credentials."""
        with _storage_errors("list accounts"):
            rows = self._connection.execute(
                """
                SELECT id, email, provider, auth_type, last_synced_uid, created_at
                FROM accounts
                ORDER BY created_at DESC, id DESC
                """
            ).fetchall()
        return [
            AccountSummary(
                id=row["id"],
                email=row["email"],
                provider=row["provider"],
                auth_type=_auth_type(row["auth_type"]),
                last_synced_uid=row["last_synced_uid"],
                created_at=parse_datetime(row["created_at"]),
            )
            for row in rows
        ]

    def update_sync_cursor(self, account_id: int, last_synced_uid: int) -> None:
        """Record the highest UID persisted for ``account_id``."""
        LOGGER.debug("Advancing sync cursor of account %s to %s", account_id, last_synced_uid)
        with _storage_errors("update sync cursor"), self._connection:
            self._connection.execute(
                "UPDATE accounts SET last_synced_uid = ? WHERE id = ?",
                (last_synced_uid, account_id),
            )

    def update_oauth_tokens(
        self,
        account_id: int,
        access_token: str,
        refresh_token: str | None,
        expires_at: int | None,
    ) -> None:
        """Store a refreshed token set for ``account_id``."""
        with _storage_errors("update OAuth tokens"), self._connection:
            self._connection.execute(
                """
                UPDATE accounts
                SET oauth_access_token = ?,
                    oauth_refresh_token = COALESCE(?, oauth_refresh_token),
                    oauth_token_expires_at = ?
                WHERE id = ?
                """,
                (access_token, refresh_token, expires_at, account_id),
            )

    def reset_account(self, account_id: int) -> None:
        """Delete the account's messages and their projects, then zero the cursor."""
        with _storage_errors("reset account"), self._connection:
            project_ids = [
                row[0]
                for row in self._connection.execute(
                    """
                    SELECT DISTINCT project_id FROM messages
                    WHERE account_id = ? AND project_id IS NOT NULL
                    """,
                    (account_id,),
                )
            ]
            deleted = self._connection.execute(
                "DELETE FROM messages WHERE account_id = ?", (account_id,)
            ).rowcount
            self._connection.executemany(
                "DELETE FROM projects WHERE id = ?", [(pid,) for pid in project_ids]
            )
            self._connection.execute(
                "UPDATE accounts SET last_synced_uid = 0 WHERE id = ?", (account_id,)
            )
        LOGGER.info(
            "Reset account %s: removed %s messages and %s projects",
            account_id,
            deleted,
            len(project_ids),
        )

    # Messages ------------------------------------------------------------------
    def upsert_message(
        self,
        account_id: int,
        parsed: ParsedMessage,
        thread_id: str | None,
        source_uid: int | None,
    ) -> int:
        """Insert or refresh the row keyed by ``parsed.message_id``.

        A message seen again keeps its row id and project assignment.
        """
        LOGGER.debug("Persisting message %s (UID %s)", parsed.message_id, source_uid)
        recipients = [*parsed.to, *parsed.cc]
        with _storage_errors(f"persist message {parsed.message_id}"), self._connection:
            self._connection.execute(
                """
                INSERT INTO messages (
                    message_id,
                    account_id,
                    thread_id,
                    subject,
                    sender,
                    recipients,
                    date,
                    body_text,
                    body_html,
                    has_attachments,
                    source_uid
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    account_id=excluded.account_id,
                    thread_id=excluded.thread_id,
                    subject=excluded.subject,
                    sender=excluded.sender,
                    recipients=excluded.recipients,
                    date=excluded.date,
                    body_text=excluded.body_text,
                    body_html=excluded.body_html,
                    has_attachments=excluded.has_attachments,
                    source_uid=excluded.source_uid
                """,
                (
                    parsed.message_id,
                    account_id,
                    thread_id,
                    parsed.subject,
                    parsed.sender,
                    json.dumps(recipients, ensure_ascii=False),
                    serialize_datetime(parsed.date),
                    parsed.body_text,
                    parsed.body_html,
                    int(bool(parsed.attachments)),
                    source_uid,
                ),
            )
            row = self._connection.execute(
                "SELECT id FROM messages WHERE message_id = ?", (parsed.message_id,)
            ).fetchone()
        return int(row["id"])

    def fetch_message(self, message_row_id: int) -> StoredMessage | None:
        """Return the stored message with primary key ``message_row_id``."""
        with _storage_errors("fetch message"):
            row = self._connection.execute(
                "SELECT * FROM messages WHERE id = ?", (message_row_id,)
            ).fetchone()
        return _row_to_message(row) if row else None

    def find_project_by_thread(self, thread_id: str, exclude_id: int) -> int | None:
        """Return a project already holding another message of ``thread_id``."""
        with _storage_errors("look up thread project"):
            row = self._connection.execute(
                """
                SELECT project_id FROM messages
                WHERE thread_id = ? AND id != ? AND project_id IS NOT NULL
                LIMIT 1
                """,
                (thread_id, exclude_id),
            ).fetchone()
        return int(row["project_id"]) if row else None

    def find_project_by_subject(self, subject: str, since: datetime) -> int | None:
        """Return the project of the newest assigned message whose subject contains ``subject``."""
        pattern = f"%{escape_like(subject)}%"
        with _storage_errors("look up subject project"):
            row = self._connection.execute(
                f"""
                SELECT project_id FROM messages
                WHERE project_id IS NOT NULL
                  AND date > ?
                  AND subject LIKE ? ESCAPE '{LIKE_ESCAPE}'
                ORDER BY date DESC
                LIMIT 1
                """,
                (serialize_datetime(since), pattern),
            ).fetchone()
        return int(row["project_id"]) if row else None

    def assign_project(self, message_row_id: int, project_id: int) -> None:
        """Attach a message (and its attachments) to ``project_id`` and recount."""
        with _storage_errors("assign project"), self._connection:
            self._connection.execute(
                "UPDATE messages SET project_id = ? WHERE id = ?",
                (project_id, message_row_id),
            )
            self._connection.execute(
                "UPDATE attachments SET project_id = ? WHERE message_id = ?",
                (project_id, message_row_id),
            )
            self._recount(project_id)

    def list_project_messages(self, project_id: int) -> list[StoredMessage]:
        """Return messages assigned to ``project_id``, newest first."""
        with _storage_errors("list project messages"):
            rows = self._connection.execute(
                "SELECT * FROM messages WHERE project_id = ? ORDER BY date DESC, id ASC",
                (project_id,),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def list_unassigned_message_ids(self) -> list[int]:
        """Return ids of messages without a project, newest first."""
        with _storage_errors("list unassigned messages"):
            rows = self._connection.execute(
                "SELECT id FROM messages WHERE project_id IS NULL ORDER BY date DESC, id ASC"
            ).fetchall()
        return [int(row["id"]) for row in rows]

    def count_messages(self, account_id: int | None = None) -> int:
        """Return the number of stored messages, optionally for one account."""
        with _storage_errors("count messages"):
            if account_id is None:
                row = self._connection.execute("SELECT COUNT(*) FROM messages").fetchone()
            else:
                row = self._connection.execute(
                    "SELECT COUNT(*) FROM messages WHERE account_id = ?", (account_id,)
                ).fetchone()
        return int(row[0]) if row else 0

    # Attachments ---------------------------------------------------------------
    def replace_attachments(
        self, message_row_id: int, files: Sequence[AttachmentFile]
    ) -> tuple[StoredAttachment, ...]:
        """Replace the attachment set recorded for ``message_row_id``."""
        with _storage_errors("persist attachments"), self._connection:
            row = self._connection.execute(
                "SELECT project_id FROM messages WHERE id = ?", (message_row_id,)
            ).fetchone()
            project_id = row["project_id"] if row else None
            self._connection.execute(
                "DELETE FROM attachments WHERE message_id = ?", (message_row_id,)
            )
            for item in files:
                self._connection.execute(
                    """
                    INSERT INTO attachments (
                        message_id,
                        project_id,
                        filename,
                        file_type,
                        size,
                        mime_type,
                        storage_path,
                        content_hash,
                        index_status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending')
                    """,
                    (
                        message_row_id,
                        project_id,
                        item.filename,
                        item.file_type,
                        item.size,
                        item.mime_type,
                        item.storage_path,
                        item.content_hash,
                    ),
                )
            self._connection.execute(
                "UPDATE messages SET has_attachments = ? WHERE id = ?",
                (int(bool(files)), message_row_id),
            )
            if project_id is not None:
                self._recount(int(project_id))
        return self.list_attachments(message_row_id)

    def list_attachments(self, message_row_id: int) -> tuple[StoredAttachment, ...]:
        """Return attachment records for one message."""
        with _storage_errors("list attachments"):
            rows = self._connection.execute(
                "SELECT * FROM attachments WHERE message_id = ? ORDER BY id",
                (message_row_id,),
            ).fetchall()
        return tuple(_row_to_attachment(row) for row in rows)

    def list_project_attachments(self, project_id: int) -> dict[int, list[StoredAttachment]]:
        """Return attachments of a project's messages keyed by message row id."""
        with _storage_errors("list project attachments"):
            rows = self._connection.execute(
                """
                SELECT a.* FROM attachments a
                JOIN messages m ON m.id = a.message_id
                WHERE m.project_id = ?
                ORDER BY a.id
                """,
                (project_id,),
            ).fetchall()
        grouped: dict[int, list[StoredAttachment]] = {}
        for row in rows:
            attachment = _row_to_attachment(row)
            grouped.setdefault(attachment.message_id, []).append(attachment)
        return grouped

    # Projects ------------------------------------------------------------------
    def create_project(
        self,
        name: str,
        *,
        description: str | None = None,
        tags: Sequence[str] = (),
    ) -> int:
        """Insert an empty active project and return its id."""
        now = serialize_datetime(utc_now())
        with _storage_errors("create project"), self._connection:
            cursor = self._connection.execute(
                """
                INSERT INTO projects (
                    name, description, status, is_pinned, tags,
                    message_count, attachment_count, created_at, updated_at
                ) VALUES (?, ?, ?, 0, ?, 0, 0, ?, ?)
                """,
                (
                    name,
                    description,
                    str(ProjectStatus.ACTIVE),
                    json.dumps(list(tags), ensure_ascii=False),
                    now,
                    now,
                ),
            )
        LOGGER.info("Created project %s (%s)", cursor.lastrowid, name)
        return int(cursor.lastrowid or 0)

    def fetch_project(self, project_id: int) -> Project | None:
        """Return the project with ``project_id`` if present."""
        with _storage_errors("fetch project"):
            row = self._connection.execute(
                "SELECT * FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        return _row_to_project(row) if row else None

    def fetch_project_overview(self, project_id: int) -> ProjectOverview | None:
        """Return one project with its latest activity and participants."""
        project = self.fetch_project(project_id)
        if project is None:
            return None
        return self._overview(project)

    def list_project_overviews(self) -> list[ProjectOverview]:
        """Return all projects, pinned first, then most recently updated."""
        with _storage_errors("list projects"):
            rows = self._connection.execute(
                "SELECT * FROM projects ORDER BY is_pinned DESC, updated_at DESC, id DESC"
            ).fetchall()
        return [self._overview(_row_to_project(row)) for row in rows]

    def toggle_project_pin(self, project_id: int) -> bool | None:
        """Flip the pinned flag; return the new value or ``None`` if absent."""
        with _storage_errors("toggle project pin"), self._connection:
            cursor = self._connection.execute(
                """
                UPDATE projects
                SET is_pinned = CASE is_pinned WHEN 0 THEN 1 ELSE 0 END,
                    updated_at = ?
                WHERE id = ?
                """,
                (serialize_datetime(utc_now()), project_id),
            )
            if cursor.rowcount == 0:
                return None
            row = self._connection.execute(
                "SELECT is_pinned FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        return bool(row["is_pinned"])

    def set_project_status(self, project_id: int, status: ProjectStatus) -> bool:
        """Update the project status; return ``False`` if the project is absent."""
        with _storage_errors("update project status"), self._connection:
            cursor = self._connection.execute(
                "UPDATE projects SET status = ?, updated_at = ? WHERE id = ?",
                (str(status), serialize_datetime(utc_now()), project_id),
            )
        return cursor.rowcount > 0

    # Milestones ----------------------------------------------------------------
    def add_milestone(
        self,
        project_id: int,
        kind: str,
        title: str,
        date: datetime | None,
        message_row_id: int | None = None,
    ) -> int:
        """Record a milestone for ``project_id``."""
        with _storage_errors("add milestone"), self._connection:
            cursor = self._connection.execute(
                """
                INSERT INTO milestones (project_id, message_id, type, title, date)
                VALUES (?, ?, ?, ?, ?)
                """,
                (project_id, message_row_id, kind, title, serialize_datetime(date)),
            )
        return int(cursor.lastrowid or 0)

    def list_milestones(self, project_id: int) -> list[Milestone]:
        """Return a project's milestones, newest first."""
        with _storage_errors("list milestones"):
            rows = self._connection.execute(
                "SELECT * FROM milestones WHERE project_id = ? ORDER BY date DESC, id ASC",
                (project_id,),
            ).fetchall()
        return [
            Milestone(
                id=row["id"],
                project_id=row["project_id"],
                message_id=row["message_id"],
                kind=row["type"],
                title=row["title"],
                date=parse_datetime(row["date"]),
            )
            for row in rows
        ]

    # Lifecycle -----------------------------------------------------------------
    def ping(self) -> bool:
        """Return ``True`` when the connection still answers queries."""
        try:
            self._connection.execute("SELECT 1")
        except sqlite3.Error:
            return False
        return True

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()

    # Internal helpers ----------------------------------------------------------
    def _configure_connection(self) -> None:
        self._connection.execute("PRAGMA foreign_keys = ON")
        self._connection.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
        mode = self._connection.execute("PRAGMA journal_mode = WAL").fetchone()
        LOGGER.debug("SQLite journal mode: %s", mode[0] if mode else "unknown")

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            try:
                with self._connection:
                    self._connection.executescript(script)
            except sqlite3.Error as exc:
                raise StorageError(f"Migration {migration.name} failed: {exc}") from exc

    def _ensure_indexes(self) -> None:
        """Create supporting indexes that may be missing from older schemas."""
        statements = (
            "CREATE INDEX IF NOT EXISTS idx_messages_account ON messages(account_id)",
            "CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id)",
            "CREATE INDEX IF NOT EXISTS idx_messages_project ON messages(project_id)",
            "CREATE INDEX IF NOT EXISTS idx_messages_date ON messages(date)",
            "CREATE INDEX IF NOT EXISTS idx_attachments_message ON attachments(message_id)",
            "CREATE INDEX IF NOT EXISTS idx_milestones_project ON milestones(project_id)",
        )
        with self._connection:
            for statement in statements:
                self._connection.execute(statement)

    def _recount(self, project_id: int) -> None:
        self._connection.execute(
            """
            UPDATE projects
            SET
                message_count = (SELECT COUNT(*) FROM messages WHERE project_id = ?),
                attachment_count = (
                    SELECT COUNT(*) FROM attachments
                    WHERE message_id IN (SELECT id FROM messages WHERE project_id = ?)
                ),
                updated_at = ?
            WHERE id = ?
            """,
            (project_id, project_id, serialize_datetime(utc_now()), project_id),
        )

    def _overview(self, project: Project) -> ProjectOverview:
        with _storage_errors("load project activity"):
            latest = self._connection.execute(
                "SELECT sender, date FROM messages WHERE project_id = ? ORDER BY date DESC LIMIT 1",
                (project.id,),
            ).fetchone()
            senders = self._connection.execute(
                """
                SELECT sender FROM messages
                WHERE project_id = ? AND sender IS NOT NULL
                GROUP BY sender
                ORDER BY MAX(date) DESC
                LIMIT ?
                """,
                (project.id, PARTICIPANT_LIMIT),
            ).fetchall()
        last_activity = (
            LastActivity(sender=latest["sender"] or "", date=parse_datetime(latest["date"]))
            if latest
            else None
        )
        participants = tuple(
            name for name in (display_name(row["sender"]) for row in senders) if name
        )
        return ProjectOverview(
            project=project, last_activity=last_activity, participants=participants
        )


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        LOGGER.error("Database error during %s: %s", action, exc, exc_info=True)
        raise StorageError(f"Failed to {action}: {exc}") from exc


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` matches literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def display_name(sender: str) -> str:
    """Return the name part of ``"Name <email>"``, or the value unchanged."""
    name, bracket, _ = sender.partition("<")
    return name.strip() if bracket else sender.strip()


def _auth_type(value: str) -> AuthType:
    try:
        return AuthType(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid auth type: {value}", code="INVALID_AUTH_TYPE") from exc


def _row_to_account(row: sqlite3.Row) -> Account:
    config = json.loads(row["imap_config"] or "{}")
    return Account(
        id=row["id"],
        email=row["email"],
        provider=row["provider"],
        imap=ImapEndpoint(**config),
        auth_type=_auth_type(row["auth_type"]),
        password=row["password"],
        oauth_access_token=row["oauth_access_token"],
        oauth_refresh_token=row["oauth_refresh_token"],
        oauth_token_expires_at=row["oauth_token_expires_at"],
        last_synced_uid=row["last_synced_uid"],
        created_at=parse_datetime(row["created_at"]),
    )


def _row_to_message(row: sqlite3.Row) -> StoredMessage:
    return StoredMessage(
        id=row["id"],
        message_id=row["message_id"],
        account_id=row["account_id"],
        thread_id=row["thread_id"],
        project_id=row["project_id"],
        subject=row["subject"],
        sender=row["sender"],
        recipients=tuple(json.loads(row["recipients"] or "[]")),
        date=parse_datetime(row["date"]),
        body_text=row["body_text"],
        body_html=row["body_html"],
        has_attachments=bool(row["has_attachments"]),
        source_uid=row["source_uid"],
    )


def _row_to_attachment(row: sqlite3.Row) -> StoredAttachment:
    return StoredAttachment(
        id=row["id"],
        message_id=row["message_id"],
        filename=row["filename"],
        file_type=row["file_type"],
        size=row["size"],
        mime_type=row["mime_type"],
        storage_path=row["storage_path"],
        content_hash=row["content_hash"],
    )


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        status=ProjectStatus(row["status"]),
        pinned=bool(row["is_pinned"]),
        tags=tuple(json.loads(row["tags"] or "[]")),
        message_count=row["message_count"],
        attachment_count=row["attachment_count"],
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
    )


__all__ = ["SqliteRepository", "display_name", "escape_like"]
