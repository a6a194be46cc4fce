"""Assign stored messages to projects using thread and subject heuristics."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from ..core.datetime_utils import utc_now
from ..core.errors import MessageNotFoundError
from ..core.interfaces import MessageClassifier
from ..core.models import StoredMessage
from ..ingestion.parser import NO_SUBJECT
from ..storage.connection_pool import ConnectionPool
from ..storage.sqlite import SqliteRepository

LOGGER = logging.getLogger(__name__)

REPLY_PREFIXES: tuple[str, ...] = ("Re:", "RE:", "Fwd:", "FWD:", "Fw:", "回复:", "转发:")
MAX_SUBJECT_BYTES = 100
SUBJECT_MATCH_WINDOW = timedelta(days=30)


def safe_truncate(text: str, max_bytes: int) -> str:
    """Truncate ``text`` to at most ``max_bytes`` UTF-8 bytes on a character boundary."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def normalize_subject(subject: str) -> str:
    """Strip repeated reply/forward prefixes, trim, and bound the length."""
    normalized = subject.strip()
    stripped = True
    while stripped:
        stripped = False
        for prefix in REPLY_PREFIXES:
            if normalized.startswith(prefix):
                normalized = normalized[len(prefix) :].strip()
                stripped = True
                break
    return safe_truncate(normalized, MAX_SUBJECT_BYTES)


class ProjectClassifier(MessageClassifier):
    """Resolve the project for a message, creating one when nothing matches.

    Resolution order: existing assignment, another message of the same
    thread, a recent message with a matching subject, then a new project.
    Every assignment triggers a full recount of the target project.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        *,
        clock: Callable[[], datetime] = utc_now,
        subject_window: timedelta = SUBJECT_MATCH_WINDOW,
    ) -> None:
        self._pool = pool
        self._clock = clock
        self._subject_window = subject_window

    async def classify(self, message_row_id: int) -> int:
        """Return the project id for ``message_row_id``; idempotent."""
        return await self._pool.run(lambda repo: self.classify_with(repo, message_row_id))

    async def classify_unassigned(self) -> int:
        """Classify every message lacking a project; return how many succeeded."""
        message_ids = await self._pool.run(lambda repo: repo.list_unassigned_message_ids())
        classified = 0
        for message_row_id in message_ids:
            try:
                await self.classify(message_row_id)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Failed to classify message %s: %s", message_row_id, exc)
                continue
            classified += 1
        LOGGER.info("Classified %s of %s unassigned messages", classified, len(message_ids))
        return classified

    def classify_with(self, repository: SqliteRepository, message_row_id: int) -> int:
        """Synchronous classification against an acquired repository."""
        message = repository.fetch_message(message_row_id)
        if message is None:
            raise MessageNotFoundError(message_row_id)
        if message.project_id is not None:
            return message.project_id

        if message.thread_id:
            project_id = repository.find_project_by_thread(message.thread_id, message.id)
            if project_id is not None:
                repository.assign_project(message.id, project_id)
                LOGGER.info("Assigned message %s to project %s (by thread)", message.id, project_id)
                return project_id

        subject = _usable_subject(message)
        if subject:
            since = self._clock() - self._subject_window
            project_id = repository.find_project_by_subject(subject, since)
            if project_id is not None:
                repository.assign_project(message.id, project_id)
                LOGGER.info("Assigned message %s to project %s (by subject)", message.id, project_id)
                return project_id

        name = subject or f"Project from {message.sender or 'Unknown'}"
        project_id = repository.create_project(name)
        repository.assign_project(message.id, project_id)
        LOGGER.info("Created new project %s for message %s", project_id, message.id)
        return project_id


def _usable_subject(message: StoredMessage) -> str:
    if not message.subject or message.subject == NO_SUBJECT:
        return ""
    return normalize_subject(message.subject)


__all__ = [
    "MAX_SUBJECT_BYTES",
    "ProjectClassifier",
    "REPLY_PREFIXES",
    "normalize_subject",
    "safe_truncate",
]
