"""Build the date-ordered event view of a project."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from ..core.errors import ProjectNotFoundError
from ..core.models import Milestone, StoredAttachment, StoredMessage
from ..storage.connection_pool import ConnectionPool
from ..storage.sqlite import SqliteRepository

_EARLIEST = datetime.min.replace(tzinfo=UTC)


@dataclass(slots=True, frozen=True)
class AttachmentRef:
    name: str
    file_type: str
    size: str


@dataclass(slots=True, frozen=True)
class MilestoneEvent:
    id: str
    date: datetime | None
    title: str
    status: str
    kind: Literal["milestone"] = "milestone"


@dataclass(slots=True, frozen=True)
class MessageEvent:
    id: str
    date: datetime | None
    sender: str
    content: str
    subject: str
    attachments: tuple[AttachmentRef, ...] | None
    kind: Literal["message"] = "message"


@dataclass(slots=True, frozen=True)
class ThreadEvent:
    """A conversation; ``children`` are newest first and ``date`` is the newest member's."""

    id: str
    date: datetime | None
    children: tuple[MessageEvent, ...]
    kind: Literal["thread"] = "thread"


TimelineEvent = MilestoneEvent | MessageEvent | ThreadEvent


def format_file_size(size: int) -> str:
    """Render a byte count as ``B``, ``KB`` or ``MB`` with one decimal."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _sort_key(event: TimelineEvent) -> tuple[bool, datetime]:
    return (event.date is not None, event.date or _EARLIEST)


def _newest_first(events: Iterable[TimelineEvent]) -> list[TimelineEvent]:
    # sorted() is stable under reverse=True, so ties keep insertion order
    return sorted(events, key=_sort_key, reverse=True)


def _message_event(
    message: StoredMessage, attachments: Sequence[StoredAttachment]
) -> MessageEvent:
    refs = tuple(
        AttachmentRef(
            name=item.filename,
            file_type=item.file_type,
            size=format_file_size(item.size),
        )
        for item in attachments
    )
    return MessageEvent(
        id=f"e{message.id}",
        date=message.date,
        sender=message.sender or "",
        content=message.body_text or "",
        subject=message.subject or "",
        attachments=refs or None,
    )


def assemble_timeline(
    milestones: Iterable[Milestone],
    messages: Iterable[StoredMessage],
    attachments: Mapping[int, Sequence[StoredAttachment]],
) -> list[TimelineEvent]:
    """Merge milestones, threads, and standalone messages, newest first."""
    events: list[TimelineEvent] = [
        MilestoneEvent(
            id=f"m{milestone.id}",
            date=milestone.date,
            title=milestone.title,
            status=milestone.kind,
        )
        for milestone in milestones
    ]

    threads: dict[str, list[MessageEvent]] = {}
    standalone: list[MessageEvent] = []
    for message in messages:
        event = _message_event(message, attachments.get(message.id, ()))
        if message.thread_id:
            threads.setdefault(message.thread_id, []).append(event)
        else:
            standalone.append(event)

    for thread_id, members in threads.items():
        children = tuple(sorted(members, key=_sort_key, reverse=True))
        events.append(ThreadEvent(id=thread_id, date=children[0].date, children=children))
    events.extend(standalone)
    return _newest_first(events)


class TimelineAssembler:
    """Load a project's rows from storage and assemble its timeline."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    async def timeline(self, project_id: int) -> list[TimelineEvent]:
        return await self._pool.run(lambda repo: self.timeline_with(repo, project_id))

    @staticmethod
    def timeline_with(repository: SqliteRepository, project_id: int) -> list[TimelineEvent]:
        if repository.fetch_project(project_id) is None:
            raise ProjectNotFoundError(project_id)
        return assemble_timeline(
            repository.list_milestones(project_id),
            repository.list_project_messages(project_id),
            repository.list_project_attachments(project_id),
        )


__all__ = [
    "AttachmentRef",
    "MessageEvent",
    "MilestoneEvent",
    "ThreadEvent",
    "TimelineAssembler",
    "TimelineEvent",
    "assemble_timeline",
    "format_file_size",
]
