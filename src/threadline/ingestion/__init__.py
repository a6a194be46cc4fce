"""Mail ingestion: parsing, attachment storage, and sync orchestration."""

from .attachments import AttachmentStore
from .parser import MessageParser, generate_thread_id, parse_message
from .sync import SyncEngine, SyncState, compute_sync_range, limit_to_newest

__all__ = [
    "AttachmentStore",
    "MessageParser",
    "SyncEngine",
    "SyncState",
    "compute_sync_range",
    "generate_thread_id",
    "limit_to_newest",
    "parse_message",
]
