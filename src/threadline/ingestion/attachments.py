"""Filesystem store for attachment payloads."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path, PurePosixPath

from ..core.errors import StorageError
from ..core.models import AttachmentFile, ParsedAttachment

LOGGER = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = frozenset('/\\:*?"<>|')
FALLBACK_FILENAME = "attachment"
UNKNOWN_FILE_TYPE = "unknown"


def sanitize_filename(filename: str) -> str:
    """Replace path-unsafe characters with ``_``."""
    safe = "".join("_" if char in UNSAFE_FILENAME_CHARS else char for char in filename)
    safe = safe.strip()
    if safe in {"", ".", ".."}:
        return FALLBACK_FILENAME
    return safe


def file_extension(filename: str) -> str:
    """Return the extension of ``filename`` without the dot, or ``"unknown"``."""
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix
    return suffix[1:] if len(suffix) > 1 else UNKNOWN_FILE_TYPE


def content_hash(data: bytes) -> str:
    """Return the SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


class AttachmentStore:
    """Write attachment bytes under ``<root>/<account_id>/<message_id>/``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def relative_path(self, account_id: int, message_row_id: int, filename: str) -> str:
        """Storage-relative path recorded in the database."""
        return f"{account_id}/{message_row_id}/{sanitize_filename(filename)}"

    def resolve(self, relative_path: str) -> Path:
        """Absolute location of a stored attachment."""
        return self.root / relative_path

    async def save(
        self, account_id: int, message_row_id: int, attachment: ParsedAttachment
    ) -> AttachmentFile:
        """Persist one attachment and describe the written file."""
        relative = self.relative_path(account_id, message_row_id, attachment.filename)
        target = self.resolve(relative)
        await asyncio.to_thread(_write_file, target, attachment.data)
        LOGGER.info(
            "Saved attachment: %s (%s bytes) to %s",
            attachment.filename,
            attachment.size,
            relative,
        )
        return AttachmentFile(
            filename=attachment.filename,
            file_type=file_extension(attachment.filename),
            size=attachment.size,
            mime_type=attachment.content_type or None,
            storage_path=relative,
            content_hash=content_hash(attachment.data),
        )


def _write_file(target: Path, data: bytes) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except OSError as exc:
        raise StorageError(f"Failed to write attachment file {target}: {exc}") from exc


__all__ = [
    "AttachmentStore",
    "content_hash",
    "file_extension",
    "sanitize_filename",
]
