"""Tests for the attachment file store."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from threadline.core.models import ParsedAttachment
from threadline.ingestion import AttachmentStore
from threadline.ingestion.attachments import file_extension, sanitize_filename


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("report.pdf", "report.pdf"),
        ('a/b\\c:d*e?f"g<h>i|j.txt', "a_b_c_d_e_f_g_h_i_j.txt"),
        ("..", "attachment"),
        ("   ", "attachment"),
    ],
)
def test_sanitize_filename(filename: str, expected: str) -> None:
    assert sanitize_filename(filename) == expected


def test_file_extension() -> None:
    assert file_extension("deck.final.PPTX") == "PPTX"
    assert file_extension("README") == "unknown"
    assert file_extension("archive.") == "unknown"


@pytest.mark.asyncio
async def test_save_writes_under_account_and_message(tmp_path: Path) -> None:
    store = AttachmentStore(tmp_path)
    attachment = ParsedAttachment(
        filename="../../etc/passwd", content_type="text/plain", data=b"payload"
    )

    saved = await store.save(3, 14, attachment)

    assert saved.storage_path == "3/14/.._.._etc_passwd"
    assert store.resolve(saved.storage_path).read_bytes() == b"payload"
    assert saved.size == 7
    assert saved.mime_type == "text/plain"
    assert saved.content_hash == hashlib.sha256(b"payload").hexdigest()
