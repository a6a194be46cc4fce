"""Utilities for parsing raw RFC822 messages into structured models."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from email import errors as email_errors
from email import policy
from email.message import EmailMessage, Message
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from ..core.datetime_utils import ensure_utc, utc_now
from ..core.errors import ParseError
from ..core.models import ParsedAttachment, ParsedMessage

NO_SUBJECT = "(No Subject)"
UNKNOWN_ADDRESS = "Unknown"
DEFAULT_ATTACHMENT_TYPE = "application/octet-stream"

_MSG_ID_PATTERN = re.compile(r"<([^<>\s]+)>")


class MessageParser:
    """Convert raw email payloads into :class:`ParsedMessage` instances."""

    def __init__(self) -> None:
        """Prepare internal parser instance."""
        self._parser = BytesParser(policy=policy.default)

    def parse(self, payload: bytes) -> ParsedMessage:
        """Parse raw RFC822 bytes; raise :class:`ParseError` if undecodable."""
        if not payload or not payload.strip():
            raise ParseError("Failed to parse email: empty payload")
        try:
            message = self._parser.parsebytes(payload)
            return _build_parsed(message, payload)
        except (
            email_errors.MessageError,
            AttributeError,
            LookupError,
            TypeError,
            ValueError,
        ) as exc:
            raise ParseError(f"Failed to parse email: {exc}") from exc


def parse_message(payload: bytes) -> ParsedMessage:
    """Module-level convenience wrapper around :class:`MessageParser`."""
    return MessageParser().parse(payload)


def generate_thread_id(parsed: ParsedMessage) -> str:
    """Derive the thread key: first References entry, else In-Reply-To, else self."""
    if parsed.references:
        return parsed.references[0]
    if parsed.in_reply_to:
        return parsed.in_reply_to
    return parsed.message_id


def _build_parsed(message: EmailMessage, payload: bytes) -> ParsedMessage:
    message_id = _first_message_id(_header(message, "Message-ID"))
    if message_id is None:
        message_id = synthesize_message_id(payload)

    body_text, body_html = _extract_bodies(message)
    return ParsedMessage(
        message_id=message_id,
        subject=_header(message, "Subject") or NO_SUBJECT,
        sender=next(iter(_format_addresses(message.get_all("From", []))), UNKNOWN_ADDRESS),
        to=tuple(_format_addresses(message.get_all("To", []))),
        cc=tuple(_format_addresses(message.get_all("Cc", []))),
        date=_parse_date(_header(message, "Date")),
        body_text=body_text,
        body_html=body_html,
        attachments=tuple(_collect_attachments(message)),
        in_reply_to=_first_message_id(_header(message, "In-Reply-To")),
        references=tuple(_all_message_ids(_header(message, "References"))),
    )


def synthesize_message_id(payload: bytes) -> str:
    """Return a stable identifier for a message lacking a Message-ID header.

    Derived from the content so two header-less messages never collide
    unless their bytes are identical, and re-parsing yields the same value.
    """
    return f"generated-{hashlib.sha256(payload).hexdigest()[:32]}"


def _header(message: Message, name: str) -> str | None:
    value = message.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_message_id(value: str | None) -> str | None:
    ids = list(_all_message_ids(value))
    return ids[0] if ids else None


def _all_message_ids(value: str | None) -> Iterator[str]:
    if not value:
        return
    matches = _MSG_ID_PATTERN.findall(value)
    if matches:
        yield from matches
        return
    # Non-conforming senders omit the angle brackets
    for token in value.split():
        token = token.strip("<>,")
        if token:
            yield token


def _format_addresses(headers: Iterable[str]) -> Iterator[str]:
    for name, address in getaddresses([str(header) for header in headers]):
        name = name.strip()
        address = address.strip()
        if name and address:
            yield f"{name} <{address}>"
        elif address:
            yield address
        elif name:
            yield name


def _parse_date(header_value: str | None) -> datetime:
    if header_value is None:
        return utc_now()
    try:
        parsed = parsedate_to_datetime(header_value)
    except (TypeError, ValueError, IndexError):
        return utc_now()
    return ensure_utc(parsed) or datetime.now(UTC)


def _extract_bodies(message: EmailMessage) -> tuple[str | None, str | None]:
    """Return the first text/plain and first text/html body parts."""
    text: str | None = None
    html: str | None = None
    for part in message.walk():
        if part.is_multipart() or _is_attachment(part):
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain" and text is None:
            text = _decode_text(part)
        elif content_type == "text/html" and html is None:
            html = _decode_text(part)
        if text is not None and html is not None:
            break
    return text, html


def _decode_text(part: Message) -> str | None:
    try:
        content = part.get_content()  # type: ignore[attr-defined]
    except (LookupError, UnicodeDecodeError):
        raw = part.get_payload(decode=True) or b""
        content = raw.decode("utf-8", errors="replace")
    if not isinstance(content, str):
        return None
    return content


def _is_attachment(part: Message) -> bool:
    disposition = part.get_content_disposition()
    if disposition == "attachment":
        return True
    return part.get_filename() is not None and part.get_content_maintype() != "text"


def _collect_attachments(message: EmailMessage) -> Iterator[ParsedAttachment]:
    for part in message.walk():
        if part.is_multipart() or not _is_attachment(part):
            continue
        filename = part.get_filename()
        if not filename:
            continue
        payload = part.get_payload(decode=True) or b""
        yield ParsedAttachment(
            filename=filename,
            content_type=part.get_content_type() or DEFAULT_ATTACHMENT_TYPE,
            data=payload,
        )


__all__ = [
    "MessageParser",
    "NO_SUBJECT",
    "generate_thread_id",
    "parse_message",
    "synthesize_message_id",
]
