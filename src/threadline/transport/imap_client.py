"""Async IMAP session built on ``imaplib``.

Blocking ``imaplib`` calls run in worker threads via ``asyncio.to_thread``
so that every network step is an awaitable suspension point. Each step that
may stall (greeting, XOAUTH2 exchange, capability probe) runs under its own
socket timeout; expiry is reported as :class:`NetworkError`. imaplib reads the
greeting inside its constructor, so the greeting bound also covers the TCP
connect and TLS handshake.
"""

from __future__ import annotations

import asyncio
import imaplib
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from ..core.config import TimeoutSettings
from ..core.errors import AuthError, MessageNotFoundError, NetworkError, ThreadlineError
from ..core.interfaces import MailSession
from ..core.models import ImapEndpoint
from .auth import AuthMethod, OAuthAuth, PasswordAuth

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ImapConnection = imaplib.IMAP4 | imaplib.IMAP4_SSL


class ImapError(ThreadlineError):
    """Server refused a mailbox command after authentication."""

    code = "NET_IMAP_ERROR"


class ImapSession(MailSession):
    """One IMAP connection owned by a single sync run."""

    def __init__(
        self,
        connection: ImapConnection,
        username: str,
        *,
        auth: AuthMethod | None = None,
        timeouts: TimeoutSettings | None = None,
    ) -> None:
        self._connection: ImapConnection | None = connection
        self.username = username
        self._auth = auth
        self._timeouts = timeouts or TimeoutSettings()

    # Lifecycle ----------------------------------------------------------------
    @classmethod
    async def open(
        cls,
        endpoint: ImapEndpoint,
        auth: AuthMethod,
        *,
        timeouts: TimeoutSettings | None = None,
    ) -> ImapSession:
        """Connect and read the greeting; :meth:`authenticate` logs in."""
        bounds = timeouts or TimeoutSettings()
        LOGGER.info("Connecting to IMAP server %s:%s", endpoint.host, endpoint.port)
        connection = await asyncio.to_thread(_open_connection, endpoint, bounds)
        return cls(connection, auth.username, auth=auth, timeouts=bounds)

    async def authenticate(self) -> None:
        """Log in with the session's credentials and probe capabilities."""
        connection = self._require_connection()
        if self._auth is None:
            raise AuthError(f"No credentials supplied for {self.username}")
        try:
            await asyncio.to_thread(_authenticate, connection, self._auth, self._timeouts)
            await asyncio.to_thread(_probe_capabilities, connection, self._timeouts)
        except ThreadlineError:
            self._connection = None
            await asyncio.to_thread(_shutdown_quietly, connection)
            raise
        LOGGER.info("Authenticated as %s", self.username)

    async def logout(self) -> None:
        """End the session; failures propagate to the caller."""
        connection = self._require_connection()
        self._connection = None
        LOGGER.debug("Logging out of IMAP session for %s", self.username)
        status, data = await asyncio.to_thread(self._run, "LOGOUT", connection.logout)
        if status not in ("BYE", "OK"):
            raise ImapError(f"Logout failed: {_describe(data)}")

    # Mailbox commands -----------------------------------------------------------
    async def select_folder(self, name: str) -> int:
        """Select ``name`` read-only and return the number of messages in it."""
        connection = self._require_connection()
        LOGGER.info("Selecting folder %s", name)
        status, data = await asyncio.to_thread(
            self._run, "SELECT", lambda: connection.select(name, readonly=True)
        )
        if status != "OK":
            raise ImapError(f"Failed to select folder {name}: {_describe(data)}")
        try:
            exists = int(data[0]) if data and data[0] else 0
        except (TypeError, ValueError) as exc:
            raise ImapError(f"Unexpected SELECT response for {name}: {data!r}") from exc
        LOGGER.info("Folder %s has %s messages", name, exists)
        return exists

    async def fetch_uids(self, uid_range: str) -> list[int]:
        """Return UIDs within ``uid_range`` (``"<start>:*"``) in ascending order."""
        connection = self._require_connection()
        LOGGER.debug("Searching UIDs in range %s", uid_range)
        status, data = await asyncio.to_thread(
            self._run,
            "UID SEARCH",
            lambda: connection.uid("SEARCH", None, f"UID {uid_range}"),  # type: ignore[arg-type]
        )
        if status != "OK":
            raise ImapError(f"Failed to search UIDs {uid_range}: {_describe(data)}")
        raw_ids = data[0].split() if data and data[0] else []
        return sorted({int(raw) for raw in raw_ids})

    async def fetch_raw(self, uid: int) -> bytes:
        """Return the RFC822 payload for ``uid``."""
        connection = self._require_connection()
        uid_str = str(uid)
        LOGGER.debug("Fetching RFC822 payload for UID %s", uid_str)
        status, data = await asyncio.to_thread(
            self._run, "UID FETCH", lambda: connection.uid("FETCH", uid_str, "(RFC822)")
        )
        if status != "OK":
            raise ImapError(f"Failed to fetch email {uid_str}: {_describe(data)}")
        payload = _extract_rfc822(data)
        if payload is None:
            raise MessageNotFoundError(uid, f"Email {uid_str} not found")
        return payload

    # Internal helpers -----------------------------------------------------------
    def _require_connection(self) -> ImapConnection:
        if self._connection is None:
            raise ImapError("IMAP session is not connected")
        return self._connection

    @staticmethod
    def _run(step: str, call: Callable[[], T]) -> T:
        with _network_step(step):
            return call()


@contextmanager
def _network_step(step: str) -> Iterator[None]:
    """Translate transport exceptions raised during ``step``."""
    try:
        yield
    except TimeoutError as exc:
        raise NetworkError(f"IMAP {step} timed out") from exc
    except imaplib.IMAP4.abort as exc:
        raise NetworkError(f"IMAP connection dropped during {step}: {exc}") from exc
    except imaplib.IMAP4.error as exc:
        raise ImapError(f"IMAP {step} failed: {exc}") from exc
    except OSError as exc:
        raise NetworkError(f"IMAP {step} failed: {exc}") from exc


def _open_connection(endpoint: ImapEndpoint, timeouts: TimeoutSettings) -> ImapConnection:
    """Establish TCP/TLS and read the server greeting within ``greeting_seconds``."""
    address = f"{endpoint.host}:{endpoint.port}"
    try:
        # imaplib reads the greeting inside the constructor
        if endpoint.use_tls:
            connection: ImapConnection = imaplib.IMAP4_SSL(
                endpoint.host, endpoint.port, timeout=timeouts.greeting_seconds
            )
        else:
            connection = imaplib.IMAP4(
                endpoint.host, endpoint.port, timeout=timeouts.greeting_seconds
            )
            if endpoint.use_starttls:
                connection.starttls()
    except TimeoutError as exc:
        raise NetworkError(
            f"Timed out after {timeouts.greeting_seconds}s connecting to {address} "
            "or waiting for its IMAP greeting"
        ) from exc
    except (OSError, imaplib.IMAP4.error) as exc:
        raise NetworkError(f"Failed to connect to {address}: {exc}") from exc
    LOGGER.debug("IMAP greeting from %s: %r", address, connection.welcome)
    return connection


def _authenticate(
    connection: ImapConnection, auth: AuthMethod, timeouts: TimeoutSettings
) -> None:
    try:
        if isinstance(auth, PasswordAuth):
            LOGGER.info("Authenticating with password for user %s", auth.username)
            _set_timeout(connection, None)
            connection.login(auth.username, auth.password)
        elif isinstance(auth, OAuthAuth):
            LOGGER.info("Authenticating with XOAUTH2 for user %s", auth.username)
            _set_timeout(connection, timeouts.oauth_seconds)
            connection.authenticate("XOAUTH2", auth.exchange())
        else:  # pragma: no cover - closed union
            raise AuthError(f"Unsupported authentication method {type(auth).__name__}")
    except TimeoutError as exc:
        raise NetworkError(
            f"IMAP XOAUTH2 exchange timed out after {timeouts.oauth_seconds}s"
        ) from exc
    except imaplib.IMAP4.abort as exc:
        raise NetworkError(f"IMAP connection dropped during authentication: {exc}") from exc
    except imaplib.IMAP4.error as exc:
        raise AuthError(f"Login failed for {auth.username}: {exc}") from exc
    except OSError as exc:
        raise NetworkError(f"IMAP authentication failed: {exc}") from exc


def _probe_capabilities(connection: ImapConnection, timeouts: TimeoutSettings) -> None:
    _set_timeout(connection, timeouts.capability_seconds)
    try:
        status, data = connection.capability()
    except TimeoutError as exc:
        raise NetworkError(
            f"Timed out after {timeouts.capability_seconds}s waiting for IMAP capabilities"
        ) from exc
    except (OSError, imaplib.IMAP4.error) as exc:
        raise NetworkError(f"Failed to read IMAP capabilities: {exc}") from exc
    finally:
        _set_timeout(connection, None)
    if status == "OK" and data and data[0]:
        capabilities = data[0].decode(errors="replace").upper().split()
        LOGGER.debug(
            "IMAP AUTH=XOAUTH2 supported: %s", "AUTH=XOAUTH2" in capabilities
        )
    else:
        LOGGER.warning("Server returned no capabilities after authentication")


def _set_timeout(connection: ImapConnection, seconds: float | None) -> None:
    sock = getattr(connection, "sock", None)
    if sock is not None:
        sock.settimeout(seconds)


def _shutdown_quietly(connection: ImapConnection) -> None:
    try:
        connection.shutdown()
    except OSError:  # pragma: no cover - socket already gone
        LOGGER.debug("IMAP shutdown raised; socket already closed")


def _extract_rfc822(fetch_data: list[tuple[bytes, bytes] | bytes | None]) -> bytes | None:
    """Extract RFC822 payload from ``imaplib`` response chunks."""
    for entry in fetch_data or ():
        if isinstance(entry, tuple) and len(entry) == 2:
            return entry[1]
    return None


def _describe(data: object) -> str:
    if isinstance(data, list) and data and isinstance(data[0], bytes):
        return data[0].decode(errors="replace")
    return repr(data)


__all__ = ["ImapError", "ImapSession"]
