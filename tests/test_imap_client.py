"""Tests for the IMAP transport adapter."""

# pylint: disable=protected-access

from __future__ import annotations

import imaplib
from unittest.mock import MagicMock, patch

import pytest

from threadline.core.config import TimeoutSettings
from threadline.core.errors import AuthError, MessageNotFoundError, NetworkError
from threadline.core.models import ImapEndpoint
from threadline.transport import ImapError, ImapSession, OAuthAuth, PasswordAuth
from threadline.transport.auth import SaslState, XOAuth2Exchange

ENDPOINT = ImapEndpoint(host="imap.test", port=993)


def _connection() -> MagicMock:
    connection = MagicMock()
    connection.welcome = b"* OK ready"
    connection.login.return_value = ("OK", [b"Logged in"])
    connection.capability.return_value = ("OK", [b"IMAP4rev1 AUTH=XOAUTH2"])
    return connection


async def _open_and_authenticate(auth, **kwargs) -> ImapSession:
    session = await ImapSession.open(ENDPOINT, auth, **kwargs)
    await session.authenticate()
    return session


@pytest.mark.asyncio
async def test_password_login_probes_capabilities_without_exchange_bound() -> None:
    connection = _connection()
    with patch("threadline.transport.imap_client.imaplib.IMAP4_SSL", return_value=connection) as ssl:
        session = await ImapSession.open(
            ENDPOINT,
            PasswordAuth(username="user@test", password="pw"),
            timeouts=TimeoutSettings(greeting_seconds=3),
        )
        connection.login.assert_not_called()
        await session.authenticate()

    ssl.assert_called_once_with("imap.test", 993, timeout=3)
    connection.login.assert_called_once_with("user@test", "pw")
    connection.capability.assert_called_once_with()
    assert 15.0 not in [call.args[0] for call in connection.sock.settimeout.call_args_list]
    assert session.username == "user@test"


@pytest.mark.asyncio
async def test_oauth_login_sends_xoauth2_credential_under_exchange_bound() -> None:
    connection = _connection()
    responses: list[bytes] = []

    def authenticate(mechanism, responder):
        assert mechanism == "XOAUTH2"
        responses.append(responder(b""))
        responses.append(responder(b"eyJzdGF0dXMiOiI0MDAifQ=="))
        return "OK", [b"Success"]

    connection.authenticate.side_effect = authenticate
    with patch("threadline.transport.imap_client.imaplib.IMAP4_SSL", return_value=connection):
        await _open_and_authenticate(OAuthAuth(username="user@test", access_token="tok"))

    assert responses == [b"user=user@test\x01auth=Bearer tok\x01\x01", b""]
    connection.login.assert_not_called()
    connection.sock.settimeout.assert_any_call(15.0)


@pytest.mark.asyncio
async def test_oauth_exchange_timeout_raises_network_error() -> None:
    connection = _connection()
    connection.authenticate.side_effect = TimeoutError()
    with patch("threadline.transport.imap_client.imaplib.IMAP4_SSL", return_value=connection):
        with pytest.raises(NetworkError, match="XOAUTH2 exchange timed out"):
            await _open_and_authenticate(OAuthAuth(username="u", access_token="tok"))

    connection.shutdown.assert_called_once_with()


def test_xoauth2_exchange_answers_once() -> None:
    exchange = XOAuth2Exchange(credential="cred")

    assert exchange.state is SaslState.UNSENT
    assert exchange(b"") == b"cred"
    assert exchange.state is SaslState.SENT
    assert exchange(b"again") == b""


@pytest.mark.asyncio
async def test_greeting_timeout_raises_network_error() -> None:
    with patch(
        "threadline.transport.imap_client.imaplib.IMAP4_SSL", side_effect=TimeoutError()
    ):
        with pytest.raises(NetworkError, match="greeting"):
            await ImapSession.open(ENDPOINT, PasswordAuth(username="u", password="p"))


@pytest.mark.asyncio
async def test_rejected_login_raises_auth_error_and_closes_socket() -> None:
    connection = _connection()
    connection.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
    with patch("threadline.transport.imap_client.imaplib.IMAP4_SSL", return_value=connection):
        with pytest.raises(AuthError):
            await _open_and_authenticate(PasswordAuth(username="u", password="bad"))

    connection.shutdown.assert_called_once_with()


@pytest.mark.asyncio
async def test_capability_timeout_raises_network_error() -> None:
    connection = _connection()
    connection.capability.side_effect = TimeoutError()
    with patch("threadline.transport.imap_client.imaplib.IMAP4_SSL", return_value=connection):
        with pytest.raises(NetworkError, match="capabilities"):
            await _open_and_authenticate(PasswordAuth(username="u", password="p"))


@pytest.mark.asyncio
async def test_select_and_search_return_counts_and_sorted_uids() -> None:
    connection = MagicMock()
    connection.select.return_value = ("OK", [b"42"])
    connection.uid.return_value = ("OK", [b"105 101 103"])
    session = ImapSession(connection, "user")

    assert await session.select_folder("INBOX") == 42
    assert await session.fetch_uids("101:*") == [101, 103, 105]
    connection.select.assert_called_once_with("INBOX", readonly=True)
    connection.uid.assert_called_once_with("SEARCH", None, "UID 101:*")


@pytest.mark.asyncio
async def test_select_failure_raises_imap_error() -> None:
    connection = MagicMock()
    connection.select.return_value = ("NO", [b"Mailbox does not exist"])

    with pytest.raises(ImapError, match="Mailbox does not exist"):
        await ImapSession(connection, "user").select_folder("Missing")


@pytest.mark.asyncio
async def test_fetch_raw_returns_payload() -> None:
    connection = MagicMock()
    connection.uid.return_value = ("OK", [(b"7 (UID 7 RFC822 {5}", b"hello"), b")"])

    assert await ImapSession(connection, "user").fetch_raw(7) == b"hello"
    connection.uid.assert_called_once_with("FETCH", "7", "(RFC822)")


@pytest.mark.asyncio
async def test_fetch_raw_without_payload_raises_not_found() -> None:
    connection = MagicMock()
    connection.uid.return_value = ("OK", [None])

    with pytest.raises(MessageNotFoundError):
        await ImapSession(connection, "user").fetch_raw(42)


@pytest.mark.asyncio
async def test_fetch_timeout_raises_network_error() -> None:
    connection = MagicMock()
    connection.uid.side_effect = TimeoutError()

    with pytest.raises(NetworkError):
        await ImapSession(connection, "user").fetch_raw(1)


@pytest.mark.asyncio
async def test_logout_accepts_bye() -> None:
    connection = MagicMock()
    connection.logout.return_value = ("BYE", [b"Logging out"])
    session = ImapSession(connection, "user")

    await session.logout()

    assert session._connection is None
    with pytest.raises(ImapError):
        await session.select_folder("INBOX")


@pytest.mark.asyncio
async def test_logout_failure_raises() -> None:
    connection = MagicMock()
    connection.logout.return_value = ("NO", [b"Server error"])

    with pytest.raises(ImapError, match="Logout failed"):
        await ImapSession(connection, "user").logout()
