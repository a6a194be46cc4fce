"""Credential variants accepted by :class:`~threadline.transport.ImapSession`."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SaslState(Enum):
    UNSENT = "unsent"
    SENT = "sent"


@dataclass(slots=True)
class XOAuth2Exchange:
    """Single-message SASL XOAUTH2 responder for ``imaplib.authenticate``.

    The first server challenge is answered with the bearer credential; any
    further challenge (servers send one carrying an error payload) gets an
    empty response so the server can finish with a tagged NO.
    """

    credential: str = field(repr=False)
    state: SaslState = SaslState.UNSENT

    def __call__(self, challenge: bytes) -> bytes:
        del challenge
        if self.state is SaslState.UNSENT:
            self.state = SaslState.SENT
            return self.credential.encode()
        return b""


@dataclass(slots=True, frozen=True)
class PasswordAuth:
    """Plain LOGIN with a username and (app) password."""

    username: str
    password: str = field(repr=False)


@dataclass(slots=True, frozen=True)
class OAuthAuth:
    """SASL XOAUTH2 with a bearer access token."""

    username: str
    access_token: str = field(repr=False)

    def credential(self) -> str:
        return f"user={self.username}\x01auth=Bearer {self.access_token}\x01\x01"

    def exchange(self) -> XOAuth2Exchange:
        """Return a fresh responder; each authentication attempt needs its own."""
        return XOAuth2Exchange(credential=self.credential())


AuthMethod = PasswordAuth | OAuthAuth

__all__ = ["AuthMethod", "OAuthAuth", "PasswordAuth", "SaslState", "XOAuth2Exchange"]
