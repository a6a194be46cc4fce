"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from typing import Protocol

from .models import OAuthTokens


class MailSession(Protocol):
    """One mailbox connection, as consumed by the sync engine."""

    async def authenticate(self) -> None:
        """Log in with the credentials the session was opened with."""
        raise NotImplementedError

    async def select_folder(self, name: str) -> int:
        """Select ``name`` and return its message count."""
        raise NotImplementedError

    async def fetch_uids(self, uid_range: str) -> list[int]:
        """Return the UIDs in ``uid_range`` in ascending order."""
        raise NotImplementedError

    async def fetch_raw(self, uid: int) -> bytes:
        """Return the RFC822 bytes for ``uid``."""
        raise NotImplementedError

    async def logout(self) -> None:
        """End the session."""
        raise NotImplementedError


class MessageClassifier(Protocol):
    """Assigns a stored message to a project."""

    async def classify(self, message_row_id: int) -> int:
        """Return the project id for ``message_row_id``."""
        raise NotImplementedError


class TokenProvider(Protocol):
    """External OAuth collaborator able to mint fresh access tokens."""

    async def refresh(self, provider: str, refresh_token: str) -> OAuthTokens:
        """Exchange ``refresh_token`` for a new token set."""
        raise NotImplementedError


__all__ = ["MailSession", "MessageClassifier", "TokenProvider"]
