"""Transport adapters for external mailbox providers."""

from .auth import AuthMethod, OAuthAuth, PasswordAuth
from .imap_client import ImapError, ImapSession
from .oauth import HttpTokenRefresher
from .providers import detect_provider, get_provider, get_provider_configs

__all__ = [
    "AuthMethod",
    "HttpTokenRefresher",
    "ImapError",
    "ImapSession",
    "OAuthAuth",
    "PasswordAuth",
    "detect_provider",
    "get_provider",
    "get_provider_configs",
]
