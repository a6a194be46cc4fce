"""Static directory of well-known mail providers."""

from __future__ import annotations

from types import MappingProxyType

from ..core.models import ImapEndpoint, ProviderConfig, SmtpEndpoint

_PROVIDERS: tuple[ProviderConfig, ...] = (
    ProviderConfig(
        name="gmail",
        display_name="Gmail",
        imap=ImapEndpoint(host="imap.gmail.com", port=993),
        smtp=SmtpEndpoint(host="smtp.gmail.com", port=587, use_tls=False, use_starttls=True),
        oauth_supported=True,
    ),
    ProviderConfig(
        name="outlook",
        display_name="Outlook / Office 365",
        imap=ImapEndpoint(host="outlook.office365.com", port=993),
        smtp=SmtpEndpoint(
            host="smtp.office365.com", port=587, use_tls=False, use_starttls=True
        ),
        oauth_supported=True,
    ),
    ProviderConfig(
        name="qq",
        display_name="QQ Mail",
        imap=ImapEndpoint(host="imap.qq.com", port=993),
        smtp=SmtpEndpoint(host="smtp.qq.com", port=587, use_tls=False, use_starttls=True),
        oauth_supported=False,
    ),
    ProviderConfig(
        name="163",
        display_name="NetEase 163 Mail",
        imap=ImapEndpoint(host="imap.163.com", port=993),
        smtp=SmtpEndpoint(host="smtp.163.com", port=465, use_tls=True, use_starttls=False),
        oauth_supported=False,
    ),
    ProviderConfig(
        name="126",
        display_name="NetEase 126 Mail",
        imap=ImapEndpoint(host="imap.126.com", port=993),
        smtp=SmtpEndpoint(host="smtp.126.com", port=465, use_tls=True, use_starttls=False),
        oauth_supported=False,
    ),
    ProviderConfig(
        name="icloud",
        display_name="iCloud Mail",
        imap=ImapEndpoint(host="imap.mail.me.com", port=993),
        smtp=SmtpEndpoint(
            host="smtp.mail.me.com", port=587, use_tls=False, use_starttls=True
        ),
        oauth_supported=False,
    ),
)

_DOMAINS = MappingProxyType(
    {
        "gmail.com": "gmail",
        "outlook.com": "outlook",
        "hotmail.com": "outlook",
        "live.com": "outlook",
        "qq.com": "qq",
        "163.com": "163",
        "126.com": "126",
        "icloud.com": "icloud",
        "me.com": "icloud",
        "mac.com": "icloud",
    }
)


def get_provider_configs() -> tuple[ProviderConfig, ...]:
    """Return every known provider."""
    return _PROVIDERS


def get_provider(name: str) -> ProviderConfig | None:
    """Look up a provider by its short name."""
    for provider in _PROVIDERS:
        if provider.name == name:
            return provider
    return None


def detect_provider(email_address: str) -> ProviderConfig | None:
    """Return the provider serving ``email_address``'s domain, if known."""
    _, at, domain = email_address.rpartition("@")
    if not at or not domain:
        return None
    name = _DOMAINS.get(domain.strip().lower())
    return get_provider(name) if name else None


__all__ = ["detect_provider", "get_provider", "get_provider_configs"]
