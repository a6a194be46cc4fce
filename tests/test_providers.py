"""Tests for the provider directory."""

from __future__ import annotations

import pytest

from threadline.transport import detect_provider, get_provider, get_provider_configs


@pytest.mark.parametrize(
    ("address", "expected"),
    [
        ("someone@gmail.com", "gmail"),
        ("someone@Hotmail.com", "outlook"),
        ("someone@live.com", "outlook"),
        ("someone@qq.com", "qq"),
        ("someone@163.com", "163"),
        ("someone@me.com", "icloud"),
    ],
)
def test_detect_provider_by_domain(address: str, expected: str) -> None:
    provider = detect_provider(address)

    assert provider is not None
    assert provider.name == expected


@pytest.mark.parametrize("address", ["someone@example.org", "not-an-address", "trailing@"])
def test_detect_provider_unknown(address: str) -> None:
    assert detect_provider(address) is None


def test_provider_directory_entries() -> None:
    names = [provider.name for provider in get_provider_configs()]
    gmail = get_provider("gmail")

    assert names == ["gmail", "outlook", "qq", "163", "126", "icloud"]
    assert gmail is not None
    assert gmail.imap.host == "imap.gmail.com"
    assert gmail.imap.port == 993
    assert gmail.oauth_supported is True
    assert get_provider("qq").oauth_supported is False  # type: ignore[union-attr]
    assert get_provider("aol") is None
