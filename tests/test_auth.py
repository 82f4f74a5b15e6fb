from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr

from chatrelay import auth
from chatrelay.auth import (
    AuthError,
    AuthNotConfiguredError,
    SupabaseIdentityProvider,
)
from chatrelay.config import Settings


@pytest.fixture
def supabase_client(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    client = MagicMock()
    created: list[tuple[str, str]] = []

    def fake_create_client(url: str, key: str) -> MagicMock:
        created.append((url, key))
        return client

    monkeypatch.setattr(auth, "create_client", fake_create_client)
    client.created = created
    return client


@pytest.mark.anyio
async def test_get_user_resolves_identity(supabase_client):
    supabase_client.auth.get_user.return_value = SimpleNamespace(
        user=SimpleNamespace(id="user-1", email="one@example.com")
    )
    provider = SupabaseIdentityProvider("https://sb.example.com", "anon")

    user = await provider.get_user("token")

    assert user.id == "user-1"
    assert user.email == "one@example.com"
    supabase_client.auth.get_user.assert_called_once_with("token")
    assert supabase_client.created == [("https://sb.example.com", "anon")]


@pytest.mark.anyio
async def test_get_user_rejects_unknown_token(supabase_client):
    supabase_client.auth.get_user.return_value = SimpleNamespace(user=None)
    provider = SupabaseIdentityProvider("https://sb.example.com", "anon")

    with pytest.raises(AuthError):
        await provider.get_user("token")


@pytest.mark.anyio
async def test_get_user_wraps_sdk_errors(supabase_client):
    supabase_client.auth.get_user.side_effect = RuntimeError("jwt expired")
    provider = SupabaseIdentityProvider("https://sb.example.com", "anon")

    with pytest.raises(AuthError):
        await provider.get_user("token")


@pytest.mark.anyio
async def test_delete_user_uses_service_role(supabase_client):
    provider = SupabaseIdentityProvider("https://sb.example.com", "anon", "service")

    await provider.delete_user("user-1")

    supabase_client.auth.admin.delete_user.assert_called_once_with("user-1")
    assert supabase_client.created == [("https://sb.example.com", "service")]


@pytest.mark.anyio
async def test_delete_user_requires_service_role(supabase_client):
    provider = SupabaseIdentityProvider("https://sb.example.com", "anon")

    with pytest.raises(AuthNotConfiguredError):
        await provider.delete_user("user-1")


def test_from_settings_requires_url_and_key():
    assert SupabaseIdentityProvider.from_settings(Settings(SUPABASE_URL=None)) is None

    settings = Settings(
        SUPABASE_URL="https://sb.example.com/",
        SUPABASE_ANON_KEY=SecretStr("anon"),
    )
    assert isinstance(SupabaseIdentityProvider.from_settings(settings), SupabaseIdentityProvider)


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("Bearer abc", "abc"),
        ("bearer  abc ", "abc"),
        ("Token abc", None),
        ("Bearer", None),
        (None, None),
    ],
)
def test_bearer_token_parsing(header, expected):
    assert auth._bearer_token(header) == expected
