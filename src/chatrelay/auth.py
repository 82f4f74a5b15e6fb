"""Supabase-backed identity resolution for API requests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from supabase import Client, create_client

from .config import Settings

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when an access token cannot be resolved to a user."""


class AuthNotConfiguredError(Exception):
    """Raised when the identity service lacks the credentials an operation needs."""


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


def _extract_user(response: Any) -> Any:
    user = getattr(response, "user", None)
    if user is None:
        data = getattr(response, "data", None)
        if isinstance(data, dict):
            user = data.get("user")
    return user


class SupabaseIdentityProvider:
    """Resolve bearer tokens and delete accounts through Supabase auth.

    The Supabase client is synchronous, so every call is pushed to a worker
    thread.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        service_role_key: str | None = None,
    ) -> None:
        self._url = url
        self._anon_key = anon_key
        self._service_role_key = service_role_key
        self._client: Client | None = None
        self._admin: Client | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseIdentityProvider | None":
        if settings.supabase_url is None or settings.supabase_anon_key is None:
            return None
        service_key = settings.supabase_service_role_key
        return cls(
            str(settings.supabase_url).rstrip("/"),
            settings.supabase_anon_key.get_secret_value(),
            service_key.get_secret_value() if service_key is not None else None,
        )

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = create_client(self._url, self._anon_key)
        return self._client

    def _get_admin(self) -> Client:
        if not self._service_role_key:
            raise AuthNotConfiguredError("Supabase service role key is not configured")
        if self._admin is None:
            self._admin = create_client(self._url, self._service_role_key)
        return self._admin

    async def get_user(self, token: str) -> AuthenticatedUser:
        client = self._get_client()
        try:
            response = await asyncio.to_thread(client.auth.get_user, token)
        except Exception as exc:
            logger.info("Token verification failed: %s", exc)
            raise AuthError("Invalid or expired token") from exc

        user = _extract_user(response)
        user_id = getattr(user, "id", None)
        if not user_id:
            raise AuthError("Invalid or expired token")
        return AuthenticatedUser(id=str(user_id), email=getattr(user, "email", None))

    async def delete_user(self, user_id: str) -> None:
        admin = self._get_admin()
        await asyncio.to_thread(admin.auth.admin.delete_user, user_id)
        logger.info("Deleted account %s", user_id)


def get_identity_provider(request: Request) -> SupabaseIdentityProvider:
    provider = getattr(request.app.state, "identity_provider", None)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured",
        )
    return provider


def _bearer_token(authorization: Optional[str]) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    provider: SupabaseIdentityProvider = Depends(get_identity_provider),
) -> AuthenticatedUser:
    """FastAPI dependency returning the caller identified by the bearer token."""

    token = _bearer_token(authorization)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return await provider.get_user(token)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


__all__ = [
    "AuthError",
    "AuthNotConfiguredError",
    "AuthenticatedUser",
    "SupabaseIdentityProvider",
    "get_current_user",
    "get_identity_provider",
]
