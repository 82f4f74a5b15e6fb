"""OpenAI streaming client utilities."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator, Iterable

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class OpenAIError(Exception):
    """Wrap transport or API failures when communicating with OpenAI."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class OpenAIClient:
    """Client for chat completions and image generation.

    Each instance owns its HTTP connection pool. An ``httpx.AsyncClient`` can
    be injected (for example one built on ``httpx.MockTransport``) in which
    case the caller keeps ownership of it.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
            limits = httpx.Limits(
                max_connections=50,
                max_keepalive_connections=20,
            )
            self._http_client = httpx.AsyncClient(
                timeout=timeout,
                limits=limits,
                http2=True,
            )
        return self._http_client

    @property
    def is_configured(self) -> bool:
        key = self._settings.openai_api_key
        return key is not None and bool(key.get_secret_value().strip())

    @property
    def _headers(self) -> dict[str, str]:
        key = self._settings.openai_api_key
        if key is None:
            raise OpenAIError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "OpenAI API key is not configured",
            )
        return {
            "Authorization": f"Bearer {key.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def _json_headers(self) -> dict[str, str]:
        headers = dict(self._headers)
        headers["Accept"] = "application/json"
        return headers

    @property
    def _base_url(self) -> str:
        """Return the API base URL without a trailing slash."""

        return str(self._settings.openai_base_url).rstrip("/")

    async def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[dict[str, str], None]:
        """Stream a chat completion as ``{"data": ...}`` dictionaries, one per event."""

        url = f"{self._base_url}/chat/completions"
        body = dict(payload)
        body["stream"] = True

        client = self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=self._headers,
                json=body,
            ) as response:
                if response.status_code >= 400:
                    raw = await response.aread()
                    raise OpenAIError(
                        response.status_code, self._extract_error_detail(raw)
                    )

                async for data in self._iter_data(response):
                    yield {"data": data}
        except httpx.HTTPError as exc:
            raise OpenAIError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def create_chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Request a complete (non-streaming) chat completion."""

        body = dict(payload)
        body["stream"] = False
        return await self._post_json("/chat/completions", body)

    async def generate_image(
        self, prompt: str, *, size: str | None = None
    ) -> str:
        """Generate one image and return it as a URL or base64 data URL."""

        body: dict[str, Any] = {
            "model": self._settings.image_model,
            "prompt": prompt,
            "n": 1,
        }
        if size:
            body["size"] = size
        response = await self._post_json("/images/generations", body)

        items = response.get("data")
        if not isinstance(items, list) or not items or not isinstance(items[0], dict):
            raise OpenAIError(
                status.HTTP_502_BAD_GATEWAY, "Image response missing data"
            )
        item = items[0]
        encoded = item.get("b64_json")
        if isinstance(encoded, str) and encoded:
            return f"data:image/png;base64,{encoded}"
        url = item.get("url")
        if isinstance(url, str) and url:
            return url
        raise OpenAIError(status.HTTP_502_BAD_GATEWAY, "Image response missing image")

    async def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        client = self._get_http_client()
        try:
            response = await client.post(
                f"{self._base_url}{path}",
                headers=self._json_headers(),
                json=body,
            )
        except httpx.HTTPError as exc:
            raise OpenAIError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise OpenAIError(response.status_code, detail)

        try:
            return response.json()
        except ValueError as exc:  # pragma: no cover - unexpected payload
            raise OpenAIError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _iter_data(self, response: httpx.Response) -> AsyncGenerator[str, None]:
        """Yield the ``data`` field of each SSE event, skipping comments and other fields."""

        data_lines: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if data_lines:
                    yield self._join_data(data_lines)
                    data_lines.clear()
                continue
            if line.startswith("data:"):
                data_lines.append(line)
        if data_lines:
            yield self._join_data(data_lines)

    @staticmethod
    def _join_data(lines: Iterable[str]) -> str:
        return "\n".join(line[len("data:"):].lstrip(" ") for line in lines)

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "OpenAI returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
            return error or payload
        return payload


__all__ = ["OpenAIClient", "OpenAIError"]
