"""Provider clients behind one uniform chat/embedding contract.

Every supported provider exposes an OpenAI-compatible surface, so a single
httpx-based client serves all of them; only the base URL differs.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

import httpx

from switchboard.core.error_types import ErrorKind
from switchboard.core.exceptions import ProviderError
from switchboard.core.models import ChatCompletion, ChatRequest, Embedding
from switchboard.core.providers import Provider
from switchboard.core.retry import classify_status

logger = logging.getLogger(__name__)


class ProviderClient(Protocol):
    provider: Provider

    async def chat(self, request: ChatRequest, api_key: str) -> ChatCompletion: ...

    async def embed(self, text: str, model: str, api_key: str) -> Embedding: ...

    async def aclose(self) -> None: ...


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if payload.get("message"):
            return str(payload["message"])
    return response.text[:500]


class OpenAICompatibleClient:
    """Client for OpenAI-compatible ``/chat/completions`` and ``/embeddings``."""

    def __init__(
        self,
        provider: Provider,
        base_url: str,
        timeout: float = 90,
        custom_headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"content-type": "application/json"}
        self.headers.update(custom_headers or {})
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

    async def chat(self, request: ChatRequest, api_key: str) -> ChatCompletion:
        body = {
            "model": request.model,
            "messages": list(request.messages),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        data = await self._post("/chat/completions", body, api_key)
        try:
            text = data["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError(
                ErrorKind.UNEXPECTED, self.provider, f"Malformed chat response: {e!r}"
            ) from e
        usage = data.get("usage") or {}
        return ChatCompletion(
            text=text,
            provider=self.provider,
            model=data.get("model") or request.model,
            tokens_in=int(usage.get("prompt_tokens") or 0),
            tokens_out=int(usage.get("completion_tokens") or 0),
        )

    async def embed(self, text: str, model: str, api_key: str) -> Embedding:
        data = await self._post("/embeddings", {"model": model, "input": text}, api_key)
        try:
            vector = tuple(float(v) for v in data["data"][0]["embedding"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError(
                ErrorKind.UNEXPECTED, self.provider, f"Malformed embedding response: {e!r}"
            ) from e
        usage = data.get("usage") or {}
        return Embedding(
            vector=vector,
            provider=self.provider,
            model=data.get("model") or model,
            tokens_in=int(usage.get("prompt_tokens") or 0),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _post(self, path: str, body: dict[str, Any], api_key: str) -> dict[str, Any]:
        start_time = time.time()
        logger.debug(f"📤 {self.provider.value.upper()} REQUEST | {path} | Model: {body.get('model')}")
        try:
            response = await self.client.post(
                f"{self.base_url}{path}",
                json=body,
                headers={**self.headers, "authorization": f"Bearer {api_key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderError.from_kind(
                ErrorKind.TIMEOUT, self.provider, f"Request timed out after {self.timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise ProviderError.from_kind(
                ErrorKind.TRANSIENT_SERVER, self.provider, f"Connection error: {e}"
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        if response.is_error:
            message = _error_message(response)
            kind = classify_status(response.status_code, response.text)
            logger.debug(
                f"📥 {self.provider.value.upper()} ERROR | HTTP {response.status_code} | "
                f"{duration_ms:.0f}ms | {message}"
            )
            raise ProviderError.from_kind(kind, self.provider, message, response.status_code)

        logger.debug(f"📥 {self.provider.value.upper()} RESPONSE | Duration: {duration_ms:.0f}ms")
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                ErrorKind.UNEXPECTED, self.provider, "Provider returned a non-JSON body"
            ) from e
        if not isinstance(data, dict):
            raise ProviderError(ErrorKind.UNEXPECTED, self.provider, "Provider returned a non-object body")
        return data
