"""Unit tests for the OpenAI-compatible provider client using RESPX."""

import json

import httpx
import pytest
import pytest_asyncio

from switchboard.core.error_types import ErrorKind
from switchboard.core.exceptions import PermanentRequestError, ProviderError, TransientProviderError
from switchboard.core.models import ChatRequest
from switchboard.core.provider_client import OpenAICompatibleClient
from switchboard.core.providers import Provider
from tests.fixtures.mock_http import create_openai_error

CHAT_PATH = "/v1/chat/completions"


def _request() -> ChatRequest:
    return ChatRequest(
        provider=Provider.OPENAI,
        model="gpt-4",
        messages=({"role": "user", "content": "Hello"},),
        temperature=0.2,
        max_tokens=50,
    )


@pytest_asyncio.fixture
async def client():
    async with httpx.AsyncClient() as http_client:
        yield OpenAICompatibleClient(Provider.OPENAI, "https://api.openai.com/v1", http_client=http_client)


@pytest.mark.unit
@pytest.mark.asyncio
class TestChat:
    async def test_parses_completion(self, client, mock_openai_api, openai_chat_completion):
        route = mock_openai_api.post(CHAT_PATH).mock(
            return_value=httpx.Response(200, json=openai_chat_completion)
        )

        result = await client.chat(_request(), "sk-test-key")

        assert result.text == "Hello! How can I help you today?"
        assert result.provider is Provider.OPENAI
        assert result.model == "gpt-4"
        assert (result.tokens_in, result.tokens_out) == (10, 15)
        assert result.kind == "chat"

        sent = route.calls.last.request
        assert sent.headers["authorization"] == "Bearer sk-test-key"
        body = json.loads(sent.content)
        assert body["max_tokens"] == 50
        assert body["messages"] == [{"role": "user", "content": "Hello"}]

    async def test_rate_limit_is_transient(self, client, mock_openai_api):
        mock_openai_api.post(CHAT_PATH).mock(
            return_value=httpx.Response(429, json=create_openai_error("rate_limit_error", "Slow down"))
        )
        with pytest.raises(TransientProviderError) as exc_info:
            await client.chat(_request(), "sk-test-key")
        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "Slow down"

    async def test_server_error_is_transient(self, client, mock_openai_api):
        mock_openai_api.post(CHAT_PATH).mock(return_value=httpx.Response(502, text="Bad gateway"))
        with pytest.raises(TransientProviderError) as exc_info:
            await client.chat(_request(), "sk-test-key")
        assert exc_info.value.kind is ErrorKind.TRANSIENT_SERVER
        assert exc_info.value.retryable

    async def test_auth_error_is_permanent(self, client, mock_openai_api):
        mock_openai_api.post(CHAT_PATH).mock(
            return_value=httpx.Response(401, json=create_openai_error("invalid_api_key", "Bad key"))
        )
        with pytest.raises(PermanentRequestError) as exc_info:
            await client.chat(_request(), "sk-test-key")
        assert exc_info.value.kind is ErrorKind.AUTH_ERROR

    async def test_content_policy_refusal(self, client, mock_openai_api):
        mock_openai_api.post(CHAT_PATH).mock(
            return_value=httpx.Response(
                400,
                json=create_openai_error(
                    "invalid_request_error", "Refused", code="content_policy_violation"
                ),
            )
        )
        with pytest.raises(PermanentRequestError) as exc_info:
            await client.chat(_request(), "sk-test-key")
        assert exc_info.value.kind is ErrorKind.CONTENT_POLICY

    async def test_timeout(self, client, mock_openai_api):
        mock_openai_api.post(CHAT_PATH).mock(side_effect=httpx.ReadTimeout("timed out"))
        with pytest.raises(TransientProviderError) as exc_info:
            await client.chat(_request(), "sk-test-key")
        assert exc_info.value.kind is ErrorKind.TIMEOUT

    async def test_connection_error(self, client, mock_openai_api):
        mock_openai_api.post(CHAT_PATH).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(TransientProviderError) as exc_info:
            await client.chat(_request(), "sk-test-key")
        assert exc_info.value.kind is ErrorKind.TRANSIENT_SERVER

    async def test_malformed_body(self, client, mock_openai_api):
        mock_openai_api.post(CHAT_PATH).mock(return_value=httpx.Response(200, json={"choices": []}))
        with pytest.raises(ProviderError) as exc_info:
            await client.chat(_request(), "sk-test-key")
        assert exc_info.value.kind is ErrorKind.UNEXPECTED

    async def test_non_json_body(self, client, mock_openai_api):
        mock_openai_api.post(CHAT_PATH).mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(ProviderError) as exc_info:
            await client.chat(_request(), "sk-test-key")
        assert exc_info.value.kind is ErrorKind.UNEXPECTED


@pytest.mark.unit
@pytest.mark.asyncio
class TestEmbed:
    async def test_parses_embedding(self, client, mock_openai_api, openai_embedding_response):
        route = mock_openai_api.post("/v1/embeddings").mock(
            return_value=httpx.Response(200, json=openai_embedding_response)
        )

        result = await client.embed("hello", "text-embedding-3-small", "sk-test-key")

        assert result.vector == (0.1, -0.2, 0.3)
        assert result.tokens_in == 4
        assert result.kind == "embedding"
        body = json.loads(route.calls.last.request.content)
        assert body == {"model": "text-embedding-3-small", "input": "hello"}

    async def test_malformed_embedding(self, client, mock_openai_api):
        mock_openai_api.post("/v1/embeddings").mock(return_value=httpx.Response(200, json={"data": []}))
        with pytest.raises(ProviderError) as exc_info:
            await client.embed("hello", "text-embedding-3-small", "sk-test-key")
        assert exc_info.value.kind is ErrorKind.UNEXPECTED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open():
    async with httpx.AsyncClient() as http_client:
        client = OpenAICompatibleClient(Provider.OPENAI, "https://api.openai.com/v1/", http_client=http_client)
        await client.aclose()
        assert not http_client.is_closed
        assert client.base_url == "https://api.openai.com/v1"
