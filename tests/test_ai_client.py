# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
AI client tests against a mocked HTTP transport.
"""

import json

import httpx
import pytest

from agentflow.engine.models import AIModel
from agentflow.nodes.ai_client import (
    AIClient,
    AIProviderError,
    estimate_tokens,
    is_azure_config,
    parse_azure_key,
)

MESSAGES = [{"role": "user", "content": "hi"}]


def completion(content="reply"):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def make_client(handler):
    """AIClient whose requests are answered by handler and captured"""
    requests = []

    def capture(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = AIClient(client=httpx.AsyncClient(transport=httpx.MockTransport(capture)), site_url="https://app.test")
    return client, requests


@pytest.mark.asyncio
async def test_standard_call():
    """OpenAI-compatible endpoint with bearer auth"""
    client, requests = make_client(lambda request: httpx.Response(200, json=completion("hello")))
    model = AIModel(name="gpt", model_id="gpt-4o-mini", api_endpoint="https://api.example.com/v1/", api_key="sk-1")

    reply = await client.call(model, MESSAGES, {"temperature": 0.3, "max_tokens": 150})

    assert reply == "hello"
    request = requests[0]
    assert str(request.url) == "https://api.example.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-1"
    assert "X-Title" not in request.headers
    body = json.loads(request.content)
    assert body == {"model": "gpt-4o-mini", "messages": MESSAGES, "temperature": 0.3, "max_tokens": 150, "stream": False}
    await client.close()


@pytest.mark.asyncio
async def test_default_options():
    client, requests = make_client(lambda request: httpx.Response(200, json=completion()))
    model = AIModel(name="plain", api_endpoint="https://api.example.com/v1/chat/completions")

    await client.call(model, MESSAGES)

    body = json.loads(requests[0].content)
    assert body["model"] == "plain"
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 2000
    assert str(requests[0].url) == "https://api.example.com/v1/chat/completions"


@pytest.mark.asyncio
async def test_openrouter_headers():
    """OpenRouter requests identify the calling site"""
    client, requests = make_client(lambda request: httpx.Response(200, json=completion()))
    model = AIModel(name="router", api_endpoint="https://openrouter.ai/api/v1", api_key="k")

    await client.call(model, MESSAGES)

    assert requests[0].headers["HTTP-Referer"] == "https://app.test"
    assert requests[0].headers["X-Title"] == "agentflow"


@pytest.mark.asyncio
async def test_azure_call_from_composite_key():
    """Deployment URL, api-version param and api-key header"""
    client, requests = make_client(lambda request: httpx.Response(200, json=completion("azure reply")))
    model = AIModel(name="openai/gpt-4o", api_key="secret|https://res.openai.azure.com/|2024-02-01")

    reply = await client.call(model, MESSAGES)

    assert reply == "azure reply"
    request = requests[0]
    assert request.url.path == "/openai/deployments/gpt-4o/chat/completions"
    assert request.url.params["api-version"] == "2024-02-01"
    assert request.headers["api-key"] == "secret"
    assert "model" not in json.loads(request.content)


@pytest.mark.asyncio
async def test_azure_requires_credentials():
    client, requests = make_client(lambda request: httpx.Response(200, json=completion()))
    model = AIModel(name="az", provider="azure", api_key="only-key")

    with pytest.raises(AIProviderError):
        await client.call(model, MESSAGES)
    assert requests == []


@pytest.mark.asyncio
async def test_http_error_wrapped():
    """Provider HTTP errors surface as AIProviderError"""
    client, _ = make_client(lambda request: httpx.Response(429, json={"error": "rate limited"}))
    model = AIModel(name="gpt", api_endpoint="https://api.example.com/v1")

    with pytest.raises(AIProviderError) as exc_info:
        await client.call(model, MESSAGES)

    assert exc_info.value.status_code == 502
    assert exc_info.value.details == {"status": 429}


@pytest.mark.asyncio
async def test_transport_error_wrapped():
    def fail(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = make_client(fail)
    with pytest.raises(AIProviderError) as exc_info:
        await client.call(AIModel(name="gpt", api_endpoint="https://api.example.com/v1"), MESSAGES)
    assert "connection refused" in exc_info.value.message


@pytest.mark.asyncio
async def test_malformed_response():
    client, _ = make_client(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(AIProviderError) as exc_info:
        await client.call(AIModel(name="gpt", api_endpoint="https://api.example.com/v1"), MESSAGES)
    assert exc_info.value.message == "Unexpected response format from model provider"


@pytest.mark.asyncio
async def test_missing_endpoint():
    client, requests = make_client(lambda request: httpx.Response(200, json=completion()))
    with pytest.raises(AIProviderError):
        await client.call(AIModel(name="gpt"), MESSAGES)
    assert requests == []


def test_azure_detection():
    assert is_azure_config(AIModel(name="a", provider="azure-openai"))
    assert is_azure_config(AIModel(name="a", api_key="k|https://x|v"))
    assert is_azure_config(AIModel(name="a", api_endpoint="use-from-key"))
    assert not is_azure_config(AIModel(name="a", api_endpoint="https://api.example.com", api_key="k"))


def test_parse_azure_key():
    assert parse_azure_key(" k | https://x | v1 ") == {"api_key": "k", "endpoint": "https://x", "api_version": "v1"}
    assert parse_azure_key("k|x") is None
    assert parse_azure_key(None) is None


def test_estimate_tokens():
    """CJK characters weigh more than other characters"""
    assert estimate_tokens("") == 0
    assert estimate_tokens(None) == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("你好") == 2
