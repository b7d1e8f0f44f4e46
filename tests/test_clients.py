"""Tests for the webhook and LLM gateway HTTP clients."""

import asyncio
import json
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nesora.clients.ai_gateway_client import AIGatewayClient, AIGatewayError
from nesora.clients.workflow_client import WorkflowClient, WorkflowHTTPError


def _workflow_client(handler):
    return WorkflowClient(timeout=2.0, transport=httpx.MockTransport(handler))


def test_post_sends_json_and_returns_body():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"json": {"ok": True}}])

    async def scenario():
        async with _workflow_client(handler) as client:
            return await client.post("http://n8n.test/webhook/mcp/fetch", {"user_id": "u"})

    body = asyncio.run(scenario())

    assert body == [{"json": {"ok": True}}]
    assert seen["url"] == "http://n8n.test/webhook/mcp/fetch"
    assert seen["body"] == {"user_id": "u"}


def test_non_2xx_raises_with_status_and_body():
    def handler(request):
        return httpx.Response(404, text="workflow not active")

    async def scenario():
        async with _workflow_client(handler) as client:
            await client.post("http://n8n.test/webhook/mcp/delete", {})

    with pytest.raises(WorkflowHTTPError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.status_code == 404
    assert exc_info.value.body == "workflow not active"
    assert str(exc_info.value) == "HTTP 404: Not Found - workflow not active"


def test_parse_and_connect_payloads():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"status": "ok"})

    async def scenario():
        async with _workflow_client(handler) as client:
            await client.parse("http://n8n.test/p", "u1", "close my bugs", {"project_key": "NT"}, "acme")
            await client.connect("http://n8n.test/c", "u1", "acme", "a@b.c", "tok")

    asyncio.run(scenario())

    assert bodies[0] == {
        "user_id": "u1",
        "query": "close my bugs",
        "context": {"project_key": "NT"},
        "jira_domain": "acme",
    }
    assert bodies[1] == {
        "user_id": "u1",
        "jira_domain": "acme",
        "jira_email": "a@b.c",
        "jira_token": "tok",
    }


def test_gateway_returns_first_choice():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "{\"message\": \"hi\"}"}}]})

    async def scenario():
        client = AIGatewayClient(
            url="http://gateway.test/v1/chat/completions",
            api_key="secret",
            model="test-model",
            transport=httpx.MockTransport(handler),
        )
        async with client:
            return await client.complete("system", [{"role": "user", "content": "hello"}])

    content = asyncio.run(scenario())

    assert content == "{\"message\": \"hi\"}"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "system"}
    assert seen["body"]["messages"][1] == {"role": "user", "content": "hello"}


def test_gateway_error_carries_status():
    def handler(request):
        return httpx.Response(429, text="slow down")

    async def scenario():
        client = AIGatewayClient("http://gateway.test", "k", "m", transport=httpx.MockTransport(handler))
        async with client:
            await client.complete("system", [])

    with pytest.raises(AIGatewayError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.status_code == 429


@pytest.mark.parametrize("body", [
    [],
    {"choices": []},
    {"choices": [None]},
    {"choices": [{"message": None}]},
    {"choices": [{"message": {"content": None}}]},
])
def test_gateway_degrades_to_empty_content(body):
    def handler(request):
        return httpx.Response(200, json=body)

    async def scenario():
        client = AIGatewayClient("http://gateway.test", "k", "m", transport=httpx.MockTransport(handler))
        async with client:
            return await client.complete("system", [])

    assert asyncio.run(scenario()) == ""


def test_gateway_client_is_created_lazily_and_closed():
    def handler(request):
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    async def scenario():
        client = AIGatewayClient("http://gateway.test", "k", "m", transport=httpx.MockTransport(handler))
        content = await client.complete("system", [])
        opened = client.client is not None
        await client.aclose()
        return content, opened, client.client

    content, opened, after_close = asyncio.run(scenario())

    assert content == "ok"
    assert opened
    assert after_close is None
