"""
HTTP tests for the voice provider webhook endpoint.
"""

import hashlib
import hmac
import json
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vetcall.main import create_app
from vetcall.shared.database import get_db_session
from vetcall.tools.registry import ToolContext, ToolRegistry
from vetcall.webhooks.dispatcher import WebhookDispatcher
from vetcall.webhooks.router import verify_signature


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    registry = ToolRegistry()

    @registry.tool("get_clinic_hours")
    async def hours(params: dict[str, Any], context: ToolContext) -> str:
        return "Open 8-5"

    app = create_app()
    app.state.webhook_dispatcher = WebhookDispatcher(registry)

    async def _override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _override_get_db_session
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


TOOL_CALLS = {
    "message": {
        "type": "tool-calls",
        "call": {"id": "call-1"},
        "toolCallList": [{"id": "tc-1", "function": {"name": "get_clinic_hours", "arguments": "{}"}}],
    }
}


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestVerifySignature:
    def test_valid(self) -> None:
        assert verify_signature(b"{}", sign(b"{}", "s3cret"), "s3cret") is True

    def test_invalid_or_missing(self) -> None:
        assert verify_signature(b"{}", "deadbeef", "s3cret") is False
        assert verify_signature(b"{}", None, "s3cret") is False


class TestWebhookEndpoint:
    @pytest.mark.asyncio
    async def test_tool_calls_round_trip(self, client: AsyncClient) -> None:
        response = await client.post("/webhooks/vapi", json=TOOL_CALLS)

        assert response.status_code == 200
        assert response.json() == {"results": [{"toolCallId": "tc-1", "result": "\"Open 8-5\""}]}
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient) -> None:
        response = await client.post("/webhooks/vapi", json=TOOL_CALLS, headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, client: AsyncClient) -> None:
        response = await client.post(
            "/webhooks/vapi",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid payload"}

    @pytest.mark.asyncio
    async def test_missing_type(self, client: AsyncClient) -> None:
        response = await client.post("/webhooks/vapi", json={"message": {"call": {"id": "c"}}})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_async_type_acknowledged(self, client: AsyncClient) -> None:
        response = await client.post(
            "/webhooks/vapi",
            json={"message": {"type": "status-update", "status": "ringing", "call": {"id": "vapi-unknown"}}},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Webhook processed"}

    @pytest.mark.asyncio
    async def test_malformed_async_type_acknowledged(self, client: AsyncClient) -> None:
        response = await client.post(
            "/webhooks/vapi",
            json={"message": {"type": "end-of-call-report", "call": {"id": 12345}}},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Unhandled message type: end-of-call-report"}

    @pytest.mark.asyncio
    async def test_signature_enforced_when_secret_configured(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("VAPI_WEBHOOK_SECRET", "s3cret")
        body = json.dumps(TOOL_CALLS).encode()

        rejected = await client.post(
            "/webhooks/vapi",
            content=body,
            headers={"Content-Type": "application/json", "x-vapi-signature": "bogus"},
        )
        accepted = await client.post(
            "/webhooks/vapi",
            content=body,
            headers={"Content-Type": "application/json", "x-vapi-signature": sign(body, "s3cret")},
        )

        assert rejected.status_code == 401
        assert rejected.json() == {"error": "Invalid signature"}
        assert accepted.status_code == 200

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.json() == {"status": "healthy"}
