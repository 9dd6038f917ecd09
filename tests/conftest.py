"""Shared test fixtures for the WhatsApp to Slack relay."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from src.models import ChatSummary, IncomingMessage, MessageDetails, SessionEvent
from src.relay.delivery import SlackDeliveryService
from src.selection.repository import ConfigRepository
from src.selection.store import SelectionStore
from src.server.app import create_app
from src.session.client import BridgeSessionClient
from src.session.controller import RetryPolicy


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host environment out of config defaults."""
    for name in ("SLACK_WEBHOOK_URL", "PORT", "CONFIG_PATH", "BRIDGE_SECRET"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "config.json"


@pytest.fixture
def store(config_path: Path) -> SelectionStore:
    return SelectionStore(ConfigRepository(str(config_path)))


class RecordingBroadcaster:
    """Collects broadcasts as (event, payload) tuples."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    async def broadcast(self, event: str, payload: Any) -> None:
        self.events.append((event, payload))

    def named(self, event: str) -> list[Any]:
        return [payload for name, payload in self.events if name == event]


class RecordingObserver:
    """Observer double that stores every frame it is sent."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[Any] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.frames.append(data)

    def named(self, event: str) -> list[Any]:
        return [f["data"] for f in self.frames if f["event"] == event]


class FakeSessionClient:
    """In-memory session adapter with scripted command results."""

    def __init__(
        self,
        start_errors: list[Exception] | None = None,
        chats: list[ChatSummary] | None = None,
        details: MessageDetails | None = None,
    ) -> None:
        self.events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self.start_errors = list(start_errors or [])
        self.chats = chats or []
        self.details = details
        self.start_calls = 0
        self.list_calls = 0
        self.resolved: list[IncomingMessage] = []

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_errors:
            raise self.start_errors.pop(0)

    async def list_chats(self) -> list[ChatSummary]:
        self.list_calls += 1
        return list(self.chats)

    async def resolve_message_details(self, msg: IncomingMessage) -> MessageDetails:
        self.resolved.append(msg)
        return self.details or make_message_details(
            sender_number=msg.from_id.split("@")[0], message=msg.body,
        )


class BridgeStub:
    """httpx MockTransport handler standing in for the bridge and Slack."""

    def __init__(
        self,
        chats: list[dict[str, Any]] | None = None,
        details: dict[str, Any] | None = None,
        slack_status: int = 200,
    ) -> None:
        self.chats = chats or []
        self.details = details or {
            "chat": {"name": "Alice", "isGroup": False},
            "contact": {"pushname": "Alice"},
        }
        self.slack_status = slack_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/session/start":
            return httpx.Response(200, json={"ok": True})
        if path == "/chats":
            return httpx.Response(200, json={"chats": self.chats})
        if path.startswith("/messages/"):
            return httpx.Response(200, json=self.details)
        if path.startswith("/services/"):
            return httpx.Response(self.slack_status, text="ok")
        return httpx.Response(404)

    def slack_payloads(self) -> list[Any]:
        return [
            json.loads(r.content) for r in self.requests
            if r.url.path.startswith("/services/")
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def make_relay_app(
    store: SelectionStore,
    stub: BridgeStub | None = None,
    secret: str = "",
    **kwargs: Any,
) -> FastAPI:
    """Build the relay app against a stubbed bridge and Slack endpoint."""
    stub = stub or BridgeStub()
    client = BridgeSessionClient(
        "http://bridge.test", secret=secret, transport=stub.transport(),
    )
    delivery = SlackDeliveryService(store, transport=stub.transport())
    kwargs.setdefault("autostart", False)
    kwargs.setdefault("policy", RetryPolicy(max_attempts=3, delay_seconds=0))
    return create_app(client, store, delivery, **kwargs)


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


# --- Factory functions for test data ---


def make_incoming_message(**kwargs: Any) -> IncomingMessage:
    defaults: dict[str, Any] = {
        "id": "msg-1",
        "from_id": "111@c.us",
        "body": "hello",
        "timestamp": 1700000000,
    }
    defaults.update(kwargs)
    return IncomingMessage(**defaults)


def make_message_details(**kwargs: Any) -> MessageDetails:
    defaults: dict[str, Any] = {
        "sender_name": "Alice",
        "sender_number": "111",
        "message": "hello",
        "timestamp": datetime(2026, 1, 1, 12, 0, tzinfo=UTC),
        "is_group": False,
        "chat_name": "Alice",
    }
    defaults.update(kwargs)
    return MessageDetails(**defaults)


def make_chat(**kwargs: Any) -> ChatSummary:
    defaults: dict[str, Any] = {
        "id": "111@c.us",
        "name": "Alice",
        "is_group": False,
        "unread_count": 0,
    }
    defaults.update(kwargs)
    return ChatSummary(**defaults)
