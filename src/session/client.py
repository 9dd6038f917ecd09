"""Session client adapter for the WhatsApp Web bridge.

The bridge process owns the browser session. It pushes its events to
``POST /webhook/session`` on this service and accepts commands over HTTP.
This module turns both directions into a uniform adapter: a bounded event
queue plus ``start``, ``list_chats`` and ``resolve_message_details``.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from src.models import (
    BridgeChat,
    BridgeMessageDetails,
    ChatSummary,
    IncomingMessage,
    MessageDetails,
    SessionEvent,
    SessionEventType,
)

logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 1000
_REQUEST_TIMEOUT_SECONDS = 30.0
_START_TIMEOUT_SECONDS = 120.0
_DOMAIN_SUFFIXES = ("@c.us", "@g.us")

# Bridge event "type" -> adapter event kind
_BRIDGE_EVENT_TYPES = {
    "qr": SessionEventType.QR_CHALLENGE,
    "ready": SessionEventType.READY,
    "message": SessionEventType.INCOMING_MESSAGE,
    "disconnected": SessionEventType.DISCONNECTED,
    "error": SessionEventType.FAULT,
}


class SessionClientError(Exception):
    """Raised when a bridge command fails."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


class InvalidSessionEventError(Exception):
    """Raised when a bridge event payload cannot be parsed."""


class SessionClient(Protocol):
    """What the controller, dispatcher and relay engine need from a session."""

    events: asyncio.Queue[SessionEvent]

    async def start(self) -> None: ...

    async def list_chats(self) -> list[ChatSummary]: ...

    async def resolve_message_details(self, msg: IncomingMessage) -> MessageDetails: ...


def strip_domain(conversation_id: str) -> str:
    """Drop the ``@c.us`` / ``@g.us`` suffix from a conversation id."""
    for suffix in _DOMAIN_SUFFIXES:
        conversation_id = conversation_id.replace(suffix, "")
    return conversation_id


def _message_time(msg: IncomingMessage) -> datetime:
    if msg.timestamp > 0:
        return datetime.fromtimestamp(msg.timestamp, UTC)
    return datetime.now(UTC)


def fallback_details(msg: IncomingMessage) -> MessageDetails:
    """Best-effort details used when the bridge cannot resolve a message."""
    return MessageDetails(
        sender_name="Unknown",
        sender_number=strip_domain(msg.from_id),
        message=msg.body,
        timestamp=datetime.now(UTC),
        is_group=False,
        chat_name="Unknown",
    )


class BridgeSessionClient:
    """HTTP adapter for the WhatsApp Web bridge."""

    def __init__(
        self,
        bridge_url: str,
        secret: str = "",
        headless: bool = True,
        queue_size: int = _DEFAULT_QUEUE_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bridge_url = bridge_url.rstrip("/")
        self._secret = secret
        self._headless = headless
        self._transport = transport
        self.events: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=queue_size)

    # --- Inbound events ---

    def verify_signature(self, headers: dict[str, str], body: bytes) -> bool:
        """Verify the bridge's HMAC-SHA256 body signature.

        Always passes when no secret is configured.
        """
        if not self._secret:
            return True
        signature = headers.get("x-bridge-signature-256", "")
        if not signature.startswith("sha256="):
            return False

        expected = hmac.new(
            self._secret.encode(), body, hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(signature[7:], expected)

    def parse_event(self, payload: dict[str, Any]) -> SessionEvent:
        """Translate a bridge event payload into a ``SessionEvent``."""
        kind = _BRIDGE_EVENT_TYPES.get(str(payload.get("type", "")))
        if kind is None:
            raise InvalidSessionEventError(f"Unknown event type: {payload.get('type')!r}")

        if kind == SessionEventType.QR_CHALLENGE:
            return SessionEvent(type=kind, challenge=str(payload.get("qr", "")))
        if kind == SessionEventType.INCOMING_MESSAGE:
            raw = payload.get("message")
            if not isinstance(raw, dict):
                raise InvalidSessionEventError("Message event without message body")
            try:
                message = IncomingMessage.model_validate(raw)
            except ValidationError as e:
                raise InvalidSessionEventError(str(e)) from e
            return SessionEvent(type=kind, message=message)
        if kind == SessionEventType.DISCONNECTED:
            return SessionEvent(type=kind, reason=str(payload.get("reason", "unknown")))
        if kind == SessionEventType.FAULT:
            return SessionEvent(type=kind, reason=str(payload.get("error", "unknown error")))
        return SessionEvent(type=kind)

    def publish(self, event: SessionEvent) -> None:
        """Queue an event for the dispatcher. Raises ``asyncio.QueueFull``."""
        self.events.put_nowait(event)

    # --- Commands ---

    def _client(self, timeout: float = _REQUEST_TIMEOUT_SECONDS) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._bridge_url, transport=self._transport, timeout=timeout,
        )

    async def start(self) -> None:
        """Ask the bridge to launch (or relaunch) the WhatsApp session."""
        logger.info("Starting WhatsApp session (headless=%s)", self._headless)
        try:
            async with self._client(_START_TIMEOUT_SECONDS) as client:
                resp = await client.post(
                    "/session/start", json={"headless": self._headless},
                )
        except httpx.HTTPError as e:
            raise SessionClientError("start", str(e) or type(e).__name__) from e
        if resp.status_code >= 400:
            raise SessionClientError("start", f"bridge returned HTTP {resp.status_code}")

    async def list_chats(self) -> list[ChatSummary]:
        try:
            async with self._client() as client:
                resp = await client.get("/chats")
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SessionClientError("list_chats", str(e) or type(e).__name__) from e

        chats = data.get("chats", []) if isinstance(data, dict) else data
        try:
            return [ChatSummary.model_validate(c) for c in chats]
        except ValidationError as e:
            raise SessionClientError("list_chats", str(e)) from e

    async def resolve_message_details(self, msg: IncomingMessage) -> MessageDetails:
        """Resolve sender and chat metadata; never raises."""
        if not msg.id:
            logger.warning("Message from %s has no id, using defaults", msg.from_id)
            return fallback_details(msg)

        try:
            async with self._client() as client:
                resp = await client.get(f"/messages/{msg.id}/details")
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error getting message details for %s: %s", msg.id, e)
            return fallback_details(msg)

        try:
            payload = BridgeMessageDetails.model_validate(data)
        except ValidationError as e:
            logger.error("Unexpected message details payload for %s: %s", msg.id, e)
            return fallback_details(msg)
        return self._build_details(msg, payload)

    def _build_details(
        self, msg: IncomingMessage, payload: BridgeMessageDetails,
    ) -> MessageDetails:
        chat = payload.chat or BridgeChat()
        is_group = chat.is_group
        chat_name = chat.name or "Unknown"

        if is_group:
            sender_name = f"{chat_name} (Group)"
            if msg.author:
                author = (payload.author and payload.author.display_name) or msg.author
                sender_name += f"\n👤 From: {author}"
        else:
            sender_name = (payload.contact and payload.contact.display_name) or "Unknown Contact"

        return MessageDetails(
            sender_name=sender_name,
            sender_number=strip_domain(msg.from_id),
            message=msg.body,
            timestamp=_message_time(msg),
            is_group=is_group,
            chat_name=chat_name,
        )
