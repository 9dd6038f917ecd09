"""Shared Pydantic data models for the WhatsApp to Slack relay."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# --- Enums ---


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_CHALLENGE = "awaiting_challenge"
    READY = "ready"
    DEGRADED = "degraded"
    DISCONNECTED = "disconnected"


class SessionEventType(str, Enum):
    QR_CHALLENGE = "qrChallenge"
    READY = "ready"
    INCOMING_MESSAGE = "incomingMessage"
    DISCONNECTED = "disconnected"
    FAULT = "fault"


# --- Session Models ---


class Session(BaseModel):
    state: SessionState = SessionState.IDLE
    retry_count: int = Field(default=0, ge=0)
    last_fault: str | None = None
    disconnect_reason: str | None = None


class IncomingMessage(BaseModel):
    """Raw message event as pushed by the bridge."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    from_id: str = Field(alias="from")
    body: str = ""
    timestamp: int = 0  # epoch seconds
    author: str | None = None


class SessionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: SessionEventType
    challenge: str | None = None
    message: IncomingMessage | None = None
    reason: str | None = None


class LastMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    body: str = ""
    timestamp: int = 0


class ChatSummary(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = "Unknown"
    is_group: bool = Field(default=False, alias="isGroup")
    unread_count: int = Field(default=0, alias="unreadCount")
    last_message: LastMessage | None = Field(default=None, alias="lastMessage")

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, value: object) -> object:
        return value or "Unknown"

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class BridgeContact(BaseModel):
    pushname: str | None = None
    name: str | None = None

    @property
    def display_name(self) -> str | None:
        return self.pushname or self.name or None


class BridgeChat(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    is_group: bool = Field(default=False, alias="isGroup")


class BridgeMessageDetails(BaseModel):
    """Payload of the bridge's ``GET /messages/{id}/details``."""

    chat: BridgeChat | None = None
    contact: BridgeContact | None = None
    author: BridgeContact | None = None


# --- Relay Models ---


class MessageDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender_name: str
    sender_number: str
    message: str
    timestamp: datetime
    is_group: bool = False
    chat_name: str = "Unknown"


class DeliveryOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    details: MessageDetails
    error_reason: str | None = None


# --- Config Models ---


class RelayConfig(BaseModel):
    """Persisted relay configuration record."""

    model_config = ConfigDict(populate_by_name=True)

    selected_chats: list[str] = Field(default_factory=list, alias="selectedChats")
    slack_webhook_url: str = Field(default="", alias="slackWebhookUrl")
    server_port: int = Field(default=3000, alias="serverPort")
    last_updated: str | None = Field(default=None, alias="lastUpdated")

    @field_validator("selected_chats", "slack_webhook_url", "server_port", mode="before")
    @classmethod
    def _null_is_default(cls, value: object, info: ValidationInfo) -> object:
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value
