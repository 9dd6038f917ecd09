"""Realtime fan-out of relay events to dashboard observers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from src.models import ChatSummary
    from src.selection.store import SelectionStore

logger = logging.getLogger(__name__)

# Server -> observer event names
EVENT_QR = "qr"
EVENT_READY = "ready"
EVENT_SELECTED_CHATS = "selectedChats"
EVENT_MESSAGE_FORWARDED = "messageForwarded"
EVENT_DISCONNECTED = "whatsappDisconnected"
EVENT_ERROR = "whatsappError"
EVENT_COMMAND_ERROR = "error"

# Observer -> server commands
COMMAND_SELECT = "selectChat"
COMMAND_DESELECT = "deselectChat"


class Observer(Protocol):
    async def send_json(self, data: Any) -> None: ...


class Broadcaster(Protocol):
    async def broadcast(self, event: str, payload: Any) -> None: ...


def ready_payload(chats: list[ChatSummary]) -> dict[str, Any]:
    return {"chats": [c.to_wire() for c in chats]}


class EventFanout:
    """Delivers events to every connected observer; no replay for late joiners."""

    def __init__(self, store: SelectionStore) -> None:
        self._store = store
        self._observers: list[Observer] = []

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    async def connect(
        self, observer: Observer, chats: list[ChatSummary] | None = None,
    ) -> None:
        """Register an observer and send it the current-state snapshot.

        ``chats`` is given only when the session is ready.
        """
        self._observers.append(observer)
        logger.info("Observer connected (total=%d)", len(self._observers))
        try:
            if chats is not None:
                await observer.send_json(_frame(EVENT_READY, ready_payload(chats)))
            await observer.send_json(_frame(EVENT_SELECTED_CHATS, self._store.all()))
        except Exception:
            logger.warning("Failed to send snapshot, dropping observer")
            self.disconnect(observer)

    def disconnect(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)
            logger.info("Observer disconnected (total=%d)", len(self._observers))

    async def broadcast(self, event: str, payload: Any) -> None:
        frame = _frame(event, payload)
        dead: list[Observer] = []
        for observer in list(self._observers):
            try:
                await observer.send_json(frame)
            except Exception:
                logger.warning("Broadcast of %s failed for an observer, dropping it", event)
                dead.append(observer)
        for observer in dead:
            self.disconnect(observer)

    async def broadcast_selection(self) -> None:
        await self.broadcast(EVENT_SELECTED_CHATS, self._store.all())

    async def handle_command(self, observer: Observer, frame: Any) -> None:
        """Apply an observer command to the selection store."""
        if not isinstance(frame, dict):
            await self._reply_error(observer, "Malformed command")
            return

        command = frame.get("event")
        chat_id = frame.get("data")
        if command not in (COMMAND_SELECT, COMMAND_DESELECT):
            await self._reply_error(observer, f"Unknown command: {command}")
            return

        verb = "select" if command == COMMAND_SELECT else "deselect"
        if not isinstance(chat_id, str) or not chat_id:
            await self._reply_error(observer, f"Failed to {verb} chat")
            return

        try:
            if command == COMMAND_SELECT:
                self._store.add(chat_id)
            else:
                self._store.remove(chat_id)
        except Exception:
            logger.exception("Error handling %s for %s", command, chat_id)
            await self._reply_error(observer, f"Failed to {verb} chat")
            return

        await self.broadcast_selection()

    async def _reply_error(self, observer: Observer, message: str) -> None:
        try:
            await observer.send_json(_frame(EVENT_COMMAND_ERROR, message))
        except Exception:
            logger.warning("Failed to send error reply, dropping observer")
            self.disconnect(observer)


def _frame(event: str, payload: Any) -> dict[str, Any]:
    return {"event": event, "data": payload}
