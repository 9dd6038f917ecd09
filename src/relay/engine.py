"""Relay decision engine: filter, resolve, deliver, report."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from src.realtime.fanout import EVENT_MESSAGE_FORWARDED

if TYPE_CHECKING:
    from src.models import DeliveryOutcome, IncomingMessage
    from src.realtime.fanout import Broadcaster
    from src.relay.delivery import SlackDeliveryService
    from src.selection.store import SelectionStore
    from src.session.client import SessionClient

logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 1000
_DELIVERY_FAILED = "Failed to send to Slack"


def forwarded_payload(msg: IncomingMessage, outcome: DeliveryOutcome) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "from": msg.from_id,
        "body": msg.body,
        "senderName": outcome.details.sender_name,
        "timestamp": outcome.details.timestamp.isoformat(),
        "success": outcome.success,
    }
    if not outcome.success:
        payload["error"] = _DELIVERY_FAILED
    return payload


class RelayEngine:
    """Processes incoming messages one at a time, in arrival order."""

    def __init__(
        self,
        store: SelectionStore,
        client: SessionClient,
        delivery: SlackDeliveryService,
        broadcaster: Broadcaster,
        queue_size: int = _DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._store = store
        self._client = client
        self._delivery = delivery
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[IncomingMessage] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def submit(self, msg: IncomingMessage) -> None:
        """Queue a message; waits while the queue is full."""
        await self._queue.put(msg)

    def start(self) -> asyncio.Task[None]:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self.run())
        return self._worker

    async def stop(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None

    async def run(self) -> None:
        while True:
            msg = await self._queue.get()
            try:
                await self.handle(msg)
            finally:
                self._queue.task_done()

    async def handle(self, msg: IncomingMessage) -> DeliveryOutcome | None:
        """Relay one message; unexpected errors are reported, not raised."""
        try:
            return await self.process(msg)
        except Exception as e:
            logger.exception("Error processing message from %s", msg.from_id)
            await self._broadcaster.broadcast(EVENT_MESSAGE_FORWARDED, {
                "from": msg.from_id,
                "body": msg.body,
                "timestamp": datetime.now(UTC).isoformat(),
                "success": False,
                "error": str(e),
            })
            return None

    async def process(self, msg: IncomingMessage) -> DeliveryOutcome | None:
        """Forward ``msg`` if its conversation is selected.

        Returns None for unselected conversations, which are dropped without
        any broadcast.
        """
        if not self._store.contains(msg.from_id):
            logger.debug("Ignoring message from unselected chat %s", msg.from_id)
            return None

        logger.info("Processing message from %s", msg.from_id)
        details = await self._client.resolve_message_details(msg)
        outcome = await self._delivery.send(details)
        await self._broadcaster.broadcast(
            EVENT_MESSAGE_FORWARDED, forwarded_payload(msg, outcome),
        )
        return outcome
