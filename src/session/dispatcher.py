"""Routes session adapter events, in arrival order, to their consumers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from src.models import SessionEvent, SessionEventType

if TYPE_CHECKING:
    from src.relay.engine import RelayEngine
    from src.session.controller import ReconnectionController

logger = logging.getLogger(__name__)


class SessionEventDispatcher:
    """Lifecycle events go to the controller, messages to the relay queue."""

    def __init__(
        self,
        events: asyncio.Queue[SessionEvent],
        controller: ReconnectionController,
        engine: RelayEngine,
    ) -> None:
        self._events = events
        self._controller = controller
        self._engine = engine
        self._task: asyncio.Task[None] | None = None

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    async def run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Error dispatching %s event", event.type.value)
            finally:
                self._events.task_done()

    async def dispatch(self, event: SessionEvent) -> None:
        if event.type == SessionEventType.INCOMING_MESSAGE:
            if event.message is not None:
                await self._engine.submit(event.message)
            return
        await self._controller.handle_event(event)
