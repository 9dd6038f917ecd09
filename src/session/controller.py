"""Reconnection controller that owns the WhatsApp session lifecycle.

State machine (no terminal state):

- idle -> connecting on ``start()``
- connecting -> awaiting_challenge on a QR challenge
- connecting | awaiting_challenge | degraded -> ready on ``ready`` (loads chats once)
- ready -> disconnected on ``disconnected`` (recorded and broadcast, but
  not a transition, in any other state)
- any -> degraded on a fault, then bounded retries of the adapter's
  ``start()``; exhausting them ends in disconnected with a single
  ``whatsappError`` broadcast

Leaving disconnected requires an explicit ``restart()``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.models import ChatSummary, Session, SessionEvent, SessionEventType, SessionState
from src.realtime.fanout import (
    EVENT_DISCONNECTED,
    EVENT_ERROR,
    EVENT_QR,
    EVENT_READY,
    ready_payload,
)
from src.session.client import SessionClientError

if TYPE_CHECKING:
    from src.realtime.fanout import Broadcaster
    from src.session.client import SessionClient

logger = logging.getLogger(__name__)

# A ready event may land while the start() that triggered it is still retrying
_CAN_BECOME_READY = frozenset({
    SessionState.CONNECTING,
    SessionState.AWAITING_CHALLENGE,
    SessionState.DEGRADED,
})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> RetryPolicy:
        return cls(
            max_attempts=int(os.environ.get("SESSION_MAX_RETRIES", "3")),
            delay_seconds=float(os.environ.get("SESSION_RETRY_DELAY_SECONDS", "5")),
        )


class ReconnectionController:
    """Drives the session adapter and tracks its lifecycle state."""

    def __init__(
        self,
        client: SessionClient,
        broadcaster: Broadcaster,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._client = client
        self._broadcaster = broadcaster
        self._policy = policy or RetryPolicy()
        self._session = Session()
        self._chats: list[ChatSummary] = []
        self._retry_task: asyncio.Task[None] | None = None

    @property
    def session(self) -> Session:
        return self._session.model_copy()

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def is_ready(self) -> bool:
        return self._session.state == SessionState.READY

    @property
    def chats(self) -> list[ChatSummary]:
        return list(self._chats)

    # --- Commands ---

    def start(self) -> asyncio.Task[None] | None:
        """Begin connecting from idle. Returns the retry-loop task."""
        if self._session.state != SessionState.IDLE:
            logger.debug("start() ignored in state %s", self._session.state.value)
            return None
        self._transition(SessionState.CONNECTING)
        return self._spawn_retry_loop()

    def restart(self) -> asyncio.Task[None] | None:
        """External restart command; the only way out of disconnected."""
        if self._retry_task is not None and not self._retry_task.done():
            logger.info("Restart requested while a connection attempt is running")
            return self._retry_task
        self._session.retry_count = 0
        self._session.last_fault = None
        self._session.disconnect_reason = None
        self._transition(SessionState.CONNECTING)
        return self._spawn_retry_loop()

    async def stop(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._retry_task
        self._retry_task = None

    async def refresh_chats(self) -> list[ChatSummary]:
        """Re-fetch the chat list when ready; empty list otherwise."""
        if not self.is_ready:
            return []
        return await self._load_chats()

    # --- Adapter events ---

    async def handle_event(self, event: SessionEvent) -> None:
        if event.type == SessionEventType.QR_CHALLENGE:
            await self._on_qr(event.challenge or "")
        elif event.type == SessionEventType.READY:
            await self._on_ready()
        elif event.type == SessionEventType.DISCONNECTED:
            await self._on_disconnected(event.reason or "unknown")
        elif event.type == SessionEventType.FAULT:
            await self._on_fault(event.reason or "unknown error")
        else:
            logger.debug("Controller ignores %s events", event.type.value)

    async def _on_qr(self, challenge: str) -> None:
        logger.info("QR challenge received")
        if self._session.state in (SessionState.CONNECTING, SessionState.DEGRADED):
            self._transition(SessionState.AWAITING_CHALLENGE)
        await self._broadcaster.broadcast(EVENT_QR, challenge)

    async def _on_ready(self) -> None:
        if self._session.state not in _CAN_BECOME_READY:
            logger.warning("Ready event ignored in state %s", self._session.state.value)
            return
        self._transition(SessionState.READY)
        self._session.retry_count = 0
        self._session.last_fault = None
        await self._load_chats()
        logger.info("WhatsApp session ready with %d chats", len(self._chats))
        await self._broadcaster.broadcast(EVENT_READY, ready_payload(self._chats))

    async def _on_disconnected(self, reason: str) -> None:
        logger.warning("WhatsApp session disconnected: %s", reason)
        self._session.disconnect_reason = reason
        if self._session.state == SessionState.READY:
            self._chats = []
            self._transition(SessionState.DISCONNECTED)
        else:
            # Pairing is still in progress; a later ready can complete it
            logger.info("Disconnect in state %s, keeping state", self._session.state.value)
        await self._broadcaster.broadcast(EVENT_DISCONNECTED, {"reason": reason})

    async def _on_fault(self, reason: str) -> None:
        logger.error("WhatsApp session fault: %s", reason)
        self._session.last_fault = reason
        if self._retry_task is not None and not self._retry_task.done():
            # The running loop will make the next attempt
            return
        if self._session.state == SessionState.DISCONNECTED:
            return
        self._session.retry_count = 0
        self._transition(SessionState.DEGRADED)
        self._spawn_retry_loop(initial_delay=True)

    # --- Retry loop ---

    def _spawn_retry_loop(self, initial_delay: bool = False) -> asyncio.Task[None]:
        self._retry_task = asyncio.create_task(self._run_with_retry(initial_delay))
        return self._retry_task

    async def _run_with_retry(self, initial_delay: bool = False) -> None:
        if initial_delay:
            await asyncio.sleep(self._policy.delay_seconds)

        max_attempts = self._policy.max_attempts
        for attempt in range(1, max_attempts + 1):
            self._session.retry_count = attempt
            logger.info("WhatsApp initialization attempt %d/%d", attempt, max_attempts)
            try:
                await self._client.start()
            except SessionClientError as e:
                logger.error("Initialization attempt %d failed: %s", attempt, e.reason)
                if self._session.state == SessionState.READY:
                    logger.info("Session became ready during the attempt, stopping retries")
                    return
                self._session.last_fault = e.reason
                if attempt == max_attempts:
                    break
                self._transition(SessionState.DEGRADED)
                logger.info("Waiting %ss before retry", self._policy.delay_seconds)
                await asyncio.sleep(self._policy.delay_seconds)
                if self._session.state == SessionState.READY:
                    logger.info("Session became ready while waiting, stopping retries")
                    return
                continue

            logger.info("WhatsApp client initialized")
            if self._session.state == SessionState.DEGRADED:
                self._transition(SessionState.CONNECTING)
            return

        logger.error("All WhatsApp initialization attempts failed")
        self._transition(SessionState.DISCONNECTED)
        await self._broadcaster.broadcast(
            EVENT_ERROR, {"error": self._session.last_fault or "initialization failed"},
        )

    def _transition(self, new_state: SessionState) -> None:
        if new_state == self._session.state:
            return
        logger.info(
            "Session state %s -> %s", self._session.state.value, new_state.value,
        )
        self._session.state = new_state

    async def _load_chats(self) -> list[ChatSummary]:
        try:
            self._chats = await self._client.list_chats()
        except SessionClientError as e:
            logger.error("Error loading chats: %s", e)
            self._chats = []
        return list(self._chats)
