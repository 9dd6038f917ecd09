"""Slack delivery with a plain-text fallback.

The primary payload is a Block Kit message. If posting it fails for any
reason, a single plain-text message is posted instead. Nothing here retries
further and nothing raises to the caller.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import httpx

from src.models import DeliveryOutcome, MessageDetails

if TYPE_CHECKING:
    from src.selection.store import SelectionStore

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 10.0
_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S %Z"


def format_blocks(details: MessageDetails) -> dict[str, Any]:
    """Build the Block Kit payload for a relayed message."""
    return {
        "blocks": [
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": "📱 *WhatsApp Message*"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*From:*\n{details.sender_name}"},
                    {"type": "mrkdwn", "text": f"*Number:*\n{details.sender_number}"},
                ],
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Message:*\n{details.message}"},
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"📅 {details.timestamp.strftime(_TIMESTAMP_FORMAT).strip()}",
                    },
                ],
            },
        ],
    }


def format_fallback(details: MessageDetails) -> dict[str, Any]:
    return {"text": f"📩 WhatsApp ({details.sender_number}): {details.message}"}


class SlackDeliveryService:
    """Posts relayed messages to the store's current Slack webhook URL."""

    def __init__(
        self,
        store: SelectionStore,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls, store: SelectionStore) -> SlackDeliveryService:
        timeout = float(os.environ.get("SLACK_TIMEOUT_SECONDS", str(_DEFAULT_TIMEOUT_SECONDS)))
        return cls(store, timeout=timeout)

    async def send(self, details: MessageDetails) -> DeliveryOutcome:
        # Read at send time so endpoint updates apply to the next message
        url = self._store.get_endpoint()
        if not url:
            logger.error("Slack webhook URL is not configured, dropping message")
            return DeliveryOutcome(
                success=False,
                details=details,
                error_reason="Slack webhook URL is not configured",
            )

        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._timeout,
        ) as client:
            primary_error = await self._post(client, url, format_blocks(details))
            if primary_error is None:
                logger.info("Message sent to Slack")
                return DeliveryOutcome(success=True, details=details)

            logger.warning("Error sending to Slack: %s, trying fallback", primary_error)
            fallback_error = await self._post(client, url, format_fallback(details))
            if fallback_error is None:
                logger.info("Fallback message sent to Slack")
                return DeliveryOutcome(success=True, details=details)

        logger.error("Fallback message also failed: %s", fallback_error)
        return DeliveryOutcome(
            success=False,
            details=details,
            error_reason=f"primary: {primary_error}; fallback: {fallback_error}",
        )

    @staticmethod
    async def _post(
        client: httpx.AsyncClient, url: str, payload: dict[str, Any],
    ) -> str | None:
        """POST ``payload``; return an error description, or None on 2xx."""
        try:
            resp = await client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
        if not resp.is_success:
            return f"HTTP {resp.status_code}"
        return None
