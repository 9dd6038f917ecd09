"""Selection store: allow-list of relayed conversations plus the Slack endpoint."""

from __future__ import annotations

import logging

from src.models import RelayConfig
from src.selection.repository import ConfigRepository

logger = logging.getLogger(__name__)


class SelectionStore:
    """Single writer for the allow-list and webhook endpoint.

    Every mutator writes the full record through the repository before
    returning. A failed write is logged and the in-memory state remains
    authoritative until the next successful save.
    """

    def __init__(self, repository: ConfigRepository) -> None:
        self._repository = repository
        config = repository.load()
        self._selected: set[str] = set(config.selected_chats)
        self._endpoint = config.slack_webhook_url
        self._server_port = config.server_port
        self._last_updated = config.last_updated

    def add(self, chat_id: str) -> None:
        if chat_id in self._selected:
            return
        self._selected.add(chat_id)
        self._persist()
        logger.info("Chat selected: %s", chat_id)

    def remove(self, chat_id: str) -> None:
        if chat_id not in self._selected:
            return
        self._selected.discard(chat_id)
        self._persist()
        logger.info("Chat deselected: %s", chat_id)

    def contains(self, chat_id: str) -> bool:
        return chat_id in self._selected

    def all(self) -> list[str]:
        """Sorted snapshot of the allow-list."""
        return sorted(self._selected)

    def __len__(self) -> int:
        return len(self._selected)

    def get_endpoint(self) -> str:
        return self._endpoint

    def set_endpoint(self, url: str) -> None:
        self._endpoint = url
        self._persist()
        logger.info("Slack webhook endpoint updated")

    @property
    def server_port(self) -> int:
        return self._server_port

    @property
    def last_updated(self) -> str | None:
        return self._last_updated

    def snapshot(self) -> RelayConfig:
        return RelayConfig(
            selected_chats=self.all(),
            slack_webhook_url=self._endpoint,
            server_port=self._server_port,
            last_updated=self._last_updated,
        )

    def _persist(self) -> None:
        try:
            saved = self._repository.save(self.snapshot())
        except (OSError, ValueError) as exc:
            logger.error("Failed to save configuration: %s", exc)
            return
        self._last_updated = saved.last_updated
