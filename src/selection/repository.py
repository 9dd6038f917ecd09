"""JSON file repository for the persisted relay configuration."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from src.models import RelayConfig

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000


def _env_port() -> int:
    raw = os.environ.get("PORT", "")
    if not raw:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid PORT %r, using %d", raw, DEFAULT_PORT)
        return DEFAULT_PORT


def default_config() -> RelayConfig:
    """Defaults used when no usable config file exists."""
    return RelayConfig(
        selected_chats=[],
        slack_webhook_url=os.environ.get("SLACK_WEBHOOK_URL", ""),
        server_port=_env_port(),
        last_updated=None,
    )


class ConfigRepository:
    """Reads and rewrites the whole config record at ``config_path``."""

    def __init__(self, config_path: str) -> None:
        self.config_path = Path(config_path)

    def load(self) -> RelayConfig:
        """Load the record; a missing or corrupt file yields env defaults."""
        if not self.config_path.exists():
            logger.info("No config file at %s, using defaults", self.config_path)
            return default_config()

        try:
            raw = json.loads(self.config_path.read_text())
            config = RelayConfig.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Failed to load config from %s: %s", self.config_path, exc)
            return default_config()

        # Empty or null values in the file fall back to the environment
        defaults = default_config()
        if not config.slack_webhook_url:
            config.slack_webhook_url = defaults.slack_webhook_url
        if not raw.get("serverPort"):
            config.server_port = defaults.server_port
        logger.info("Loaded configuration from %s", self.config_path)
        return config

    def save(self, config: RelayConfig) -> RelayConfig:
        """Write the full record atomically and return it with ``lastUpdated`` stamped."""
        stamped = config.model_copy(
            update={"last_updated": datetime.now(UTC).isoformat()},
        )
        data = stamped.model_dump(by_alias=True)
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.config_path.parent, prefix=f".{self.config_path.name}.",
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.config_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return stamped
