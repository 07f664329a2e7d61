"""
Durable storage for the per-sender origin IP history.

Two backends share the same async load/save interface: a JSON file (the
default, one document on local disk) and a single Redis key.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path

import redis.asyncio as redis
from redis.exceptions import RedisError

from queue_sentinel.config import Settings, settings
from queue_sentinel.infrastructure.observability.logging import get_logger
from queue_sentinel.models.domain.ip_history import IpHistory

logger = get_logger(__name__)


class IpHistoryStoreError(Exception):
    """Custom exception for history persistence failures."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class JsonFileIpHistoryStore:
    """Keeps the history as a JSON object on disk, created empty on first use."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def ensure_exists(self) -> None:
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("{}", encoding="utf-8")
        logger.info("Created empty IP history file", path=str(self.path))

    def _read(self) -> IpHistory:
        self.ensure_exists()
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, json.JSONDecodeError) as e:
            raise IpHistoryStoreError(f"Failed to read IP history: {e}", operation="load") from e
        return IpHistory.from_dict(data)

    def _write(self, history: IpHistory) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(history.to_dict(), handle, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise IpHistoryStoreError(f"Failed to write IP history: {e}", operation="save") from e

    async def load(self) -> IpHistory:
        history = await asyncio.to_thread(self._read)
        logger.debug("IP history loaded", backend="file", senders=len(history))
        return history

    async def save(self, history: IpHistory) -> None:
        await asyncio.to_thread(self._write, history)
        logger.debug("IP history saved", backend="file", senders=len(history))


class RedisIpHistoryStore:
    """Keeps the history as one JSON document under a Redis key."""

    def __init__(self, url: str, key: str, client: redis.Redis | None = None):
        self.key = key
        self.client = client or redis.Redis.from_url(url, decode_responses=True)

    async def close(self) -> None:
        await self.client.aclose()

    async def load(self) -> IpHistory:
        try:
            raw = await self.client.get(self.key)
        except RedisError as e:
            raise IpHistoryStoreError(f"Failed to read IP history: {e}", operation="load") from e

        if raw is None:
            await self.save(IpHistory())
            logger.info("Created empty IP history key", key=self.key)
            return IpHistory()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise IpHistoryStoreError(f"Corrupted IP history: {e}", operation="load") from e

        history = IpHistory.from_dict(data)
        logger.debug("IP history loaded", backend="redis", senders=len(history))
        return history

    async def save(self, history: IpHistory) -> None:
        try:
            await self.client.set(self.key, json.dumps(history.to_dict()))
        except RedisError as e:
            raise IpHistoryStoreError(f"Failed to write IP history: {e}", operation="save") from e
        logger.debug("IP history saved", backend="redis", senders=len(history))


def build_ip_history_store(config: Settings | None = None):
    """Pick the store backend from STATE_BACKEND."""
    config = config or settings
    if config.STATE_BACKEND == "redis":
        if not config.REDIS_URL:
            raise IpHistoryStoreError("REDIS_URL not configured", operation="configure")
        return RedisIpHistoryStore(config.REDIS_URL, config.REDIS_STATE_KEY)
    return JsonFileIpHistoryStore(config.STATE_FILE_PATH)
