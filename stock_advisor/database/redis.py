"""
Redis connection used as the persistent identity store.

Values are JSON documents stored under a key prefix, so the advisor can
share a Redis database with other services.
"""

import json
from typing import Any

import redis.asyncio as redis
import structlog

from .kv_store import KeyValueStore

logger = structlog.get_logger()


class RedisStore(KeyValueStore):
    """Async Redis key-value store with JSON values."""

    def __init__(self, key_prefix: str = "advisor:") -> None:
        self.client: redis.Redis | None = None
        self.key_prefix = key_prefix

    async def connect(self, redis_url: str) -> None:
        """Connect and ping; startup fails if Redis is unreachable."""
        try:
            self.client = redis.from_url(redis_url, decode_responses=True)
            await self.client.ping()
        except Exception as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise

        logger.info("Redis connection established", url=redis_url)

    async def disconnect(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Redis connection closed")

    async def health_check(self) -> dict[str, bool | str]:
        """Ping Redis and report its server version."""
        if not self.client:
            return {"connected": False, "error": "No client connection"}

        try:
            await self.client.ping()
            info = await self.client.info()
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return {"connected": False, "error": str(e)}

        return {"connected": True, "version": info.get("redis_version", "unknown")}

    # ===== KeyValueStore =====

    async def get(self, key: str) -> Any | None:
        """JSON-decoded value, the raw string if it is not JSON, or None."""
        client = self._require_client()
        try:
            raw = await client.get(self._key(key))
        except Exception as e:
            self._log_failure("get", key, e)
            return None

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        client = self._require_client()
        try:
            await client.set(self._key(key), json.dumps(value, default=str), ex=ttl_seconds)
        except Exception as e:
            self._log_failure("set", key, e)
            return False
        return True

    async def delete(self, key: str) -> bool:
        """True if the key existed."""
        client = self._require_client()
        try:
            removed: int = await client.delete(self._key(key))
        except Exception as e:
            self._log_failure("delete", key, e)
            return False
        return removed > 0

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _require_client(self) -> redis.Redis:
        if self.client is None:
            raise RuntimeError("Redis connection not established")
        return self.client

    def _log_failure(self, operation: str, key: str, error: Exception) -> None:
        logger.error(
            "Redis operation failed",
            operation=operation,
            key=key,
            error=str(error),
            error_type=type(error).__name__,
        )
