"""
Resolves which user a client session belongs to.

The bound identity lives in a key-value store under one key per client
session. A record older than the freshness window counts as no identity.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..agent.state import utcnow
from ..database.kv_store import KeyValueStore
from ..models.identity import Identity

logger = structlog.get_logger()

IDENTITY_KEY_PREFIX = "identity:"


class SessionIdentityResolver:
    """Reads, binds and clears the identity for one client session."""

    def __init__(
        self,
        store: KeyValueStore,
        client_id: str,
        freshness_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Persistent key-value store
            client_id: Identifies the client session the record belongs to
            freshness_window: Age beyond which a stored identity is stale
            clock: Source of the current time (injected in tests)
        """
        self.store = store
        self.key = f"{IDENTITY_KEY_PREFIX}{client_id}"
        self.freshness_window = freshness_window
        self.clock = clock

    async def restore(self) -> Identity | None:
        """
        Previously bound identity, or None if absent or stale.

        None means "start a fresh default identity", never an error.
        """
        raw = await self.store.get(self.key)
        if raw is None:
            return None

        try:
            identity = Identity.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(
                "Discarding malformed identity record",
                key=self.key,
                errors=e.error_count(),
            )
            return None

        last_authenticated_at = identity.last_authenticated_at
        if last_authenticated_at.tzinfo is None:
            identity = identity.model_copy(
                update={"last_authenticated_at": last_authenticated_at.replace(tzinfo=UTC)}
            )

        if not identity.is_fresh(self.clock(), self.freshness_window):
            logger.info(
                "Stored identity is stale",
                user_id=identity.user_id,
                last_authenticated_at=identity.last_authenticated_at.isoformat(),
            )
            return None

        return identity

    async def bind(self, user_id: str) -> Identity:
        """
        Store the identity with a refreshed authentication timestamp.

        The record expires from the store once it can no longer be fresh.
        """
        identity = Identity(user_id=user_id, last_authenticated_at=self.clock())
        await self.store.set(
            self.key,
            identity.model_dump(mode="json", by_alias=True),
            ttl_seconds=int(self.freshness_window.total_seconds()),
        )
        logger.info("Identity bound", user_id=user_id)
        return identity

    async def clear(self) -> None:
        """Remove the stored identity."""
        await self.store.delete(self.key)
        logger.info("Identity cleared", key=self.key)
