"""Redis lease that keeps import pipeline invocations from overlapping."""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional
import redis.asyncio as redis

from shared.config import settings
from shared.exceptions import PipelineBusyError

logger = logging.getLogger(__name__)


class PipelineLease:
    """A SET NX lease with expiry so a crashed holder cannot block forever."""

    def __init__(self, redis_client: redis.Redis, key: str = None, ttl: int = None):
        self.redis = redis_client
        self.key = key or settings.lease_key
        self.ttl = ttl or settings.lease_ttl
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex
        acquired = await self.redis.set(self.key, token, nx=True, ex=self.ttl)
        if acquired:
            self._token = token
        return bool(acquired)

    async def release(self):
        # Only delete the lease if it is still ours (it may have expired and been re-taken)
        if self._token and await self.redis.get(self.key) == self._token:
            await self.redis.delete(self.key)
        self._token = None

    @asynccontextmanager
    async def hold(self):
        """Hold the lease for the duration of the block or raise PipelineBusyError."""
        if not await self.acquire():
            raise PipelineBusyError("An import is already in progress")
        try:
            yield self
        finally:
            await self.release()
