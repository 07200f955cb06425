"""Redis-backed durable work queue for normalized job records."""
import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config import settings
from shared.exceptions import QueueError
from shared.models import JobRecord, QueueUnit
from shared.utils import calculate_exponential_backoff

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Attempt ceiling and exponential backoff for failed deliveries."""
    max_attempts: int = 3
    backoff_base: float = 2.0

    def exhausted(self, attempts_made: int) -> bool:
        return attempts_made >= self.max_attempts

    def next_delay(self, attempts_made: int) -> float:
        """Delay before the next attempt, after `attempts_made` failures."""
        return calculate_exponential_backoff(attempts_made, self.backoff_base)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_retry_attempts,
            backoff_base=settings.retry_backoff_base
        )


@dataclass
class RetentionPolicy:
    """How long terminal units are kept for inspection (seconds)."""
    completed_age: int = 24 * 3600
    completed_count: int = 1000
    failed_age: int = 7 * 24 * 3600

    @classmethod
    def from_settings(cls) -> "RetentionPolicy":
        return cls(
            completed_age=settings.completed_retention_age,
            completed_count=settings.completed_retention_count,
            failed_age=settings.failed_retention_age
        )


class RedisWorkQueue:
    """
    At-least-once queue of QueueUnits.

    Layout under the key prefix:
      :wait       list, producers LPUSH, consumers take from the right
      :active     list, units reserved by a consumer and not yet settled
      :reserved   zset, reservation time of each active unit
      :delayed    zset, units waiting for their retry time
      :completed  zset, settled units kept for the retention window
      :failed     zset, dead-lettered units
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        name: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
        retention: Optional[RetentionPolicy] = None,
        visibility_timeout: Optional[int] = None
    ):
        self.redis = redis_client
        self.name = name or settings.queue_name
        self.retry = retry or RetryPolicy.from_settings()
        self.retention = retention or RetentionPolicy.from_settings()
        self.visibility_timeout = visibility_timeout or settings.visibility_timeout
        self.wait_key = f"{self.name}:wait"
        self.active_key = f"{self.name}:active"
        self.reserved_key = f"{self.name}:reserved"
        self.delayed_key = f"{self.name}:delayed"
        self.completed_key = f"{self.name}:completed"
        self.failed_key = f"{self.name}:failed"

    async def enqueue_bulk(
        self,
        run_id: str,
        source_url: str,
        records: List[JobRecord]
    ) -> int:
        """Push a whole feed batch in a single command. Returns the number queued."""
        if not records:
            return 0

        payloads = [
            QueueUnit(job=record, source_url=source_url, run_id=run_id).model_dump_json()
            for record in records
        ]
        try:
            await self.redis.lpush(self.wait_key, *payloads)
        except RedisError as e:
            raise QueueError(f"Failed to enqueue {len(payloads)} units for {source_url}: {e}") from e

        logger.info(f"Queued {len(payloads)} jobs for import from {source_url}")
        return len(payloads)

    async def reserve(self) -> Optional[QueueUnit]:
        """Take the oldest ready unit, moving it to the active list."""
        await self._promote_delayed()

        while True:
            payload = await self.redis.lmove(self.wait_key, self.active_key, "RIGHT", "LEFT")
            if payload is None:
                return None
            try:
                unit = QueueUnit.from_payload(payload)
            except ValueError:
                logger.error(f"Dropping unparsable queue entry: {payload}")
                await self.redis.lrem(self.active_key, 1, payload)
                continue

            await self.redis.zadd(self.reserved_key, {payload: time.time()})
            return unit

    async def ack(self, unit: QueueUnit):
        """Settle a unit as successfully processed."""
        now = time.time()
        entry = json.dumps({
            "id": unit.id,
            "run_id": unit.run_id,
            "source_url": unit.source_url,
            "external_id": unit.job.external_id,
            "attempts_made": unit.attempts_made + 1,
            "finished_at": now
        })
        await self.redis.zadd(self.completed_key, {entry: now})
        await self._release(unit)
        await self._trim_completed(now)

    async def fail(self, unit: QueueUnit, error: str) -> bool:
        """
        Record a failed attempt.

        Reschedules the unit with exponential backoff while attempts remain.
        Returns True when the unit was dead-lettered instead.
        """
        now = time.time()
        attempts_made = unit.attempts_made + 1
        updated = unit.model_copy(update={"attempts_made": attempts_made, "last_error": error})
        payload = updated.model_dump_json()

        if self.retry.exhausted(attempts_made):
            target_key, score = self.failed_key, now
        else:
            delay = self.retry.next_delay(attempts_made)
            target_key, score = self.delayed_key, now + delay

        await self.redis.zadd(target_key, {payload: score})
        if not await self._release(unit):
            # The sweep already redelivered this unit; its new delivery owns the outcome
            await self.redis.zrem(target_key, payload)
            logger.warning(f"Unit {unit.id} was redelivered before its failure was recorded")
            return False

        if target_key == self.failed_key:
            logger.error(
                f"Unit {unit.id} ({unit.job.job_key}) dead-lettered after {attempts_made} attempts: {error}"
            )
            return True

        logger.info(f"Retrying unit {unit.id} in {delay}s (attempt {attempts_made + 1})")
        return False

    async def recover_stalled(self) -> int:
        """
        Redeliver units reserved longer than the visibility timeout.

        Units reserved by a live consumer within the timeout are left alone, so
        any number of consumers can run this sweep concurrently. An active unit
        with no reservation time (its consumer died between the two writes of
        reserve) starts its clock at the first sweep that sees it.
        """
        now = time.time()
        active = await self.redis.lrange(self.active_key, 0, -1)
        if active:
            await self.redis.zadd(self.reserved_key, {payload: now for payload in active}, nx=True)

        stale = await self.redis.zrangebyscore(self.reserved_key, "-inf", now - self.visibility_timeout)
        recovered = 0
        for payload in stale:
            # Only the sweep that wins the LREM moves the unit
            if await self.redis.lrem(self.active_key, 1, payload):
                await self.redis.rpush(self.wait_key, self._redelivered(payload))
                recovered += 1
            await self.redis.zrem(self.reserved_key, payload)

        if recovered:
            logger.warning(f"Recovered {recovered} stalled units")
        return recovered

    async def purge_expired(self) -> int:
        """Drop completed and dead-lettered units past their retention window."""
        now = time.time()
        removed = await self._trim_completed(now)
        removed += await self.redis.zremrangebyscore(
            self.failed_key, "-inf", now - self.retention.failed_age
        )
        return removed

    async def counts(self) -> Dict[str, int]:
        """Number of units in each state."""
        return {
            "waiting": await self.redis.llen(self.wait_key),
            "active": await self.redis.llen(self.active_key),
            "delayed": await self.redis.zcard(self.delayed_key),
            "completed": await self.redis.zcard(self.completed_key),
            "failed": await self.redis.zcard(self.failed_key)
        }

    async def _promote_delayed(self) -> int:
        """Move delayed units whose retry time has come to the wait list."""
        due = await self.redis.zrangebyscore(self.delayed_key, "-inf", time.time())
        promoted = 0
        for payload in due:
            # Only the consumer that wins the ZREM moves the unit
            if await self.redis.zrem(self.delayed_key, payload):
                await self.redis.rpush(self.wait_key, payload)
                promoted += 1
        return promoted

    @staticmethod
    def _redelivered(payload: str) -> str:
        """New serialized form for a redelivered unit, so the stale holder's receipt no longer matches."""
        try:
            unit = QueueUnit.model_validate_json(payload)
        except ValueError:
            # Unparsable entries are dropped by reserve
            return payload
        return unit.model_copy(update={"redeliveries": unit.redeliveries + 1}).model_dump_json()

    async def _release(self, unit: QueueUnit) -> bool:
        """Remove a reserved unit from the active list. False if it was no longer there."""
        removed = await self.redis.lrem(self.active_key, 1, unit.receipt)
        await self.redis.zrem(self.reserved_key, unit.receipt)
        return bool(removed)

    async def _trim_completed(self, now: float) -> int:
        removed = await self.redis.zremrangebyscore(
            self.completed_key, "-inf", now - self.retention.completed_age
        )
        removed += await self.redis.zremrangebyrank(
            self.completed_key, 0, -(self.retention.completed_count + 1)
        )
        return removed
