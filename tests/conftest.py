"""Pytest configuration and fixtures."""
import asyncio
from collections import deque
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock, AsyncMock

import pytest

from database.repositories.import_run_repo import RunStatus
from shared.models import JobOutcome, JobRecord, QueueUnit
from shared.utils import generate_run_id, get_utc_now
from shared.work_queue import RetryPolicy


SOURCE_URL = "https://jobicy.com/?feed=job_feed"


class InMemoryJobRepository:
    """Job store fake with the same atomic upsert contract as JobRepository."""

    def __init__(self):
        self.jobs: Dict[tuple, Dict[str, Any]] = {}

    async def upsert_job(self, record: JobRecord) -> str:
        # Let other coroutines run first, as a round-trip to the database would
        await asyncio.sleep(0)
        key = (record.external_id, record.source_url)
        now = get_utc_now()
        existing = self.jobs.get(key)

        document = record.to_document()
        document["updated_at"] = now
        document["created_at"] = existing["created_at"] if existing else now
        self.jobs[key] = document
        return JobOutcome.UPDATED if existing else JobOutcome.NEW


class InMemoryRunRepository:
    """Import run ledger fake."""

    def __init__(self):
        self.runs: Dict[str, Dict[str, Any]] = {}

    async def open_run(self, source_url: str, fetched_count: int) -> str:
        run_id = generate_run_id()
        self.runs[run_id] = {
            "_id": run_id,
            "source_url": source_url,
            "started_at": get_utc_now(),
            "status": RunStatus.PROCESSING,
            "total_fetched": fetched_count,
            "total_imported": 0,
            "new_jobs": 0,
            "updated_jobs": 0,
            "failed_jobs": 0,
            "failure_reasons": [],
            "duration_ms": None,
            "error": None
        }
        return run_id

    async def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        return self.runs.get(run_id)

    async def record_outcome(self, run_id: str, outcome: str):
        run = self.runs[run_id]
        run["new_jobs" if outcome == JobOutcome.NEW else "updated_jobs"] += 1
        run["total_imported"] += 1
        return run

    async def record_failure(self, run_id: str, job_key: str, reason: str, error: str):
        run = self.runs[run_id]
        run["failed_jobs"] += 1
        run["failure_reasons"].append({"job_key": job_key, "reason": reason, "error": error})
        return run

    async def close_run_if_empty(self, run_id: str, duration_ms: int) -> bool:
        run = self.runs[run_id]
        run["status"] = RunStatus.COMPLETED
        run["duration_ms"] = duration_ms
        return True

    async def fail_run(self, run_id: str, error: str) -> bool:
        run = self.runs[run_id]
        run["status"] = RunStatus.FAILED
        run["error"] = error
        return True

    async def complete_if_drained(self, run_id: str) -> Optional[str]:
        run = self.runs[run_id]
        if run["status"] != RunStatus.PROCESSING:
            return None
        if run["total_imported"] + run["failed_jobs"] < run["total_fetched"]:
            return None
        run["status"] = RunStatus.FAILED if run["total_imported"] == 0 else RunStatus.COMPLETED
        run["duration_ms"] = 0
        return run["status"]

    def runs_for(self, source_url: str) -> List[Dict[str, Any]]:
        return [run for run in self.runs.values() if run["source_url"] == source_url]


class InMemoryWorkQueue:
    """Work queue fake applying the real RetryPolicy without waiting out the backoff."""

    def __init__(self, retry: RetryPolicy = None):
        self.retry = retry or RetryPolicy(max_attempts=3, backoff_base=2.0)
        self.ready: deque = deque()
        self.completed: List[QueueUnit] = []
        self.dead: List[QueueUnit] = []
        self.delays: List[float] = []

    async def enqueue_bulk(self, run_id: str, source_url: str, records: List[JobRecord]) -> int:
        for record in records:
            self.ready.append(QueueUnit(job=record, source_url=source_url, run_id=run_id))
        return len(records)

    async def reserve(self) -> Optional[QueueUnit]:
        return self.ready.popleft() if self.ready else None

    async def ack(self, unit: QueueUnit):
        self.completed.append(unit)

    async def fail(self, unit: QueueUnit, error: str) -> bool:
        attempts_made = unit.attempts_made + 1
        updated = unit.model_copy(update={"attempts_made": attempts_made, "last_error": error})
        if self.retry.exhausted(attempts_made):
            self.dead.append(updated)
            return True
        self.delays.append(self.retry.next_delay(attempts_made))
        self.ready.append(updated)
        return False


async def drain(queue: InMemoryWorkQueue, worker) -> int:
    """Process units until the queue is empty. Returns the number of deliveries."""
    deliveries = 0
    while True:
        unit = await queue.reserve()
        if unit is None:
            return deliveries
        deliveries += 1
        await worker.process_unit(unit)


def make_record(external_id: str = "job-1", title: str = "Backend Engineer", **fields) -> JobRecord:
    """Build a JobRecord with sensible defaults."""
    fields.setdefault("source_url", SOURCE_URL)
    fields.setdefault("apply_url", f"https://jobicy.com/jobs/{external_id}")
    return JobRecord(external_id=external_id, title=title, **fields)


def rss_feed(items: List[Dict[str, str]]) -> str:
    """Render a minimal Jobicy-style RSS document."""
    rendered = []
    for item in items:
        children = "".join(f"<{tag}>{value}</{tag}>" for tag, value in item.items())
        rendered.append(f"<item>{children}</item>")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:job_listing="https://jobicy.com" '
        'xmlns:dc="http://purl.org/dc/elements/1.1/">'
        "<channel><title>Jobicy</title>"
        + "".join(rendered)
        + "</channel></rss>"
    )


@pytest.fixture
def job_repo():
    """In-memory job store."""
    return InMemoryJobRepository()


@pytest.fixture
def run_repo():
    """In-memory import run ledger."""
    return InMemoryRunRepository()


@pytest.fixture
def work_queue():
    """In-memory work queue."""
    return InMemoryWorkQueue()


@pytest.fixture
def mock_mongo_db():
    """Create mock MongoDB database."""
    db = MagicMock()

    # Mock collections
    db.jobs = MagicMock()
    db.import_runs = MagicMock()

    # Mock common operations
    db.jobs.find_one = AsyncMock()
    db.jobs.find_one_and_update = AsyncMock()
    db.jobs.count_documents = AsyncMock(return_value=0)

    db.import_runs.find_one = AsyncMock()
    db.import_runs.insert_one = AsyncMock()
    db.import_runs.update_one = AsyncMock()
    db.import_runs.find_one_and_update = AsyncMock()
    db.import_runs.count_documents = AsyncMock(return_value=0)
    db.import_runs.find = MagicMock()
    db.import_runs.aggregate = MagicMock()

    return db


@pytest.fixture
def mock_redis_client():
    """Create mock Redis client."""
    redis = AsyncMock()

    redis.lpush = AsyncMock(return_value=1)
    redis.rpush = AsyncMock(return_value=1)
    redis.lmove = AsyncMock(return_value=None)
    redis.lrem = AsyncMock(return_value=1)
    redis.llen = AsyncMock(return_value=0)
    redis.lrange = AsyncMock(return_value=[])
    redis.zadd = AsyncMock(return_value=1)
    redis.zrem = AsyncMock(return_value=1)
    redis.zrangebyscore = AsyncMock(return_value=[])
    redis.zremrangebyscore = AsyncMock(return_value=0)
    redis.zremrangebyrank = AsyncMock(return_value=0)
    redis.zcard = AsyncMock(return_value=0)
    redis.set = AsyncMock(return_value=True)
    redis.get = AsyncMock(return_value=None)
    redis.delete = AsyncMock(return_value=1)

    return redis


@pytest.fixture
def sample_run():
    """Create sample import run data."""
    now = get_utc_now()
    return {
        "_id": "run_test123",
        "source_url": SOURCE_URL,
        "started_at": now,
        "status": "processing",
        "total_fetched": 5,
        "total_imported": 4,
        "new_jobs": 4,
        "updated_jobs": 0,
        "failed_jobs": 1,
        "failure_reasons": [
            {"job_key": "job-5", "reason": "Validation failed", "error": "Missing required fields: external_id or title"}
        ],
        "duration_ms": None,
        "error": None,
        "completed_at": None,
        "created_at": now,
        "updated_at": now
    }
