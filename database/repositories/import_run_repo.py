"""Import run repository: the per-feed ledger of fetch cycles."""
import logging
import math
import re
from typing import Optional, List, Dict, Any, Tuple
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from shared.exceptions import PersistenceError
from shared.models import JobOutcome
from shared.utils import generate_run_id, get_utc_now, elapsed_ms

logger = logging.getLogger(__name__)


class RunStatus:
    """Import run status constants."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


OUTCOME_COUNTERS = {
    JobOutcome.NEW: "new_jobs",
    JobOutcome.UPDATED: "updated_jobs",
}

EMPTY_STATS = {
    "total_imports": 0,
    "total_fetched": 0,
    "total_imported": 0,
    "total_new": 0,
    "total_updated": 0,
    "total_failed": 0
}


class ImportRunRepository:
    """Repository for ImportRun documents."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.import_runs

    async def open_run(self, source_url: str, fetched_count: int) -> str:
        """Create a run in processing state and return its ID."""
        run_id = generate_run_id()
        now = get_utc_now()

        run = {
            "_id": run_id,
            "source_url": source_url,
            "started_at": now,
            "status": RunStatus.PROCESSING,
            "total_fetched": fetched_count,
            "total_imported": 0,
            "new_jobs": 0,
            "updated_jobs": 0,
            "failed_jobs": 0,
            "failure_reasons": [],
            "duration_ms": None,
            "error": None,
            "completed_at": None,
            "created_at": now,
            "updated_at": now
        }

        await self.collection.insert_one(run)
        return run_id

    async def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Get a run by ID."""
        return await self.collection.find_one({"_id": run_id})

    async def record_outcome(self, run_id: str, outcome: str) -> Optional[Dict[str, Any]]:
        """Count one reconciled job. Returns the updated run."""
        counter = OUTCOME_COUNTERS.get(outcome)
        if counter is None:
            raise ValueError(f"Unknown outcome: {outcome}")

        try:
            return await self.collection.find_one_and_update(
                {"_id": run_id},
                {
                    "$inc": {counter: 1, "total_imported": 1},
                    "$set": {"updated_at": get_utc_now()}
                },
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to count {outcome} job on run {run_id}: {e}") from e

    async def record_failure(
        self,
        run_id: str,
        job_key: str,
        reason: str,
        error: str
    ) -> Optional[Dict[str, Any]]:
        """Count one failed job and append its failure entry. Returns the updated run."""
        try:
            return await self.collection.find_one_and_update(
                {"_id": run_id},
                {
                    "$inc": {"failed_jobs": 1},
                    "$push": {"failure_reasons": {
                        "job_key": job_key,
                        "reason": reason,
                        "error": error
                    }},
                    "$set": {"updated_at": get_utc_now()}
                },
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to record failure of {job_key} on run {run_id}: {e}") from e

    async def close_run_if_empty(self, run_id: str, duration_ms: int) -> bool:
        """Complete a run whose feed yielded no records."""
        now = get_utc_now()
        result = await self.collection.update_one(
            {
                "_id": run_id,
                "status": {"$in": [RunStatus.PENDING, RunStatus.PROCESSING]},
                "total_fetched": 0
            },
            {
                "$set": {
                    "status": RunStatus.COMPLETED,
                    "duration_ms": duration_ms,
                    "completed_at": now,
                    "updated_at": now
                }
            }
        )
        return result.modified_count > 0

    async def fail_run(self, run_id: str, error: str) -> bool:
        """Mark a run failed when its records could not be handed to the queue."""
        now = get_utc_now()
        run = await self.get_run(run_id)
        if not run:
            return False

        result = await self.collection.update_one(
            {"_id": run_id, "status": {"$in": [RunStatus.PENDING, RunStatus.PROCESSING]}},
            {
                "$set": {
                    "status": RunStatus.FAILED,
                    "error": error,
                    "duration_ms": elapsed_ms(run["started_at"], now),
                    "completed_at": now,
                    "updated_at": now
                }
            }
        )
        return result.modified_count > 0

    async def complete_if_drained(self, run_id: str) -> Optional[str]:
        """
        Move a processing run to its terminal state once every fetched job is settled.

        A job is settled when it was imported or dead-lettered. The transition
        only applies to runs still in processing, so it happens at most once.
        Returns the terminal status when this call made the transition.
        """
        run = await self.get_run(run_id)
        if not run or run["status"] != RunStatus.PROCESSING:
            return None

        settled = run["total_imported"] + run["failed_jobs"]
        if settled < run["total_fetched"]:
            return None

        status = RunStatus.FAILED if run["total_imported"] == 0 and run["failed_jobs"] > 0 \
            else RunStatus.COMPLETED
        now = get_utc_now()
        result = await self.collection.update_one(
            {"_id": run_id, "status": RunStatus.PROCESSING},
            {
                "$set": {
                    "status": status,
                    "duration_ms": elapsed_ms(run["started_at"], now),
                    "completed_at": now,
                    "updated_at": now
                }
            }
        )
        if result.modified_count == 0:
            return None

        logger.info(
            f"Import run {run_id} {status}: {run['new_jobs']} new, "
            f"{run['updated_jobs']} updated, {run['failed_jobs']} failed"
        )
        return status

    async def list_runs(
        self,
        page: int = 1,
        limit: int = 50,
        source_filter: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], int]:
        """List runs newest first with an optional substring filter on the feed URL."""
        query = {}
        if source_filter:
            query["source_url"] = {"$regex": re.escape(source_filter), "$options": "i"}

        skip = (page - 1) * limit
        cursor = self.collection.find(query).sort("started_at", -1).skip(skip).limit(limit)
        runs = await cursor.to_list(length=limit)
        total = await self.collection.count_documents(query)
        return runs, total

    async def get_stats(self) -> Dict[str, int]:
        """Sum every run counter across all runs ever recorded."""
        cursor = self.collection.aggregate([
            {
                "$group": {
                    "_id": None,
                    "total_imports": {"$sum": 1},
                    "total_fetched": {"$sum": "$total_fetched"},
                    "total_imported": {"$sum": "$total_imported"},
                    "total_new": {"$sum": "$new_jobs"},
                    "total_updated": {"$sum": "$updated_jobs"},
                    "total_failed": {"$sum": "$failed_jobs"}
                }
            }
        ])
        results = await cursor.to_list(length=1)
        if not results:
            return dict(EMPTY_STATS)

        stats = results[0]
        stats.pop("_id", None)
        return stats


def page_count(total: int, limit: int) -> int:
    """Number of pages needed to show `total` runs."""
    return math.ceil(total / limit) if limit else 0
