"""Job repository: reconciliation of normalized postings into the jobs collection."""
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from shared.exceptions import PersistenceError
from shared.models import JobOutcome, JobRecord
from shared.utils import get_utc_now

logger = logging.getLogger(__name__)


class JobRepository:
    """Repository for job posting documents keyed on (external_id, source_url)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.jobs

    async def upsert_job(self, record: JobRecord) -> str:
        """
        Insert the record if its key is absent, otherwise overwrite it.

        Runs as one find_one_and_update with upsert so concurrent deliveries of
        the same key cannot both insert. Returns JobOutcome.NEW or JobOutcome.UPDATED.
        """
        try:
            return await self._upsert(record)
        except DuplicateKeyError:
            # Lost an insert race against another worker; the document exists now
            logger.info(f"Concurrent insert of {record.external_id}, retrying as update")
            try:
                return await self._upsert(record)
            except PyMongoError as e:
                raise PersistenceError(f"Failed to import job {record.external_id}: {e}") from e
        except PyMongoError as e:
            raise PersistenceError(f"Failed to import job {record.external_id}: {e}") from e

    async def _upsert(self, record: JobRecord) -> str:
        now = get_utc_now()
        fields = record.to_document()
        fields["updated_at"] = now

        before = await self.collection.find_one_and_update(
            {"external_id": record.external_id, "source_url": record.source_url},
            {
                "$set": fields,
                "$setOnInsert": {"created_at": now}
            },
            upsert=True,
            return_document=ReturnDocument.BEFORE
        )
        return JobOutcome.NEW if before is None else JobOutcome.UPDATED
