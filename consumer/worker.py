"""Upsert worker: reconciles queued job records into the jobs collection."""
import asyncio
import logging

from database.repositories.job_repo import JobRepository
from database.repositories.import_run_repo import ImportRunRepository
from shared.config import settings
from shared.exceptions import PersistenceError, ValidationError
from shared.models import JobOutcome, QueueUnit
from shared.work_queue import RedisWorkQueue

logger = logging.getLogger(__name__)


def validate_record(unit: QueueUnit):
    """Raise ValidationError when the record lacks its identity or title."""
    job = unit.job
    if not job.external_id or not job.title:
        raise ValidationError(job.job_key, "Missing required fields: external_id or title")


def failure_reason(error: Exception) -> str:
    """Short ledger label for a failed unit."""
    if isinstance(error, ValidationError):
        return "Validation failed"
    if isinstance(error, PersistenceError):
        return "Persistence failed"
    return "Import failed"


class UpsertWorker:
    """Worker that drains the import queue one unit at a time."""

    def __init__(
        self,
        queue: RedisWorkQueue,
        job_repo: JobRepository,
        run_repo: ImportRunRepository,
        worker_id: str = "worker-1",
        poll_interval: float = None
    ):
        self.queue = queue
        self.job_repo = job_repo
        self.run_repo = run_repo
        self.worker_id = worker_id
        self.poll_interval = poll_interval if poll_interval is not None else settings.consumer_poll_interval
        self.running = True

    async def start(self):
        """Start the worker loop."""
        logger.info(f"Worker {self.worker_id} starting...")

        while self.running:
            try:
                unit = await self.queue.reserve()
            except Exception as e:
                logger.error(f"Worker {self.worker_id} could not reserve a unit: {e}")
                await asyncio.sleep(self.poll_interval)
                continue

            if unit:
                try:
                    await self.process_unit(unit)
                except Exception as e:
                    # Unit stays on the active list until the stalled-unit sweep recovers it
                    logger.error(f"Worker {self.worker_id} could not settle unit {unit.id}: {e}")
            else:
                # No units available, wait before polling again
                await asyncio.sleep(self.poll_interval)

    async def stop(self):
        """Stop the worker gracefully."""
        logger.info(f"Worker {self.worker_id} stopping...")
        self.running = False

    async def process_unit(self, unit: QueueUnit):
        """Reconcile one unit and settle it on the queue."""
        logger.info(f"Worker {self.worker_id} processing job: {unit.job.title or unit.job.job_key}")

        try:
            outcome = await self.reconcile(unit)
        except Exception as e:
            await self._handle_failure(unit, e)
            return

        await self.queue.ack(unit)
        await self.run_repo.complete_if_drained(unit.run_id)
        logger.debug(f"Unit {unit.id} reconciled as {outcome}")

    async def reconcile(self, unit: QueueUnit) -> str:
        """Validate, upsert and count one record. Returns the outcome."""
        validate_record(unit)
        record = unit.job
        if record.source_url != unit.source_url:
            record = record.model_copy(update={"source_url": unit.source_url})

        outcome = await self.job_repo.upsert_job(record)
        if unit.outcome == JobOutcome.NEW:
            # An earlier attempt inserted the document, so this is still its first reconciliation
            outcome = JobOutcome.NEW
        unit.outcome = outcome

        await self.run_repo.record_outcome(unit.run_id, outcome)
        return outcome

    async def _handle_failure(self, unit: QueueUnit, error: Exception):
        """Hand the failure to the queue's retry policy; ledger the unit once it is dead."""
        logger.error(f"Failed to process job {unit.job.job_key}: {error}")

        dead = await self.queue.fail(unit, str(error))
        if not dead:
            return

        await self.run_repo.record_failure(
            unit.run_id,
            unit.job.job_key,
            failure_reason(error),
            str(error)
        )
        await self.run_repo.complete_if_drained(unit.run_id)
