"""Main consumer entry point: runs the upsert worker pool."""
import asyncio
import signal
import os
import logging
from consumer.worker import UpsertWorker
from database.connection import DatabaseConnection
from database.repositories.job_repo import JobRepository
from database.repositories.import_run_repo import ImportRunRepository
from shared.config import settings
from shared.work_queue import RedisWorkQueue

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_maintenance(queue: RedisWorkQueue):
    """Redeliver stalled units and drop terminal units past their retention window."""
    recovered = await queue.recover_stalled()
    removed = await queue.purge_expired()
    if removed:
        logger.info(f"Purged {removed} expired queue entries")
    return recovered, removed


async def maintenance_loop(queue: RedisWorkQueue, interval: float):
    """Run queue maintenance every `interval` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            await run_maintenance(queue)
        except Exception as e:
            logger.error(f"Queue maintenance failed: {e}")


def build_workers(queue: RedisWorkQueue, db, concurrency: int, prefix: str):
    """Create the pool of workers sharing one queue and one set of repositories."""
    job_repo = JobRepository(db)
    run_repo = ImportRunRepository(db)
    return [
        UpsertWorker(queue, job_repo, run_repo, worker_id=f"{prefix}-{i}")
        for i in range(1, concurrency + 1)
    ]


async def main():
    """Main entry point for the consumer service."""
    # Generate worker ID prefix from environment or pid
    prefix = os.getenv("WORKER_ID", f"worker-{os.getpid()}")

    logger.info(f"Starting consumer {prefix} with concurrency: {settings.worker_concurrency}")

    # Start-up connectivity failures are fatal
    connection = DatabaseConnection()
    await connection.connect()

    queue = RedisWorkQueue(connection.redis)
    await run_maintenance(queue)

    workers = build_workers(queue, connection.db, settings.worker_concurrency, prefix)
    maintenance_task = asyncio.create_task(maintenance_loop(queue, settings.maintenance_interval))

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        for worker in workers:
            asyncio.create_task(worker.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await asyncio.gather(*(worker.start() for worker in workers))
    finally:
        maintenance_task.cancel()
        await connection.close()
        logger.info("Consumer shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
