"""Fixed-interval and on-demand triggering of the import pipeline."""
import asyncio
import logging
from typing import List, Optional

from scheduler.lease import PipelineLease
from scheduler.pipeline import FeedResult, ImportPipeline
from shared.config import settings
from shared.exceptions import PipelineBusyError

logger = logging.getLogger(__name__)


class ImportScheduler:
    """Runs the pipeline every `interval` seconds and on demand, never both at once."""

    def __init__(self, pipeline: ImportPipeline, lease: PipelineLease, interval: float = None):
        self.pipeline = pipeline
        self.lease = lease
        self.interval = interval or settings.fetch_interval
        self._task: Optional[asyncio.Task] = None

    async def trigger(self) -> List[FeedResult]:
        """Run the pipeline now. Raises PipelineBusyError if another run holds the lease."""
        async with self.lease.hold():
            return await self.pipeline.run()

    async def tick(self):
        """One scheduled invocation; errors are logged, never raised."""
        logger.info("Starting scheduled job import...")
        try:
            await self.trigger()
        except PipelineBusyError:
            logger.warning("Skipping scheduled import, another import is in progress")
        except Exception as e:
            logger.error(f"Error in scheduled job import: {e}")

    async def run_forever(self):
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    def start(self):
        """Start the periodic loop as a background task."""
        if self._task is None:
            logger.info(f"Scheduling job fetch every {self.interval}s")
            self._task = asyncio.create_task(self.run_forever())

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
