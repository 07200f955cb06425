"""The fetch -> normalize -> open run -> enqueue pipeline over all configured feeds."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from database.repositories.import_run_repo import ImportRunRepository
from feeds.fetcher import FeedFetcher
from feeds.normalizer import FeedNormalizer
from shared.config import settings
from shared.exceptions import FetchError
from shared.work_queue import RedisWorkQueue

logger = logging.getLogger(__name__)


@dataclass
class FeedResult:
    """Outcome of importing one feed."""
    url: str
    success: bool
    jobs_queued: int = 0
    import_run_id: Optional[str] = None
    error: Optional[str] = None


class ImportPipeline:
    """Imports every configured feed; one feed's failure never affects another."""

    def __init__(
        self,
        queue: RedisWorkQueue,
        run_repo: ImportRunRepository,
        fetcher: FeedFetcher = None,
        normalizer: FeedNormalizer = None,
        feed_urls: List[str] = None,
        fetch_concurrency: int = None
    ):
        self.queue = queue
        self.run_repo = run_repo
        self.fetcher = fetcher or FeedFetcher()
        self.normalizer = normalizer or FeedNormalizer()
        self.feed_urls = list(feed_urls if feed_urls is not None else settings.feed_urls)
        self.fetch_concurrency = fetch_concurrency or settings.fetch_concurrency

    async def run(self) -> List[FeedResult]:
        """Import all feeds with bounded concurrency. Results follow the configured order."""
        semaphore = asyncio.Semaphore(self.fetch_concurrency)

        async def bounded(url: str) -> FeedResult:
            async with semaphore:
                return await self.import_feed(url)

        results = await asyncio.gather(*(bounded(url) for url in self.feed_urls))

        queued = sum(result.jobs_queued for result in results)
        failed = sum(1 for result in results if not result.success)
        logger.info(f"Import pipeline finished: {queued} jobs queued, {failed} feeds failed")
        return list(results)

    async def import_feed(self, url: str) -> FeedResult:
        """Import one feed. Errors are reported on its result, never raised to siblings."""
        try:
            return await self._import_feed(url)
        except Exception as e:
            logger.error(f"Unexpected error importing {url}: {e}")
            return FeedResult(url=url, success=False, error=str(e))

    async def _import_feed(self, url: str) -> FeedResult:
        """Fetch one feed, open its run and enqueue its records."""
        started = time.monotonic()

        try:
            payload = await self.fetcher.fetch(url)
        except FetchError as e:
            logger.error(f"Skipping {url} due to error: {e.message}")
            return FeedResult(url=url, success=False, error=e.message)

        records = self.normalizer.normalize(payload, url)
        run_id = await self.run_repo.open_run(url, len(records))

        try:
            if not records:
                duration_ms = int((time.monotonic() - started) * 1000)
                await self.run_repo.close_run_if_empty(run_id, duration_ms)
                logger.info(f"Import completed for {url}: no jobs fetched")
                return FeedResult(url=url, success=True, jobs_queued=0, import_run_id=run_id)

            queued = await self.queue.enqueue_bulk(run_id, url, records)
        except Exception as e:
            # Once the run exists it must not be left in processing
            logger.error(f"Failed to import jobs from {url}: {e}")
            await self.run_repo.fail_run(run_id, str(e))
            return FeedResult(url=url, success=False, import_run_id=run_id, error=str(e))

        logger.info(f"Import initiated for {url}: {queued} jobs queued")
        return FeedResult(url=url, success=True, jobs_queued=queued, import_run_id=run_id)
