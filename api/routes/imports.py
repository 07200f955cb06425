"""Import routes for the REST API."""
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status

from api.dependencies import get_queue, get_run_repo, get_scheduler
from api.models.import_run import ImportRunModel
from api.schemas.responses import (
    FeedTriggerResult,
    TriggerResponse,
    Pagination,
    HistoryResponse,
    ImportStats,
    StatsResponse,
    QueueCounts
)
from database.repositories.import_run_repo import ImportRunRepository, page_count
from scheduler.scheduler import ImportScheduler
from shared.exceptions import PipelineBusyError
from shared.work_queue import RedisWorkQueue


router = APIRouter(prefix="/import", tags=["import"])


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_import(scheduler: ImportScheduler = Depends(get_scheduler)):
    """
    Run the import pipeline for every configured feed.

    Fetching and enqueueing happen before the response; the queued jobs are
    reconciled asynchronously by the consumer.
    """
    try:
        results = await scheduler.trigger()
    except PipelineBusyError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )

    return TriggerResponse(
        results=[
            FeedTriggerResult(
                url=result.url,
                success=result.success,
                jobs_queued=result.jobs_queued,
                import_run_id=result.import_run_id,
                error=result.error
            )
            for result in results
        ]
    )


@router.get("/history", response_model=HistoryResponse)
async def get_import_history(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    file_name: Optional[str] = Query(None, alias="fileName"),
    run_repo: ImportRunRepository = Depends(get_run_repo)
):
    """List import runs, newest first, optionally filtered by feed URL substring."""
    runs, total = await run_repo.list_runs(page=page, limit=limit, source_filter=file_name)

    return HistoryResponse(
        data=[ImportRunModel(**run) for run in runs],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            pages=page_count(total, limit)
        )
    )


@router.get("/stats", response_model=StatsResponse)
async def get_import_stats(run_repo: ImportRunRepository = Depends(get_run_repo)):
    """Aggregate counters across all import runs."""
    stats = await run_repo.get_stats()
    return StatsResponse(stats=ImportStats(**stats))


@router.get("/queue", response_model=QueueCounts)
async def get_queue_counts(queue: RedisWorkQueue = Depends(get_queue)):
    """Current size of each work queue state."""
    return QueueCounts(**await queue.counts())
