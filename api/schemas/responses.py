"""Response schemas for API endpoints."""
from typing import List, Optional
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from api.models.import_run import ImportRunModel


class CamelModel(BaseModel):
    """Base for responses serialized with camelCase keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class FeedTriggerResult(CamelModel):
    """Per-feed result of a triggered import."""
    url: str = Field(..., description="Feed URL")
    success: bool = Field(..., description="Whether the feed was fetched and queued")
    jobs_queued: int = Field(default=0, description="Number of jobs queued for import")
    import_run_id: Optional[str] = Field(None, description="Import run tracking this feed")
    error: Optional[str] = Field(None, description="Fetch or enqueue error")


class TriggerResponse(CamelModel):
    """Response schema for a triggered import."""
    success: bool = True
    message: str = Field(default="Import triggered successfully")
    results: List[FeedTriggerResult] = Field(default_factory=list)


class Pagination(CamelModel):
    """Pagination block of list responses."""
    page: int
    limit: int
    total: int
    pages: int


class HistoryResponse(CamelModel):
    """Response schema for import history."""
    success: bool = True
    data: List[ImportRunModel] = Field(default_factory=list)
    pagination: Pagination


class ImportStats(CamelModel):
    """Sums of run counters across all runs."""
    total_imports: int = 0
    total_fetched: int = 0
    total_imported: int = 0
    total_new: int = 0
    total_updated: int = 0
    total_failed: int = 0


class StatsResponse(CamelModel):
    """Response schema for import statistics."""
    success: bool = True
    stats: ImportStats


class QueueCounts(CamelModel):
    """Number of work queue units per state."""
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
