# Schemas module
from .responses import (
    FeedTriggerResult,
    TriggerResponse,
    Pagination,
    HistoryResponse,
    ImportStats,
    StatsResponse,
    QueueCounts
)

__all__ = [
    "FeedTriggerResult",
    "TriggerResponse",
    "Pagination",
    "HistoryResponse",
    "ImportStats",
    "StatsResponse",
    "QueueCounts"
]
