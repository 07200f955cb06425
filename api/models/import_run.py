"""Import run model definitions."""
from enum import Enum
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class RunStatusEnum(str, Enum):
    """Import run status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReasonModel(BaseModel):
    """One failed job recorded on a run."""
    job_key: str
    reason: str
    error: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ImportRunModel(BaseModel):
    """Import run model for database representation."""
    id: str = Field(alias="_id")
    source_url: str
    started_at: datetime
    status: RunStatusEnum
    total_fetched: int = 0
    total_imported: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    failed_jobs: int = 0
    failure_reasons: List[FailureReasonModel] = Field(default_factory=list)
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        alias_generator = to_camel
        populate_by_name = True
