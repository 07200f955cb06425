"""Canonical job record and queue unit models."""
from typing import Any, Dict, Optional
from datetime import datetime
from pydantic import BaseModel, Field, PrivateAttr

from shared.utils import generate_unit_id, get_utc_now


class JobOutcome:
    """Reconciliation outcome constants."""
    NEW = "new"
    UPDATED = "updated"


class JobRecord(BaseModel):
    """Normalized job posting, independent of the feed dialect it came from."""
    external_id: str = ""
    source_url: str
    title: str = ""
    description: str = ""
    company: str = ""
    location: str = ""
    job_type: str = ""
    category: str = ""
    salary: str = ""
    apply_url: str = ""
    published_date: datetime = Field(default_factory=get_utc_now)
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def job_key(self) -> str:
        """Key used in ledger failure entries."""
        return self.external_id or "unknown"

    def to_document(self) -> Dict[str, Any]:
        """Fields written to the jobs collection on every reconciliation."""
        return self.model_dump()


class QueueUnit(BaseModel):
    """One job record in transit between enqueue and its terminal outcome."""
    id: str = Field(default_factory=generate_unit_id)
    job: JobRecord
    source_url: str
    run_id: str
    attempts_made: int = 0
    redeliveries: int = 0
    enqueued_at: datetime = Field(default_factory=get_utc_now)
    last_error: Optional[str] = None
    # Outcome of an attempt whose upsert landed but whose ledger write failed
    outcome: Optional[str] = None

    # Exact serialized form as stored in Redis, needed to remove it from the active list.
    _receipt: Optional[str] = PrivateAttr(default=None)

    @property
    def receipt(self) -> Optional[str]:
        return self._receipt

    @classmethod
    def from_payload(cls, payload: str) -> "QueueUnit":
        unit = cls.model_validate_json(payload)
        unit._receipt = payload
        return unit
