# docpipeline/app/models/job_models.py

from pydantic import BaseModel, Field, model_validator
from typing import Optional, Dict, Any
from enum import Enum
from uuid import UUID


class JobState(str, Enum):
    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    STARTED = "STARTED"
    RETRY = "RETRY"
    FAILURE = "FAILURE"
    SUCCESS = "SUCCESS"
    REVOKED = "REVOKED"
    UNKNOWN = "UNKNOWN"


class JobKind(str, Enum):
    """Job kinds the queue accepts; the value is the Celery task name."""
    REFERENCE_LETTER = "process_reference_letter"
    RESUME = "process_resume"
    DOCUMENT = "process_document"


class ProcessingRequest(BaseModel):
    """Envelope for one document-processing job.

    At least one of ``resume_id`` / ``reference_letter_id`` must be set; the
    worker runs the extractor for every ID present over a single download.
    """
    storage_key: str = Field(..., min_length=1)
    file_id: UUID
    content_type: str
    user_id: UUID
    resume_id: Optional[UUID] = None
    reference_letter_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _require_target(self):
        if self.resume_id is None and self.reference_letter_id is None:
            raise ValueError("at least one of resume_id or reference_letter_id must be set")
        return self

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe dict for the task serializer."""
        return self.model_dump(mode="json")


class ProcessingOutcome(BaseModel):
    """What a single delivery did, returned as the task result."""
    file_id: UUID
    resume_status: Optional[str] = None
    reference_letter_status: Optional[str] = None
    skipped: bool = False
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    job_id: str
    status: JobState
    info: Optional[Dict[str, Any]] = None


class JobResultResponse(BaseModel):
    job_id: str
    status: JobState
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
