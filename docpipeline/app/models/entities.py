# docpipeline/app/models/entities.py

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (EntityStatus.COMPLETED, EntityStatus.FAILED)


# Statuses from which the worker may (re)enter processing.
PROCESSABLE_STATUSES = frozenset({EntityStatus.PENDING, EntityStatus.PROCESSING})


class ProcessedEntity(BaseModel):
    """Shared shape of a document whose contents are extracted by the worker.

    The three mutators below are the only way status changes; each one sets
    status together with the fields that depend on it, so extracted_data is
    only ever present on completed rows and error_message only on failed ones.
    """
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    file_id: Optional[UUID] = None
    status: EntityStatus = EntityStatus.PENDING
    extracted_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def mark_processing(self) -> None:
        if self.status.is_terminal:
            raise ValueError(f"cannot move {self.status.value} entity back to processing")
        self.status = EntityStatus.PROCESSING
        self.extracted_data = None
        self.error_message = None
        self.updated_at = utcnow()

    def mark_completed(self, extracted_data: Dict[str, Any]) -> None:
        self.status = EntityStatus.COMPLETED
        self.extracted_data = extracted_data
        self.error_message = None
        self.updated_at = utcnow()

    def mark_failed(self, error_message: str) -> None:
        self.status = EntityStatus.FAILED
        self.extracted_data = None
        self.error_message = error_message
        self.updated_at = utcnow()

    def reset_to_pending(self) -> None:
        """User-initiated retry; the only path out of a terminal status."""
        self.status = EntityStatus.PENDING
        self.extracted_data = None
        self.error_message = None
        self.updated_at = utcnow()


class Resume(ProcessedEntity):
    pass


class ReferenceLetter(ProcessedEntity):
    title: Optional[str] = None
    author_name: Optional[str] = None
    author_title: Optional[str] = None
    organization: Optional[str] = None

    def mark_completed(self, extracted_data: Dict[str, Any]) -> None:
        super().mark_completed(extracted_data)
        author = extracted_data.get("author") or {}
        if author.get("name"):
            self.author_name = author["name"]
        if author.get("title"):
            self.author_title = author["title"]
        if author.get("company"):
            self.organization = author["company"]
