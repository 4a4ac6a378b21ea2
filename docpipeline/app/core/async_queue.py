# docpipeline/app/core/async_queue.py

import logging
from typing import Any, Dict, Optional, Union

from celery import Celery
from celery.result import AsyncResult

from docpipeline.app.models.job_models import (
    JobKind,
    JobResultResponse,
    JobState,
    JobStatusResponse,
    ProcessingRequest,
)
from docpipeline.worker.worker import celery_app

logger = logging.getLogger(__name__)

DOCUMENTS_QUEUE = "documents"


class JobQueue:
    """Enqueues document jobs on Celery and reads their state back."""

    def __init__(self, app: Celery = celery_app, queue_name: str = DOCUMENTS_QUEUE):
        self.app = app
        self.queue_name = queue_name

    # ---------- Enqueue ----------

    def enqueue_reference_letter_processing(self, request: Union[ProcessingRequest, Dict[str, Any]]) -> str:
        request = self._coerce(request)
        if request.reference_letter_id is None:
            raise ValueError("reference_letter_id is required for reference letter processing")
        if request.resume_id is not None:
            raise ValueError("resume_id must not be set for reference letter processing; use enqueue_document_processing")
        return self._submit(JobKind.REFERENCE_LETTER, request)

    def enqueue_resume_processing(self, request: Union[ProcessingRequest, Dict[str, Any]]) -> str:
        request = self._coerce(request)
        if request.resume_id is None:
            raise ValueError("resume_id is required for resume processing")
        if request.reference_letter_id is not None:
            raise ValueError("reference_letter_id must not be set for resume processing; use enqueue_document_processing")
        return self._submit(JobKind.RESUME, request)

    def enqueue_document_processing(self, request: Union[ProcessingRequest, Dict[str, Any]]) -> str:
        # at-least-one-ID is enforced by ProcessingRequest itself
        request = self._coerce(request)
        return self._submit(JobKind.DOCUMENT, request)

    @staticmethod
    def _coerce(request: Union[ProcessingRequest, Dict[str, Any]]) -> ProcessingRequest:
        if isinstance(request, ProcessingRequest):
            return request
        return ProcessingRequest.model_validate(request)

    def _submit(self, kind: JobKind, request: ProcessingRequest) -> str:
        # Route explicitly; positional payload matches the task signature
        async_result = self.app.send_task(
            kind.value,
            args=[request.to_payload()],
            queue=self.queue_name,
            routing_key=self.queue_name,
        )
        logger.info(
            "Enqueued %s job_id=%s file_id=%s resume_id=%s reference_letter_id=%s",
            kind.value, async_result.id, request.file_id, request.resume_id, request.reference_letter_id,
        )
        return async_result.id

    # ---------- Status ----------

    def get_status(self, job_id: str) -> JobStatusResponse:
        result = AsyncResult(job_id, app=self.app)
        info = result.info if isinstance(result.info, dict) else None
        return JobStatusResponse(job_id=job_id, status=_state(result.status), info=info)

    def get_result(self, job_id: str) -> JobResultResponse:
        result = AsyncResult(job_id, app=self.app)
        state = _state(result.status)
        if state == JobState.SUCCESS:
            return JobResultResponse(job_id=job_id, status=state, result=result.result)
        if state == JobState.FAILURE:
            return JobResultResponse(job_id=job_id, status=state, error=str(result.result))
        return JobResultResponse(job_id=job_id, status=state)


def _state(status: Optional[str]) -> JobState:
    try:
        return JobState(status)
    except ValueError:
        return JobState.UNKNOWN


# Singleton
queue = JobQueue()
