# docpipeline/app/core/tasks.py

import time

from celery.exceptions import Reject, SoftTimeLimitExceeded
from celery.utils.log import get_task_logger
from celery.utils.time import get_exponential_backoff_interval

from docpipeline.app.config import settings
from docpipeline.app.core.document_worker import ProcessingContext
from docpipeline.app.core.errors import JobCancelledError, RetryJobError
from docpipeline.app.models.job_models import JobKind, ProcessingRequest
from docpipeline.worker import worker as worker_module
from docpipeline.worker.worker import celery_app

logger = get_task_logger(__name__)

TASK_OPTIONS = dict(
    bind=True,
    autoretry_for=(RetryJobError,),
    retry_backoff=settings.QUEUE_RETRY_BACKOFF,
    retry_backoff_max=settings.QUEUE_RETRY_BACKOFF_MAX,
    retry_jitter=True,
    max_retries=max(settings.QUEUE_MAX_ATTEMPTS - 1, 0),  # attempts = 1 + retries
    soft_time_limit=settings.CELERY_SOFT_TIME_LIMIT,  #  600s
    time_limit=settings.CELERY_HARD_TIME_LIMIT,       #  660s
    acks_late=True,
    reject_on_worker_lost=True,
)


def _retry(task, exc):
    countdown = get_exponential_backoff_interval(
        factor=settings.QUEUE_RETRY_BACKOFF,
        retries=task.request.retries,
        maximum=settings.QUEUE_RETRY_BACKOFF_MAX,
        full_jitter=True,
    )
    return task.retry(exc=exc, countdown=countdown)


def _run(task, kind: JobKind, payload: dict) -> dict:
    request = ProcessingRequest.model_validate(payload)
    ctx = ProcessingContext(
        attempt=task.request.retries + 1,
        max_attempts=task.max_retries + 1,
        # the threads and solo pools do not enforce time limits
        deadline=time.monotonic() + settings.CELERY_SOFT_TIME_LIMIT,
        cancel_event=worker_module.shutdown_event,
    )
    doc_worker = worker_module.get_document_worker()
    logger.info("Starting %s file_id=%s attempt=%d", kind.value, request.file_id, ctx.attempt)

    try:
        outcome = doc_worker.process(request, ctx)
    except RetryJobError:
        # autoretry_for schedules the redelivery with backoff
        raise
    except JobCancelledError as exc:
        if ctx.expired and not ctx.cancel_event.is_set():
            # deadline reached between steps: same handling as the soft time limit
            _timed_out(task, doc_worker, request, ctx, exc)
        # hand the message back to the broker; this delivery does not count as an attempt
        logger.warning("Cancelled %s file_id=%s: %s", kind.value, request.file_id, exc)
        raise Reject(str(exc), requeue=True)
    except SoftTimeLimitExceeded as exc:
        _timed_out(task, doc_worker, request, ctx, exc)
    except Exception as exc:
        if not ctx.is_final_attempt:
            logger.exception("Unexpected error for file_id=%s on attempt %d", request.file_id, ctx.attempt)
            raise _retry(task, exc)
        doc_worker.record_failure(request, f"internal error: {exc} (gave up after {ctx.attempt} attempts)")
        raise

    logger.info(
        "Finished %s file_id=%s resume=%s reference_letter=%s",
        kind.value, request.file_id, outcome.resume_status, outcome.reference_letter_status,
    )
    return outcome.model_dump(mode="json")


def _timed_out(task, doc_worker, request: ProcessingRequest, ctx: ProcessingContext, exc: Exception) -> None:
    if not ctx.is_final_attempt:
        logger.warning("Time limit hit for file_id=%s on attempt %d", request.file_id, ctx.attempt)
        raise _retry(task, exc)
    doc_worker.record_failure(
        request, f"processing timed out after {settings.CELERY_SOFT_TIME_LIMIT}s (gave up after {ctx.attempt} attempts)"
    )
    raise exc


@celery_app.task(name=JobKind.REFERENCE_LETTER.value, **TASK_OPTIONS)
def process_reference_letter(self, payload: dict):
    return _run(self, JobKind.REFERENCE_LETTER, payload)


@celery_app.task(name=JobKind.RESUME.value, **TASK_OPTIONS)
def process_resume(self, payload: dict):
    return _run(self, JobKind.RESUME, payload)


@celery_app.task(name=JobKind.DOCUMENT.value, **TASK_OPTIONS)
def process_document(self, payload: dict):
    """Unified job: one download and one text extraction for every ID present."""
    return _run(self, JobKind.DOCUMENT, payload)
