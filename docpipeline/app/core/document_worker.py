# docpipeline/app/core/document_worker.py
"""Download → extract → validate → persist, for one ProcessingRequest.

The worker is the only component that writes terminal entity state. Lower
layers raise typed errors from ``errors.py``; here they become one of:

* non-retryable: entity marked failed, job reported as done;
* retryable: ``RetryJobError`` so the queue redelivers with backoff, or on the
  final attempt the entity is marked failed;
* ``JobCancelledError``: propagated untouched, no terminal write.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from pydantic import BaseModel

from docpipeline.app.config import Settings, settings as default_settings
from docpipeline.app.core.errors import DocumentProcessingError, JobCancelledError, RetryJobError
from docpipeline.app.core.extractor import DocumentExtractor
from docpipeline.app.core.repositories import EntityRepository, ReferenceLetterRepository, ResumeRepository
from docpipeline.app.core.storage import Storage, read_bounded
from docpipeline.app.core.validator import ExtractedDataValidator
from docpipeline.app.models.entities import EntityStatus, ProcessedEntity
from docpipeline.app.models.job_models import ProcessingOutcome, ProcessingRequest
from docpipeline.app.models.llm import MediaType

logger = logging.getLogger(__name__)

MISSING = "missing"


class ProcessingContext:
    """Per-delivery state: attempt counters, deadline and cancellation."""

    def __init__(
        self,
        attempt: int = 1,
        max_attempts: int = 1,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.attempt = attempt
        self.max_attempts = max(max_attempts, 1)
        # absolute value on ``clock``'s scale
        self.deadline = deadline
        self.cancel_event = cancel_event or threading.Event()
        self._clock = clock

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    def cancel(self) -> None:
        self.cancel_event.set()

    def check(self) -> None:
        if self.cancel_event.is_set():
            raise JobCancelledError("processing cancelled")
        if self.expired:
            raise JobCancelledError("processing deadline exceeded")


@dataclass
class _Target:
    kind: str
    entity: ProcessedEntity
    repo: EntityRepository
    extract: Callable[..., BaseModel]
    validate: Callable[[BaseModel], BaseModel]


class DocumentWorker:
    def __init__(
        self,
        storage: Storage,
        extractor: DocumentExtractor,
        validator: ExtractedDataValidator,
        resume_repo: ResumeRepository,
        letter_repo: ReferenceLetterRepository,
        max_document_bytes: Optional[int] = None,
    ):
        self.storage = storage
        self.extractor = extractor
        self.validator = validator
        self.resume_repo = resume_repo
        self.letter_repo = letter_repo
        self.max_document_bytes = max_document_bytes

    @classmethod
    def from_settings(
        cls,
        storage: Storage,
        extractor: DocumentExtractor,
        resume_repo: ResumeRepository,
        letter_repo: ReferenceLetterRepository,
        cfg: Settings = default_settings,
    ) -> "DocumentWorker":
        return cls(
            storage,
            extractor,
            ExtractedDataValidator(),
            resume_repo,
            letter_repo,
            max_document_bytes=cfg.MAX_DOCUMENT_BYTES,
        )

    def process(self, request: ProcessingRequest, ctx: Optional[ProcessingContext] = None) -> ProcessingOutcome:
        ctx = ctx or ProcessingContext()
        ctx.check()
        outcome = ProcessingOutcome(file_id=request.file_id)

        targets = self._claim_targets(request, outcome)
        if not targets:
            outcome.skipped = True
            logger.info("Nothing to process for file_id=%s", request.file_id)
            return outcome

        logger.info(
            "Processing file_id=%s key=%s kinds=%s attempt=%d/%d",
            request.file_id, request.storage_key, ",".join(t.kind for t in targets),
            ctx.attempt, ctx.max_attempts,
        )

        try:
            # an unknown media type must fail before any download or model call
            media_type = MediaType.from_content_type(request.content_type)
            ctx.check()
            stream = self.storage.download(request.storage_key)
            document = read_bounded(stream, request.storage_key, self.max_document_bytes)
            ctx.check()
            text = self.extractor.extract_text(document, media_type)
        except DocumentProcessingError as exc:
            self._handle_error(request, ctx, targets, exc, outcome)
            return outcome

        # resume runs first so its skills can steer the letter extraction
        resume_skills = self._finished_resume_skills(request)
        retry_errors: List[DocumentProcessingError] = []
        retry_targets: List[_Target] = []
        for target in targets:
            ctx.check()
            try:
                if target.kind == "reference_letter":
                    extracted = target.extract(text, profile_skills=resume_skills)
                else:
                    extracted = target.extract(text)
                data = target.validate(extracted)
                ctx.check()
                target.entity.mark_completed(data.to_json_dict())
                self._save(target)
                if target.kind == "resume":
                    resume_skills = list(data.skills)
            except DocumentProcessingError as exc:
                if exc.retryable:
                    retry_errors.append(exc)
                    retry_targets.append(target)
                else:
                    self._fail(target, str(exc), outcome)
                continue
            self._record(target, outcome)
            logger.info("Completed %s %s (file_id=%s)", target.kind, target.entity.id, request.file_id)

        if retry_errors:
            self._handle_error(request, ctx, retry_targets, retry_errors[0], outcome)
        return outcome

    def record_failure(self, request: ProcessingRequest, message: str) -> ProcessingOutcome:
        """Persist ``message`` as the terminal failure of every non-terminal target.

        Used by the task layer when an attempt dies outside ``process`` (time
        limits, unexpected errors) and no further delivery will happen.
        """
        outcome = ProcessingOutcome(file_id=request.file_id, error=message)
        for target in self._claim_targets(request, outcome):
            self._fail(target, message, outcome)
        return outcome

    # ---------- Helpers ----------

    def _claim_targets(self, request: ProcessingRequest, outcome: ProcessingOutcome) -> List[_Target]:
        targets = []
        if request.resume_id is not None:
            target = self._claim(
                "resume", request.resume_id, self.resume_repo,
                self.extractor.extract_resume_data, self.validator.validate_resume_data, outcome,
            )
            if target is not None:
                targets.append(target)
        if request.reference_letter_id is not None:
            target = self._claim(
                "reference_letter", request.reference_letter_id, self.letter_repo,
                self.extractor.extract_letter_data, self.validator.validate_letter_data, outcome,
            )
            if target is not None:
                targets.append(target)
        return targets

    def _finished_resume_skills(self, request: ProcessingRequest) -> List[str]:
        """Skills of a resume a previous delivery of this unified job already completed."""
        if request.resume_id is None or request.reference_letter_id is None:
            return []
        resume = self.resume_repo.get_by_id(request.resume_id)
        if resume is None or resume.status != EntityStatus.COMPLETED or not resume.extracted_data:
            return []
        return list(resume.extracted_data.get("skills") or [])

    def _claim(self, kind, entity_id, repo, extract, validate, outcome) -> Optional[_Target]:
        entity = repo.get_by_id(entity_id)
        if entity is None:
            logger.info("%s %s not found, skipping", kind, entity_id)
            setattr(outcome, f"{kind}_status", MISSING)
            return None
        if entity.status.is_terminal:
            logger.info("%s %s already %s, skipping", kind, entity_id, entity.status.value)
            setattr(outcome, f"{kind}_status", entity.status.value)
            return None

        claimed = repo.mark_processing(entity_id)
        if claimed is None:
            # deleted or finished by a concurrent delivery since the read above
            current = repo.get_by_id(entity_id)
            status = current.status.value if current is not None else MISSING
            logger.info("%s %s no longer processable (%s), skipping", kind, entity_id, status)
            setattr(outcome, f"{kind}_status", status)
            return None

        setattr(outcome, f"{kind}_status", claimed.status.value)
        return _Target(kind=kind, entity=claimed, repo=repo, extract=extract, validate=validate)

    def _handle_error(
        self,
        request: ProcessingRequest,
        ctx: ProcessingContext,
        targets: List[_Target],
        exc: DocumentProcessingError,
        outcome: ProcessingOutcome,
    ) -> None:
        if not exc.retryable:
            logger.error("Processing failed for file_id=%s: %s", request.file_id, exc)
            for target in targets:
                self._fail(target, str(exc), outcome)
            return

        if not ctx.is_final_attempt:
            logger.warning(
                "Retryable failure for file_id=%s on attempt %d/%d: %s",
                request.file_id, ctx.attempt, ctx.max_attempts, exc,
            )
            raise RetryJobError(exc, ctx.attempt)

        message = f"{exc} (gave up after {ctx.attempt} attempts)"
        logger.error("Retries exhausted for file_id=%s: %s", request.file_id, message)
        for target in targets:
            self._fail(target, message, outcome)

    def _fail(self, target: _Target, message: str, outcome: ProcessingOutcome) -> None:
        target.entity.mark_failed(message)
        self._save(target)
        self._record(target, outcome)
        outcome.error = message
        logger.error("Marked %s %s failed: %s", target.kind, target.entity.id, message)

    def _save(self, target: _Target) -> None:
        if not target.repo.update(target.entity):
            logger.info("%s %s was deleted during processing", target.kind, target.entity.id)

    def _record(self, target: _Target, outcome: ProcessingOutcome) -> None:
        setattr(outcome, f"{target.kind}_status", target.entity.status.value)
