"""
Shared fixtures for the docpipeline tests.

Nothing here talks to the network: the LLM provider is a scripted fake,
storage and repositories are the in-memory adapters, and Celery tasks are
called directly.
"""

import json
import os
import uuid
from typing import Callable, List, Optional, Union

import pytest

# Settings are read at import time; pin them before any docpipeline import
os.environ["LLM_PROVIDER"] = "anthropic"
os.environ["LLM_API_KEY"] = "sk-ant-test-mock-key"
os.environ["LOCAL_PDF_EXTRACTION"] = "false"
os.environ["QUEUE_MAX_ATTEMPTS"] = "2"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "memory://"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

from docpipeline.app.core.document_worker import DocumentWorker  # noqa: E402
from docpipeline.app.core.extractor import DocumentExtractor  # noqa: E402
from docpipeline.app.core.llm_provider import LLMProvider  # noqa: E402
from docpipeline.app.core.repositories import (  # noqa: E402
    InMemoryReferenceLetterRepository,
    InMemoryResumeRepository,
)
from docpipeline.app.core.storage import InMemoryStorage  # noqa: E402
from docpipeline.app.core.validator import ExtractedDataValidator  # noqa: E402
from docpipeline.app.models.entities import ReferenceLetter, Resume  # noqa: E402
from docpipeline.app.models.job_models import ProcessingRequest  # noqa: E402
from docpipeline.app.models.llm import LLMRequest, LLMResponse  # noqa: E402

# Minimal PDF header; the extractor never parses it when local extraction is off
PDF_BYTES = b"%PDF-1.4\n%fake reference letter\n"

JANE_DOE_LETTER_TEXT = (
    "To whom it may concern,\n\n"
    "I managed Alex Smith for three years at Acme Corp. Alex is an exceptional "
    "engineer who led our migration to Kubernetes.\n\n"
    "Alex mentors junior engineers with patience and clarity.\n\n"
    "Jane Doe\nVP Engineering, Acme Corp"
)

JANE_DOE_LETTER_JSON = {
    "author": {
        "name": "Jane Doe",
        "title": "VP Engineering",
        "company": "Acme Corp",
        "relationship": "manager",
    },
    "testimonials": [
        {
            "quote": "Alex is an exceptional engineer who led our migration to Kubernetes.",
            "skillsMentioned": ["Kubernetes", "leadership"],
        },
        {
            "quote": "Alex mentors junior engineers with patience and clarity.",
            "skillsMentioned": ["mentoring"],
        },
    ],
    "skillMentions": [
        {"skill": "Kubernetes", "quote": "led our migration to Kubernetes", "context": "infrastructure"},
    ],
    "experienceMentions": [
        {"company": "Acme Corp", "role": "Senior Engineer", "quote": "I managed Alex Smith for three years"},
    ],
    "discoveredSkills": [
        {"skill": "mentoring", "category": "soft", "quote": "mentors junior engineers"},
    ],
}

RESUME_JSON = {
    "name": "Alex Smith",
    "email": "alex@example.com",
    "location": "Berlin, Germany",
    "summary": "Platform engineer.",
    "experience": [
        {"company": "Acme Corp", "title": "Senior Engineer", "startDate": "2019-03-01", "isCurrent": True},
    ],
    "education": [
        {"institution": "TU Berlin", "degree": "MSc", "field": "Computer Science", "endDate": "2018-07-01"},
    ],
    "skills": ["Python", "Kubernetes"],
    "confidence": 0.9,
}


Reply = Union[str, dict, Exception, Callable[[LLMRequest], Union[str, LLMResponse]]]


class FakeProvider(LLMProvider):
    """Scripted provider: pops one reply per call and records every request.

    A reply may be text, a dict (sent as JSON), an exception to raise, or a
    callable taking the request. With ``respond`` set, every call is answered
    by it and the script is ignored.
    """

    name = "fake"

    def __init__(self, replies: Optional[List[Reply]] = None, respond: Optional[Callable[[LLMRequest], Reply]] = None):
        self.replies = list(replies or [])
        self.respond = respond
        self.requests: List[LLMRequest] = []

    def complete(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if self.respond is not None:
            reply = self.respond(request)
        elif not self.replies:
            raise AssertionError("unexpected provider call")
        else:
            reply = self.replies.pop(0)
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, LLMResponse):
            return reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return LLMResponse(content=reply, model="fake-model", input_tokens=100, output_tokens=50, stop_reason="stop")


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def resume_repo():
    return InMemoryResumeRepository()


@pytest.fixture
def letter_repo():
    return InMemoryReferenceLetterRepository()


@pytest.fixture
def extractor(provider):
    return DocumentExtractor(provider, model="anthropic/test-model", max_tokens=1024)


@pytest.fixture
def document_worker(storage, extractor, resume_repo, letter_repo):
    return DocumentWorker(
        storage,
        extractor,
        ExtractedDataValidator(),
        resume_repo,
        letter_repo,
        max_document_bytes=1024 * 1024,
    )


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def pending_letter(letter_repo, user_id):
    letter = ReferenceLetter(user_id=user_id, file_id=uuid.uuid4())
    return letter_repo.create(letter)


@pytest.fixture
def pending_resume(resume_repo, user_id):
    resume = Resume(user_id=user_id, file_id=uuid.uuid4())
    return resume_repo.create(resume)


@pytest.fixture
def make_request(storage, user_id):
    """Upload bytes and build the matching ProcessingRequest."""

    def _make(
        resume_id=None,
        reference_letter_id=None,
        content_type="application/pdf",
        body=PDF_BYTES,
        key=None,
        upload=True,
    ) -> ProcessingRequest:
        key = key or f"uploads/{user_id}/{uuid.uuid4()}"
        if upload:
            storage.put_bytes(key, body, content_type)
        return ProcessingRequest(
            storage_key=key,
            file_id=uuid.uuid4(),
            content_type=content_type,
            user_id=user_id,
            resume_id=resume_id,
            reference_letter_id=reference_letter_id,
        )

    return _make
