# docpipeline/worker/worker.py

import signal
import threading
from functools import lru_cache

from celery import Celery
from celery.signals import worker_process_init, worker_shutting_down

from docpipeline.app.config import Settings, settings
from docpipeline.app.core.document_worker import DocumentWorker
from docpipeline.app.core.extractor import DocumentExtractor
from docpipeline.app.core.llm_provider import build_provider
from docpipeline.app.core.repositories import (
    SqlAlchemyReferenceLetterRepository,
    SqlAlchemyResumeRepository,
    build_session_factory,
)
from docpipeline.app.core.storage import S3Storage

# Create Celery app
celery_app = Celery("docpipeline")
celery_app.config_from_object("docpipeline.celeryconfig")

# Set on warm/cold shutdown; in-flight jobs check it and stop without a terminal write
shutdown_event = threading.Event()

# Ensure tasks are imported on worker start
import docpipeline.app.core.tasks       # noqa: F401,E402


@worker_shutting_down.connect
def _on_shutdown(sender=None, sig=None, how=None, exitcode=None, **kwargs):
    shutdown_event.set()


def _install_shutdown_handlers():
    for signum in (signal.SIGTERM, signal.SIGQUIT):
        previous = signal.getsignal(signum)

        def _handler(sig, frame, previous=previous):
            shutdown_event.set()
            if callable(previous):
                previous(sig, frame)

        signal.signal(signum, _handler)


@worker_process_init.connect
def _on_process_init(sender=None, **kwargs):
    # prefork children never receive worker_shutting_down; the parent signals them directly
    _install_shutdown_handlers()


def build_document_worker(cfg: Settings = settings) -> DocumentWorker:
    """Wire the production collaborators: LiteLLM, S3/MinIO, SQLAlchemy."""
    session_factory = build_session_factory(cfg.DATABASE_URL)
    return DocumentWorker.from_settings(
        S3Storage.from_settings(cfg),
        DocumentExtractor.from_settings(build_provider(cfg), cfg),
        SqlAlchemyResumeRepository(session_factory),
        SqlAlchemyReferenceLetterRepository(session_factory),
        cfg,
    )


@lru_cache(maxsize=1)
def get_document_worker() -> DocumentWorker:
    """One worker per process, built on first use."""
    return build_document_worker(settings)
