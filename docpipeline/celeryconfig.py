# docpipeline/celeryconfig.py

import os
from kombu import Queue, Exchange

BROKER_URL = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))
RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", BROKER_URL)

broker_url = BROKER_URL
result_backend = RESULT_BACKEND


task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]
timezone = "UTC"
enable_utc = True

# -------- Delivery semantics --------
# Ack after the task body returns so a crashed worker gets the job redelivered.
# Consumers are idempotent, so duplicates are safe.
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1
# Redis redelivers unacked messages after this many seconds; keep it above the hard time limit
broker_transport_options = {"visibility_timeout": int(os.getenv("CELERY_VISIBILITY_TIMEOUT", "3600"))}

worker_concurrency = int(os.getenv("QUEUE_MAX_WORKERS", "10"))

# -------- Queues & Routing --------
default_exchange = Exchange("default", type="direct")
documents_exchange = Exchange("documents", type="direct")

task_queues = (
    Queue("default", exchange=default_exchange, routing_key="default"),
    Queue("documents", exchange=documents_exchange, routing_key="documents"),
)

task_default_queue = "default"
task_default_exchange = "default"
task_default_routing_key = "default"

task_routes = {
    "process_document": {"queue": "documents", "routing_key": "documents"},
    "process_resume": {"queue": "documents", "routing_key": "documents"},
    "process_reference_letter": {"queue": "documents", "routing_key": "documents"},
}
