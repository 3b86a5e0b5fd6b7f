# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery runs the slow, bulk side of matching outside the request path:
#   - batch_find_matches: full agentic matching for many owners
#   - index_profiles:     embed profile documents into the similarity index
#
# ARCHITECTURE:
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌───────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│────▶│ Redis │
# │(producer)│     │(broker)│    │ (consumer)   │     │(result)│
# └──────────┘     └───────┘     └──────────────┘     └───────┘
#    db 0 ──────────┘                                    └── db 1
# =============================================================================

from celery import Celery

from netmatch.config import settings

celery_app = Celery(
    "netmatch.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only: pickle can execute arbitrary code on deserialization.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Ack after completion so a crashed worker's task is re-queued.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # One task at a time per worker process. Batches are long and
    # deliberately serial; prefetching would only starve other workers.
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # A 100-owner batch with a 2s pause and a full agent run per owner
    # needs far more than the default.
    task_soft_time_limit=3300,
    task_time_limit=3600,

    # --- Results ---
    result_expires=3600,

    include=["netmatch.workers.tasks"],
)
