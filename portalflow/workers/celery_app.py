"""
Celery app for queued workflow runs.

Redis is both broker and result backend (REDIS_URL). Runs are long and call
external systems, so each worker process takes one task at a time and only
acknowledges it once the run has finished.

The soft time limit raises SoftTimeLimitExceeded inside the run; WorkflowRunner
treats it like any other failure and marks the ExecutionLog failed before the
hard limit kills the process.
"""

import logging
import os

from celery import Celery
from kombu import Exchange, Queue

from ..core.logging_config import setup_logging

setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "true").lower() == "true",
    log_file=os.getenv("LOG_FILE"),
)

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL")
if not REDIS_URL:
    raise ValueError(
        "REDIS_URL environment variable not set. "
        "Required for Celery message broker and result backend."
    )

WORKFLOW_QUEUE = "workflows"
RUN_TIME_LIMIT = int(os.getenv("WORKFLOW_TIME_LIMIT_SECONDS", "600"))

celery_app = Celery("portalflow")

celery_app.conf.update(
    broker_url=REDIS_URL,
    result_backend=REDIS_URL,
    broker_connection_retry_on_startup=True,

    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_time_limit=RUN_TIME_LIMIT,
    task_soft_time_limit=max(RUN_TIME_LIMIT - 60, 1),

    # Results are polled by GET /tasks/{id}; the ExecutionLog row is the durable record
    result_expires=86400,

    task_default_queue=WORKFLOW_QUEUE,
    task_queues=(Queue(WORKFLOW_QUEUE, Exchange(WORKFLOW_QUEUE), routing_key="workflow.run"),),
    task_routes={"run_workflow_task": {"queue": WORKFLOW_QUEUE, "routing_key": "workflow.run"}},

    worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "2")),
    worker_max_tasks_per_child=1000,
)

logger.info(f"Celery app configured (queue={WORKFLOW_QUEUE}, time limit={RUN_TIME_LIMIT}s)")

# Registers the tasks; must follow the configuration above
from . import tasks  # noqa: F401, E402
