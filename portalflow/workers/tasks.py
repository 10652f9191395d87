"""
Celery Tasks for Portalflow

run_workflow_task executes one queued run with the same orchestrator the
synchronous API uses. Runs are not idempotent (they call external APIs,
upload files and send email), so the task never retries on its own.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from .celery_app import celery_app
from ..database import get_db
from ..core.exceptions import WorkflowRunError
from ..core.runner import EXTRACTION_MODE, WorkflowRunner, WorkflowRunRequest

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="run_workflow_task")
def run_workflow_task(
    self,
    workflow_id: int,
    request: Optional[Dict[str, Any]] = None,
    mode: str = EXTRACTION_MODE,
) -> Dict[str, Any]:
    """
    Run a workflow from the queue.

    Args:
        workflow_id: ID of workflow to run (overrides any workflowId in request)
        request: Run request body (camelCase keys)
        mode: "extraction" or "transformation"

    Returns:
        Run result with camelCase keys:
        {
            "success": True,
            "finalContextData": {...},
            "lastApiResponse": {...},
            "executionLogId": 12,
            "extractionLogId": 7,
            "actualFilename": "INV-1.pdf"
        }

    Raises:
        WorkflowRunError: The run failed; the task is marked FAILURE
    """
    task_id = self.request.id
    logger.info(f"Task {task_id}: Running workflow {workflow_id} in {mode} mode")

    run_request = WorkflowRunRequest(**{**(request or {}), "workflowId": workflow_id})

    self.update_state(
        state="RUNNING",
        meta={"workflow_id": workflow_id, "mode": mode},
    )

    with get_db() as db:
        runner = WorkflowRunner(db, mode=mode)
        try:
            result = asyncio.run(runner.run(run_request))
        except WorkflowRunError as e:
            logger.error(
                f"Task {task_id}: Workflow {workflow_id} failed: {e.message} "
                f"(execution log {e.execution_log_id})"
            )
            raise

    logger.info(f"Task {task_id}: Workflow {workflow_id} completed (execution log {result.execution_log_id})")
    return result.model_dump(by_alias=True, mode="json")
