"""
FastAPI main application
REST API endpoints for Portalflow
"""

from fastapi import FastAPI, HTTPException, Depends, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import os
import logging
import uuid

from .. import __version__
from ..database import get_db_session
from ..models.workflow import Workflow
from ..models.execution import ExecutionLog, StepLog
from ..core.barcodes import BarcodeIndexer
from ..core.exceptions import ExternalCallError, StepConfigurationError, WorkflowRunError
from ..core.integrations.storage import FileStorage
from ..core.logging_config import setup_logging, set_request_id, clear_request_id
from ..core.model_registry import ModelRegistry
from ..core.runner import (
    EXTRACTION_MODE,
    RUN_MODES,
    TRANSFORMATION_MODE,
    WorkflowRunner,
    WorkflowRunRequest,
    build_services,
)
from ..core.steps import StepServices
from .schemas import (
    WorkflowResponse, WorkflowListResponse, QueuedRunResponse,
    ExecutionLogResponse, StepLogListResponse, ImagingIndexRequest,
)

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

# JSON logs in production (JSON_LOGS=true), standard logs in development
setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
    log_file=os.getenv("LOG_FILE", None)
)

logger = logging.getLogger(__name__)

# ============================================================================
# FASTAPI APP CONFIGURATION
# ============================================================================

app = FastAPI(
    title="Portalflow API",
    description="""
# Portalflow

Runs workflow graphs built in the portal editor over extracted document data.

## Run Flow

1. **POST /workflows/{id}/run** - Run an extraction workflow and wait for the result
2. **POST /workflows/{id}/transform** - Same, in transformation mode
3. **POST /workflows/{id}/queue** - Queue a run on the workers (HTTP 202), then poll **GET /tasks/{task_id}**
4. **GET /executions/{id}/steps** - Inspect every step of a run

A failed run answers HTTP 500 with the execution and extraction log ids.
    """,
    version=__version__,
    openapi_tags=[
        {
            "name": "health",
            "description": "Health checks and system status"
        },
        {
            "name": "workflows",
            "description": "Read-only view of stored workflow graphs."
        },
        {
            "name": "execution",
            "description": "Run workflows synchronously or queue them on the workers."
        },
        {
            "name": "tasks",
            "description": "Celery task status for queued runs."
        },
        {
            "name": "executions",
            "description": "Execution logs and their step logs."
        },
        {
            "name": "imaging",
            "description": "Barcode indexing of incoming documents."
        }
    ]
)

# ============================================================================
# MIDDLEWARE - CORS Configuration
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency: Get database session
def get_db():
    """Dependency for database session"""
    db = get_db_session()
    try:
        yield db
    finally:
        db.close()


def get_services(db: Session = Depends(get_db)) -> StepServices:
    """Dependency for the step collaborators of one run"""
    return build_services(db)


def get_barcode_indexer(db: Session = Depends(get_db)) -> BarcodeIndexer:
    """Dependency for the barcode indexer"""
    return BarcodeIndexer(db, FileStorage(), ModelRegistry.get_default_provider())


# ============================================================================
# MIDDLEWARE - Request ID Tracking
# ============================================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Middleware to add request ID to all requests.

    - Uses X-Request-ID when the caller sends one, otherwise a new UUID
    - Sets request ID in logging context
    - Adds X-Request-ID header to response
    - Clears request ID after response
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    set_request_id(request_id)

    logger.info(
        f"{request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            f"Response {response.status_code}",
            extra={
                "status_code": response.status_code,
            }
        )

        return response

    except Exception as e:
        logger.exception("Unhandled exception in request", extra={"error": str(e)})
        raise

    finally:
        clear_request_id()


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler for better error responses"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code
        }
    )


@app.exception_handler(WorkflowRunError)
async def workflow_run_error_handler(request, exc: WorkflowRunError):
    """A failed run reports the log ids to look at"""
    return JSONResponse(status_code=500, content=exc.to_dict())


# ============================================================================
# ROOT & HEALTH
# ============================================================================

@app.get(
    "/",
    tags=["health"],
    summary="API root",
    description="Returns basic API information and links to documentation."
)
def root():
    """Root endpoint - Returns API info"""
    return {
        "name": "Portalflow API",
        "version": __version__,
        "status": "healthy",
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get(
    "/health",
    tags=["health"],
    summary="Health check (lightweight)",
    description="Lightweight health check - just verifies the API server is running."
)
def health_check():
    """Lightweight health check - just confirms API is alive"""
    return {
        "status": "healthy",
        "service": "Portalflow API",
        "version": __version__
    }


# ============================================================================
# WORKFLOWS (read-only)
# ============================================================================

def _get_workflow_or_404(db: Session, workflow_id: int) -> Workflow:
    workflow = db.query(Workflow).filter(Workflow.id == workflow_id).first()
    if not workflow:
        raise HTTPException(status_code=404, detail=f"Workflow {workflow_id} not found")
    return workflow


@app.get(
    "/workflows",
    response_model=WorkflowListResponse,
    tags=["workflows"],
    summary="List workflows",
    description="List workflows with pagination. Use skip/limit for pagination."
)
def list_workflows(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    """List workflows with pagination"""
    workflows = db.query(Workflow).order_by(Workflow.id).offset(skip).limit(limit).all()
    total = db.query(Workflow).count()

    return {"workflows": workflows, "total": total}


@app.get(
    "/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    tags=["workflows"],
    summary="Get workflow",
    description="Get a workflow with its nodes and edges."
)
def get_workflow(workflow_id: int, db: Session = Depends(get_db)):
    """Get a specific workflow by ID"""
    return _get_workflow_or_404(db, workflow_id)


# ============================================================================
# WORKFLOW EXECUTION
# ============================================================================

async def _run(
    workflow_id: int,
    run_request: WorkflowRunRequest,
    mode: str,
    db: Session,
    services: StepServices,
):
    _get_workflow_or_404(db, workflow_id)
    run_request = run_request.model_copy(update={"workflow_id": workflow_id})

    runner = WorkflowRunner(db, services=services, mode=mode)
    result = await runner.run(run_request)
    return result.model_dump(by_alias=True)


@app.post(
    "/workflows/{workflow_id}/run",
    tags=["execution"],
    summary="Run workflow (extraction mode)",
    description="""
    Run a workflow over extracted data and wait for the result.

    Returns `finalContextData`, `lastApiResponse`, `executionLogId`,
    `extractionLogId` and `actualFilename`. A failing step answers
    HTTP 500 with the same log ids so the run can be inspected.
    """
)
async def run_workflow(
    workflow_id: int,
    run_request: WorkflowRunRequest,
    db: Session = Depends(get_db),
    services: StepServices = Depends(get_services),
):
    """Run a workflow in extraction mode"""
    return await _run(workflow_id, run_request, EXTRACTION_MODE, db, services)


@app.post(
    "/workflows/{workflow_id}/transform",
    tags=["execution"],
    summary="Run workflow (transformation mode)",
    description="Run a workflow in transformation mode and wait for the result."
)
async def transform_workflow(
    workflow_id: int,
    run_request: WorkflowRunRequest,
    db: Session = Depends(get_db),
    services: StepServices = Depends(get_services),
):
    """Run a workflow in transformation mode"""
    return await _run(workflow_id, run_request, TRANSFORMATION_MODE, db, services)


@app.post(
    "/workflows/{workflow_id}/queue",
    response_model=QueuedRunResponse,
    status_code=202,
    tags=["execution"],
    summary="Queue workflow run (async)",
    description="""
    Queue a run on the Celery workers.

    Returns a `task_id` immediately (HTTP 202 Accepted).
    Poll GET /tasks/{task_id} for status and results.
    """
)
def queue_workflow(
    workflow_id: int,
    run_request: WorkflowRunRequest,
    mode: str = Query(EXTRACTION_MODE, description="extraction or transformation"),
    db: Session = Depends(get_db),
):
    """
    Queue a workflow run.
    Returns task_id immediately for polling.
    """
    if mode not in RUN_MODES:
        raise HTTPException(status_code=400, detail=f"Unknown run mode '{mode}'. Valid modes: {list(RUN_MODES)}")

    _get_workflow_or_404(db, workflow_id)

    from ..workers.tasks import run_workflow_task

    task = run_workflow_task.delay(
        workflow_id=workflow_id,
        request=run_request.model_dump(by_alias=True, mode="json", exclude_none=True),
        mode=mode,
    )

    return {
        "task_id": task.id,
        "status": "queued",
        "workflow_id": workflow_id,
        "mode": mode,
        "message": f"Workflow queued for execution. Use GET /tasks/{task.id} to check status.",
    }


# ============================================================================
# TASK STATUS (Celery)
# ============================================================================

@app.get(
    "/tasks/{task_id}",
    tags=["tasks"],
    summary="Get task status",
    description="""
    Get status of a queued run.

    - **PENDING**: Task queued, waiting for worker to pick it up
    - **STARTED** / **RUNNING**: Worker is executing the run
    - **SUCCESS**: `result` holds the run result, `executionLogId` is surfaced
    - **FAILURE**: `error` holds the error message
    """
)
def get_task_status(task_id: str):
    """
    Get status of a Celery task.
    Poll this endpoint to get queued run results.
    """
    from celery.result import AsyncResult
    from ..workers.celery_app import celery_app

    task_result = AsyncResult(task_id, app=celery_app)

    response = {
        "task_id": task_id,
        "status": task_result.state,
    }

    if task_result.state == "PENDING":
        response["message"] = "Task is queued, waiting for worker"

    elif task_result.state == "STARTED" or task_result.state == "RUNNING":
        response["message"] = "Task is executing"
        if task_result.info:
            response["meta"] = task_result.info

    elif task_result.state == "SUCCESS":
        response["message"] = "Task completed successfully"
        response["result"] = task_result.result
        if isinstance(task_result.result, dict) and "executionLogId" in task_result.result:
            response["executionLogId"] = task_result.result["executionLogId"]

    elif task_result.state == "FAILURE":
        response["message"] = "Task failed"
        response["error"] = str(task_result.info)

    else:
        response["message"] = f"Unknown state: {task_result.state}"

    return response


# ============================================================================
# EXECUTIONS
# ============================================================================

def _get_execution_or_404(db: Session, execution_id: int) -> ExecutionLog:
    execution = db.query(ExecutionLog).filter(ExecutionLog.id == execution_id).first()
    if not execution:
        raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")
    return execution


@app.get(
    "/executions/{execution_id}",
    response_model=ExecutionLogResponse,
    tags=["executions"],
    summary="Get execution",
    description="""
    Get one execution log: status, current node, context snapshot
    and error message. For the step-by-step trace use
    GET /executions/{id}/steps.
    """
)
def get_execution(execution_id: int, db: Session = Depends(get_db)):
    """Get a specific execution log by ID"""
    return _get_execution_or_404(db, execution_id)


@app.get(
    "/executions/{execution_id}/steps",
    response_model=StepLogListResponse,
    tags=["executions"],
    summary="Get step logs",
    description="Every step log of an execution, in the order they were written."
)
def get_execution_steps(execution_id: int, db: Session = Depends(get_db)):
    """Get the step logs of an execution"""
    _get_execution_or_404(db, execution_id)

    steps = db.query(StepLog).filter(
        StepLog.execution_log_id == execution_id
    ).order_by(StepLog.id).all()

    return {
        "execution_log_id": execution_id,
        "steps": steps,
        "total": len(steps)
    }


# ============================================================================
# IMAGING
# ============================================================================

@app.post(
    "/imaging/index",
    tags=["imaging"],
    summary="Index a document by barcode",
    description="""
    Store a PDF, read its barcodes and file it as an imaging document.

    Documents whose barcodes match no active pattern (or name an unknown
    document type) go to the unindexed queue; the response says why.
    """
)
async def index_imaging_document(
    index_request: ImagingIndexRequest,
    indexer: BarcodeIndexer = Depends(get_barcode_indexer),
):
    """Barcode-index one PDF"""
    try:
        return await indexer.index_document(
            index_request.pdf_base64,
            index_request.original_filename,
            index_request.bucket_id,
            source_type=index_request.source_type,
        )
    except StepConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ExternalCallError as e:
        logger.error(f"Imaging index failed: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)
