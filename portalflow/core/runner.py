"""
Workflow Runner

Runs one workflow end to end, in extraction or transformation mode:
1. Load type details and resolve the format type
2. Create the ExtractionLog and ExecutionLog rows
3. Load the payload (file storage or inline)
4. Evaluate function-type field mappings (extraction mode)
5. Load the graph and build the initial context
6. Traverse, then mark the execution log completed

Any failure marks the execution log failed and raises WorkflowRunError
annotated with both log ids.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .context import ContextManager, RunState, utc_now
from .context_builder import ContextBuilder
from .engine import GraphEngine, GraphRepository, find_start_node
from .exceptions import PortalflowException, WorkflowRunError
from .execution_log import ExecutionLogger, log_best_effort
from .functions import FieldFunctionEvaluator
from .logging_config import bind_execution_log, reset_execution_log
from .integrations import DocumentStore, FileStorage, HttpClient, Mailer, ProfileStore, SftpClient
from .model_registry import ModelRegistry
from .steps import StepServices
from ..models.extraction import ExtractionLog, ExtractionType, FieldMappingFunction, TransformationType

logger = logging.getLogger(__name__)

EXTRACTION_MODE = "extraction"
TRANSFORMATION_MODE = "transformation"
RUN_MODES = (EXTRACTION_MODE, TRANSFORMATION_MODE)

PAYLOAD_BUCKET = "pdfs"


class WorkflowRunRequest(BaseModel):
    """Run entry contract. camelCase keys and snake_case names are both accepted."""

    workflow_id: Optional[int] = Field(None, alias="workflowId")
    extracted_data: Any = Field(None, alias="extractedData")
    extracted_data_storage_path: Optional[str] = Field(None, alias="extractedDataStoragePath")
    extraction_type_id: Optional[int] = Field(None, alias="extractionTypeId")
    transformation_type_id: Optional[int] = Field(None, alias="transformationTypeId")
    format_type: Optional[str] = Field(None, alias="formatType")
    pdf_filename: Optional[str] = Field(None, alias="pdfFilename")
    original_pdf_filename: Optional[str] = Field(None, alias="originalPdfFilename")
    extraction_type_filename: Optional[str] = Field(None, alias="extractionTypeFilename")
    page_group_filename_template: Optional[str] = Field(None, alias="pageGroupFilenameTemplate")
    pdf_storage_path: Optional[str] = Field(None, alias="pdfStoragePath")
    pdf_base64: Optional[str] = Field(None, alias="pdfBase64")
    pdf_pages: Optional[int] = Field(None, alias="pdfPages")
    user_id: Optional[str] = Field(None, alias="userId")
    sender_email: Optional[str] = Field(None, alias="senderEmail")
    submitter_email: Optional[str] = Field(None, alias="submitterEmail")
    session_id: Optional[str] = Field(None, alias="sessionId")
    group_order: Optional[int] = Field(None, alias="groupOrder")
    context_data: Optional[Dict[str, Any]] = Field(None, alias="contextData")
    workflow_only_data: Any = Field(None, alias="workflowOnlyData")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "workflowId": 1,
                "extractionTypeId": 3,
                "extractedData": "{\"orders\": [{\"orderId\": \"A1\"}]}",
                "pdfFilename": "invoice.pdf",
                "originalPdfFilename": "scan_0001.pdf",
                "userId": "u-42",
            }
        }


class WorkflowRunResult(BaseModel):
    """Successful run outcome, serialized with camelCase keys."""

    success: bool = True
    final_context_data: Dict[str, Any] = Field(default_factory=dict, alias="finalContextData")
    last_api_response: Any = Field(None, alias="lastApiResponse")
    execution_log_id: Optional[int] = Field(None, alias="executionLogId")
    extraction_log_id: Optional[int] = Field(None, alias="extractionLogId")
    actual_filename: Optional[str] = Field(None, alias="actualFilename")

    class Config:
        populate_by_name = True


def build_services(session: Session) -> StepServices:
    """Default collaborators backed by the database, environment and network."""
    storage = FileStorage()
    return StepServices(
        http=HttpClient(),
        ai_provider=ModelRegistry.get_default_provider(),
        profiles=ProfileStore(session),
        sftp=SftpClient(),
        mailer=Mailer(),
        documents=DocumentStore(session, storage),
        storage=storage,
    )


def parse_inline_payload(raw: Any, format_type: str) -> Any:
    """
    Inline extractedData: JSON text parsed unless the format is CSV.

    Unparseable JSON becomes {}; CSV text is kept as-is.
    """
    if raw is None:
        return {}
    if not isinstance(raw, str):
        return raw
    if raw.strip() == "":
        return {}
    if format_type == "CSV":
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("extractedData is not valid JSON, starting from an empty payload")
        return {}


class WorkflowRunner:
    """
    Runs a workflow for one request.

    Args:
        session: Database session (logs, graph, configuration tables)
        services: Step collaborators (build_services(session) by default)
        mode: "extraction" or "transformation"

    Example:
        runner = WorkflowRunner(session, mode="extraction")
        result = await runner.run(WorkflowRunRequest(workflowId=1, extractedData="{}"))
    """

    def __init__(self, session: Session, services: Optional[StepServices] = None, mode: str = EXTRACTION_MODE):
        if mode not in RUN_MODES:
            raise ValueError(f"Unknown run mode: {mode}. Valid modes: {list(RUN_MODES)}")
        self.session = session
        self.services = services or build_services(session)
        self.mode = mode

    # ========================================================================
    # SETUP
    # ========================================================================

    def _load_type_details(self, request: WorkflowRunRequest) -> Tuple[Any, str]:
        """(type row or None, format type)."""
        default_format = (request.format_type or "JSON") if self.mode == TRANSFORMATION_MODE else "JSON"

        def load() -> Any:
            if request.extraction_type_id:
                return self.session.get(ExtractionType, request.extraction_type_id)
            if request.transformation_type_id:
                return self.session.get(TransformationType, request.transformation_type_id)
            return None

        type_details = log_best_effort(self.session, "load type details", load)
        format_type = (type_details.format_type if type_details is not None else None) or default_format
        return type_details, str(format_type).upper()

    def _create_extraction_log(self, request: WorkflowRunRequest) -> Optional[int]:
        extracted = request.extracted_data
        if extracted is not None and not isinstance(extracted, str):
            extracted = json.dumps(extracted, default=str)

        def write() -> int:
            extraction_log = ExtractionLog(
                user_id=request.user_id,
                extraction_type_id=request.extraction_type_id,
                transformation_type_id=request.transformation_type_id,
                pdf_filename=request.original_pdf_filename,
                pdf_pages=request.pdf_pages,
                extraction_status="success",
                extracted_data=extracted,
                processing_mode=self.mode,
                session_id=request.session_id,
                group_order=request.group_order,
                created_at=utc_now(),
            )
            self.session.add(extraction_log)
            self.session.commit()
            return extraction_log.id

        extraction_log_id = log_best_effort(self.session, "create extraction log", write)
        if extraction_log_id:
            logger.info(f"Created ExtractionLog {extraction_log_id}")
        return extraction_log_id

    async def _load_payload(self, request: WorkflowRunRequest, format_type: str) -> Any:
        if request.extracted_data_storage_path:
            storage = self.services.storage or FileStorage()
            try:
                text = await storage.read_text(PAYLOAD_BUCKET, request.extracted_data_storage_path)
                return json.loads(text) if text.strip() else {}
            except (PortalflowException, json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.error(f"Storage loading error for {request.extracted_data_storage_path}: {e}")
                return {}
        return parse_inline_payload(request.extracted_data, format_type)

    async def _apply_field_functions(self, payload: Any, type_details: Any, format_type: str) -> None:
        if format_type == "CSV" or not isinstance(payload, (dict, list)) or type_details is None:
            return

        field_mappings = type_details.field_mappings
        if isinstance(field_mappings, str):
            try:
                field_mappings = json.loads(field_mappings)
            except json.JSONDecodeError:
                logger.warning("Ignoring field mappings that are not valid JSON")
                return

        function_mappings: List[Dict[str, Any]] = [
            m for m in field_mappings or []
            if isinstance(m, dict) and m.get("type") == "function" and m.get("functionId")
        ]
        if not function_mappings:
            return

        logger.info(f"Found {len(function_mappings)} function-type field mappings to evaluate")
        try:
            function_ids = {m["functionId"] for m in function_mappings}
            rows = (
                self.session.query(FieldMappingFunction)
                .filter(FieldMappingFunction.id.in_(function_ids))
                .all()
            )
            functions = {
                row.id: {"function_name": row.function_name, "function_logic": row.function_logic}
                for row in rows
            }
            evaluator = FieldFunctionEvaluator(ai_provider=self.services.ai_provider)
            written = await evaluator.apply_mappings(payload, function_mappings, functions)
            logger.info(f"Function evaluation complete ({written} values written)")
        except (SQLAlchemyError, PortalflowException, ValueError, TypeError) as e:
            logger.error(f"Function evaluation error (non-fatal): {e}")

    # ========================================================================
    # RUN
    # ========================================================================

    async def run(self, request: WorkflowRunRequest) -> WorkflowRunResult:
        """
        Execute the request's workflow.

        Raises:
            WorkflowRunError: On any failure, annotated with the log ids
        """
        if request.workflow_id is None:
            raise WorkflowRunError("workflowId is required")

        logger.info(f"Running workflow {request.workflow_id} in {self.mode} mode")

        type_details, format_type = self._load_type_details(request)
        extraction_log_id = self._create_extraction_log(request)

        execution_logger = ExecutionLogger(
            self.session,
            workflow_id=request.workflow_id,
            mode=self.mode,
            user_id=request.user_id,
            extraction_log_id=extraction_log_id,
            extraction_type_id=request.extraction_type_id,
            transformation_type_id=request.transformation_type_id,
        )
        execution_logger.start({})

        token = bind_execution_log(execution_logger.execution_log_id)
        try:
            return await self._execute(request, execution_logger, extraction_log_id, type_details, format_type)
        finally:
            reset_execution_log(token)

    async def _execute(
        self,
        request: WorkflowRunRequest,
        execution_logger: ExecutionLogger,
        extraction_log_id: Optional[int],
        type_details: Any,
        format_type: str,
    ) -> WorkflowRunResult:
        context: Optional[ContextManager] = None
        try:
            payload = await self._load_payload(request, format_type)
            if self.mode == EXTRACTION_MODE:
                await self._apply_field_functions(payload, type_details, format_type)

            nodes, edges = GraphRepository(self.session).load(request.workflow_id)
            find_start_node(nodes)

            builder = ContextBuilder(self.session, mode=self.mode)
            context = ContextManager(builder.build(request, payload, format_type, type_details))

            run = RunState(
                context=context,
                workflow_id=request.workflow_id,
                format_type=format_type,
                execution_logger=execution_logger,
            )
            await GraphEngine(self.services).execute(nodes, edges, run)

        except WorkflowRunError:
            raise
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            logger.error(f"Workflow {request.workflow_id} failed: {message}")
            execution_logger.fail(message, context.snapshot() if context is not None else None)
            raise WorkflowRunError(
                message,
                execution_log_id=execution_logger.execution_log_id,
                extraction_log_id=extraction_log_id,
            ) from e

        final_context = context.get_all()
        execution_logger.complete(final_context)
        logger.info(f"Workflow {request.workflow_id} completed ({len(run.visited_node_ids)} nodes visited)")

        return WorkflowRunResult(
            success=True,
            final_context_data=final_context,
            last_api_response=run.last_api_response,
            execution_log_id=execution_logger.execution_log_id,
            extraction_log_id=extraction_log_id,
            actual_filename=final_context.get("actualFilename") or final_context.get("renamedFilename"),
        )
