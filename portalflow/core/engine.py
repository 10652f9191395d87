"""
Graph Engine for the Portalflow Workflow System

The GraphEngine is responsible for:
1. Parsing stored graphs (rows / dicts → immutable node and edge models)
2. Walking the graph from the start node, one node at a time
3. Applying skipIf / runIf conditions before each step
4. Dispatching each step to its registered executor
5. Routing by the handle the step returns
6. Recording progress and one StepLog per visit

There is no cycle analysis. Traversal is capped at MAX_NODE_VISITS visits.
The first failing step aborts the run; nothing is retried.

Example:
    nodes, edges = GraphRepository(session).load(workflow_id)
    engine = GraphEngine(services)
    run = RunState(context=ContextManager(initial), workflow_id=workflow_id)
    await engine.execute(nodes, edges, run)
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from .context import RunState, utc_now
from .exceptions import GraphCycleError, GraphValidationError, WorkflowRunError
from .graph import build_edge_map, get_next_node_id
from .nodes import DEFAULT_HANDLE, EdgeDefinition, NodeType, StartNode, StepNode, StepType, create_node_from_dict
from .steps import StepServices, get_step_executor
from .templates import get_value_by_path, resolve_user_response, stringify_value
from ..models.workflow import WorkflowEdge, WorkflowNode

logger = logging.getLogger(__name__)

MAX_NODE_VISITS = 100


def parse_graph(
    nodes_data: Iterable[Dict[str, Any]],
    edges_data: Iterable[Dict[str, Any]],
) -> Tuple[Dict[str, NodeType], List[EdgeDefinition]]:
    """
    Parse node and edge dicts into models.

    Returns:
        ({node_id: node} in load order, [edges] in load order)

    Raises:
        GraphValidationError: If a node or edge fails validation
    """
    nodes: Dict[str, NodeType] = {}
    for node_data in nodes_data:
        try:
            node = create_node_from_dict(node_data)
        except ValueError as e:
            raise GraphValidationError(f"Failed to parse node {node_data.get('id')}: {e}") from e
        nodes[node.id] = node

    edges: List[EdgeDefinition] = []
    for edge_data in edges_data:
        try:
            edges.append(EdgeDefinition(**edge_data))
        except ValueError as e:
            raise GraphValidationError(f"Failed to parse edge {edge_data.get('id')}: {e}") from e

    logger.info(f"Parsed workflow: {len(nodes)} nodes, {len(edges)} edges")
    return nodes, edges


def find_start_node(nodes: Dict[str, NodeType]) -> StartNode:
    """
    First start node in load order.

    Raises:
        GraphValidationError: If the graph has no start node
    """
    for node in nodes.values():
        if isinstance(node, StartNode):
            return node
    raise GraphValidationError("No start node found in workflow")


class GraphRepository:
    """Loads a workflow graph from the database."""

    def __init__(self, session: Session):
        self.session = session

    def load(self, workflow_id: int) -> Tuple[Dict[str, NodeType], List[EdgeDefinition]]:
        """
        Nodes ordered by created_at, edges in insertion order.

        Raises:
            GraphValidationError: If a stored node or edge is invalid
        """
        node_rows = (
            self.session.query(WorkflowNode)
            .filter(WorkflowNode.workflow_id == workflow_id)
            .order_by(WorkflowNode.created_at.asc())
            .all()
        )
        edge_rows = (
            self.session.query(WorkflowEdge)
            .filter(WorkflowEdge.workflow_id == workflow_id)
            .order_by(WorkflowEdge.row_id.asc())
            .all()
        )
        logger.info(f"Loaded {len(node_rows)} nodes and {len(edge_rows)} edges for workflow {workflow_id}")

        return parse_graph(
            (
                {
                    "id": row.id,
                    "workflow_id": row.workflow_id,
                    "node_type": row.node_type,
                    "step_type": row.step_type,
                    "label": row.label,
                    "config_json": row.config_json,
                    "escape_single_quotes_in_body": row.escape_single_quotes_in_body,
                    "user_response_template": row.user_response_template,
                }
                for row in node_rows
            ),
            (
                {
                    "id": row.id,
                    "workflow_id": row.workflow_id,
                    "source_node_id": row.source_node_id,
                    "target_node_id": row.target_node_id,
                    "source_handle": row.source_handle,
                    "target_handle": row.target_handle,
                    "label": row.label,
                    "animated": row.animated,
                }
                for row in edge_rows
            ),
        )


def skip_reason(node: StepNode, context: Any) -> Optional[str]:
    """
    Reason to skip a step, or None to run it.

    skipIf skips when the path holds exactly True; runIf skips unless it
    holds exactly True. Truthy strings and numbers do not count.
    """
    config = node.config
    skip_if = config.get("skipIf")
    if skip_if and get_value_by_path(context, skip_if) is True:
        return f"skipIf condition met: {skip_if} = true"

    run_if = config.get("runIf")
    if run_if:
        value = get_value_by_path(context, run_if)
        if value is not True:
            return f"runIf condition not met: {run_if} = {stringify_value(value)}"
    return None


class GraphEngine:
    """
    Core traversal engine for workflow graphs.

    Args:
        services: Collaborators handed to every step executor
        max_node_visits: Visit cap (start nodes passed through mid-run count too)
    """

    def __init__(self, services: Optional[StepServices] = None, max_node_visits: int = MAX_NODE_VISITS):
        self.services = services or StepServices()
        self.max_node_visits = max_node_visits

    async def execute(self, nodes: Dict[str, NodeType], edges: Iterable[EdgeDefinition], run: RunState) -> RunState:
        """
        Walk the graph from its start node, mutating run in place.

        Returns:
            The same RunState, for chaining

        Raises:
            GraphValidationError: No start node
            GraphCycleError: Visit cap exceeded
            WorkflowRunError: A step failed (chained from the step's error)
        """
        start = find_start_node(nodes)
        edge_map = build_edge_map(edges)

        logger.info(f"Starting graph traversal for workflow {run.workflow_id}")
        current_node_id = get_next_node_id(edge_map, start.id, DEFAULT_HANDLE)
        visit_count = 0

        while current_node_id:
            visit_count += 1
            if visit_count > self.max_node_visits:
                raise GraphCycleError(self.max_node_visits)

            node = nodes.get(current_node_id)
            if node is None:
                logger.error(f"Node {current_node_id} not found in node map, stopping traversal")
                break

            run.visited_node_ids.append(node.id)

            if isinstance(node, StartNode):
                current_node_id = get_next_node_id(edge_map, node.id, DEFAULT_HANDLE)
                continue

            handle = await self._execute_step(node, run)
            current_node_id = get_next_node_id(edge_map, node.id, handle)

        logger.info(f"Graph traversal complete ({visit_count} nodes visited)")
        return run

    async def _execute_step(self, node: StepNode, run: RunState) -> str:
        """Run one step node and return the handle to route by."""
        context = run.context
        execution_logger = run.execution_logger
        started_at, started = utc_now(), time.monotonic()

        logger.info(f"Executing node {node.label} ({node.step_type})")
        if execution_logger is not None:
            execution_logger.update_progress(node, context.snapshot())

        reason = skip_reason(node, context.view())
        if reason:
            logger.warning(f"Node {node.label} skipped: {reason}")
            if execution_logger is not None:
                execution_logger.record_step(
                    node, "skipped", started_at, self._elapsed_ms(started),
                    {"config": node.config_json},
                    {"skipped": True, "reason": reason, "conditionalSkip": True},
                    error_message=reason,
                    user_response=resolve_user_response(node.user_response_template, context.view()),
                )
            return DEFAULT_HANDLE

        executor = get_step_executor(node.step_type)

        try:
            if executor is None:
                logger.info(f"Unknown step type: {node.step_type}")
                output: Any = {"skipped": True, "reason": "Step type not implemented"}
                handle = DEFAULT_HANDLE
                input_data = None
                logs_own_steps = False
            else:
                result = await executor.execute(node, run, self.services)
                output = result.output
                handle = result.handle or DEFAULT_HANDLE
                input_data = result.input_data
                logs_own_steps = executor.logs_own_steps
                if executor.records_api_response:
                    run.last_api_response = result.api_response

        except Exception as e:
            self._fail(node, run, e, started_at, started)
            raise WorkflowRunError(
                getattr(e, "message", None) or str(e),
                execution_log_id=execution_logger.execution_log_id if execution_logger else None,
                extraction_log_id=execution_logger.extraction_log_id if execution_logger else None,
                node_id=node.id,
                node_label=node.label,
            ) from e

        duration_ms = self._elapsed_ms(started)
        logger.info(f"Node {node.label} completed in {duration_ms}ms")

        if execution_logger is not None and not logs_own_steps:
            execution_logger.record_step(
                node, "completed", started_at, duration_ms,
                input_data if input_data is not None else {"config": node.config_json},
                output,
                user_response=resolve_user_response(node.user_response_template, context.view()),
            )

        return handle

    def _fail(self, node: StepNode, run: RunState, error: Exception, started_at, started: float) -> None:
        message = getattr(error, "message", None) or str(error)
        logger.error(f"Node {node.label} failed: {message}")

        execution_logger = run.execution_logger
        if execution_logger is None:
            return

        if node.kind == StepType.API_CALL:
            input_data = {"config": node.config_json, "extractedData": run.context.get("extractedData")}
        else:
            input_data = {"config": node.config_json}

        execution_logger.record_step(
            node, "failed", started_at, self._elapsed_ms(started),
            input_data,
            getattr(error, "output_data", None),
            error_message=message,
            user_response=resolve_user_response(node.user_response_template, run.context.view()),
        )
        execution_logger.fail(message, run.context.snapshot())

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)