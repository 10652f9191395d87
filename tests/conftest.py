"""
Pytest fixtures for Portalflow tests

This module provides shared fixtures for all tests:
- Database session fixtures
- Mock HTTP client and AI provider
- Node / edge / run builders
"""

import pytest
from unittest.mock import Mock, AsyncMock
from typing import Any, Dict, Optional
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portalflow.models import Base
from portalflow.core.context import ContextManager, RunState
from portalflow.core.execution_log import ExecutionLogger
from portalflow.core.integrations.http_client import HttpClient, HttpResponse
from portalflow.core.nodes import EdgeDefinition, StartNode, StepNode
from portalflow.core.providers.model_provider import ModelProvider
from portalflow.core.steps import StepServices


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_session():
    """
    Create an in-memory SQLite database for testing.
    Each test gets a fresh database that's torn down after the test.
    """
    # One shared connection so the API thread pool sees the same database
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def execution_logger(db_session):
    """Started ExecutionLogger writing to the test database."""
    execution_logger = ExecutionLogger(db_session, workflow_id=None, mode="extraction")
    execution_logger.start({})
    return execution_logger


# ============================================================================
# COLLABORATOR FIXTURES
# ============================================================================

def http_response(status_code: int = 200, body: Any = None, reason: str = "OK") -> HttpResponse:
    return HttpResponse(status_code=status_code, reason=reason, body=body)


@pytest.fixture
def mock_http():
    """
    Mock HTTP client answering 200 with an empty object.
    Set mock_http.request.return_value to change the response.
    """
    mock = AsyncMock(spec=HttpClient)
    mock.request.return_value = http_response(200, {})
    return mock


@pytest.fixture
def mock_ai_provider():
    """
    Mock AI provider. Set mock_ai_provider.generate.return_value to the
    completion text.
    """
    mock = AsyncMock(spec=ModelProvider)
    mock.get_model_name = Mock(return_value="gpt-4o-mini")
    mock.generate.return_value = "{}"
    return mock


@pytest.fixture
def services(mock_http, mock_ai_provider):
    """StepServices with mocked HTTP and AI; other collaborators unset."""
    return StepServices(http=mock_http, ai_provider=mock_ai_provider)


# ============================================================================
# GRAPH BUILDERS
# ============================================================================

@pytest.fixture
def make_node():
    """
    Factory for step nodes.

    Example:
        node = make_node("conditional_check", {"fieldPath": "status"}, id="check")
    """

    def factory(step_type: str, config: Optional[Dict[str, Any]] = None, id: str = "n1", label: Optional[str] = None, **kwargs) -> StepNode:
        return StepNode(
            id=id,
            step_type=step_type,
            label=label or id,
            config_json=config or {},
            **kwargs,
        )

    return factory


@pytest.fixture
def make_edge():
    """Factory for edges; ids are derived from the endpoints."""

    def factory(source: str, target: str, handle: str = "default", id: Optional[str] = None) -> EdgeDefinition:
        return EdgeDefinition(
            id=id or f"{source}-{handle}-{target}",
            source_node_id=source,
            target_node_id=target,
            source_handle=handle,
        )

    return factory


@pytest.fixture
def start_node():
    return StartNode(id="start", label="Start")


@pytest.fixture
def make_run():
    """Factory for RunState over a fresh context."""

    def factory(context: Optional[Dict[str, Any]] = None, **kwargs) -> RunState:
        return RunState(context=ContextManager(context or {}), **kwargs)

    return factory
