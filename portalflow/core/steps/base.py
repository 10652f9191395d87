"""
Step Executor Interface

Every step kind is a StepExecutor subclass registered under its StepType:
- execute() receives the node, the run state and the collaborators
- it mutates run.context in place and returns a StepResult
- it raises a StepError subclass on failure; the engine never retries
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type, TypeVar, TYPE_CHECKING

from ..exceptions import StepConfigurationError
from ..nodes import DEFAULT_HANDLE, StepNode, StepType

if TYPE_CHECKING:
    from ..context import RunState
    from ..integrations import (
        DocumentStore,
        FileStorage,
        HttpClient,
        Mailer,
        ProfileStore,
        SftpClient,
    )
    from ..providers import ModelProvider


@dataclass
class StepResult:
    """
    Outcome of one step.

    Attributes:
        output: Step output, written to the step log
        handle: Routing handle ("default", or "success"/"failure" for conditional_check)
        api_response: New "last API response" (only read for steps that record it)
        input_data: Step log input override (defaults to {"config": ...})
    """
    output: Any = None
    handle: str = DEFAULT_HANDLE
    api_response: Any = None
    input_data: Optional[Dict[str, Any]] = None


@dataclass
class StepServices:
    """Collaborators available to step executors."""
    http: Optional["HttpClient"] = None
    ai_provider: Optional["ModelProvider"] = None
    profiles: Optional["ProfileStore"] = None
    sftp: Optional["SftpClient"] = None
    mailer: Optional["Mailer"] = None
    documents: Optional["DocumentStore"] = None
    storage: Optional["FileStorage"] = None

    def require(self, name: str) -> Any:
        """
        Get a collaborator or fail the step before any external call.

        Raises:
            StepConfigurationError: If the collaborator is not configured
        """
        service = getattr(self, name, None)
        if service is None:
            if name == "ai_provider":
                raise StepConfigurationError(
                    "No AI provider configured. Set AI_MODEL and the matching API key."
                )
            raise StepConfigurationError(f"Step requires '{name}' but it is not configured")
        return service


class StepExecutor(ABC):
    """
    Abstract interface for all step executors.

    Class attributes:
        records_api_response: The engine stores StepResult.api_response as
            the run's last API response after this step
        logs_own_steps: The executor writes its own (sub-)step logs, so the
            engine skips the generic completed log
    """

    step_type: StepType
    records_api_response: bool = False
    logs_own_steps: bool = False

    @abstractmethod
    async def execute(self, node: StepNode, run: "RunState", services: StepServices) -> StepResult:
        """
        Execute one step.

        Args:
            node: The step node (config in node.config_json)
            run: Run state; run.context is mutated in place
            services: Collaborators

        Returns:
            StepResult

        Raises:
            StepError: If the step fails
        """
        pass


_REGISTRY: Dict[StepType, Type[StepExecutor]] = {}

E = TypeVar("E", bound=Type[StepExecutor])


def register_step(step_type: StepType) -> Callable[[E], E]:
    """Class decorator registering an executor for step_type."""

    def decorator(cls: E) -> E:
        cls.step_type = step_type
        _REGISTRY[step_type] = cls
        return cls

    return decorator


def registered_step_types() -> Dict[StepType, Type[StepExecutor]]:
    return dict(_REGISTRY)
