"""
Step executors for the Portalflow workflow engine.

Importing this package registers every executor under its StepType:
- api_call, api_endpoint (api)
- conditional_check (logic)
- rename_file, sftp_upload (files)
- email_action (email)
- multipart_form_upload (multipart)
- ai_decision (ai_decision)
- imaging (imaging)
- read_email (read_email)
"""

from typing import Optional

from .base import StepExecutor, StepResult, StepServices, register_step, registered_step_types
from .api import ApiCallStep, ApiEndpointStep
from .logic import ConditionalCheckStep
from .files import RenameFileStep, SftpUploadStep
from .email import EmailActionStep
from .multipart import MultipartFormUploadStep
from .ai_decision import AiDecisionStep
from .imaging import ImagingStep
from .read_email import ReadEmailStep
from ..nodes import StepType, parse_step_type


def get_step_executor(step_type: Optional[str]) -> Optional[StepExecutor]:
    """
    Executor instance for a stored step type (aliases accepted).

    Returns:
        None when no executor is registered for the type
    """
    kind = step_type if isinstance(step_type, StepType) else parse_step_type(step_type)
    if kind is None:
        return None
    executor_class = registered_step_types().get(kind)
    return executor_class() if executor_class else None


__all__ = [
    "StepExecutor",
    "StepResult",
    "StepServices",
    "register_step",
    "registered_step_types",
    "get_step_executor",
    "ApiCallStep",
    "ApiEndpointStep",
    "ConditionalCheckStep",
    "RenameFileStep",
    "SftpUploadStep",
    "EmailActionStep",
    "MultipartFormUploadStep",
    "AiDecisionStep",
    "ImagingStep",
    "ReadEmailStep",
]
