"""
Logging setup for Portalflow.

Two formatters share one set of correlation fields:
- request_id: bound by the API middleware for the duration of a request
- execution_log_id: bound by WorkflowRunner while a workflow run is active,
  so every engine/step line can be joined to its ExecutionLog row

Workers log JSON; the API defaults to the readable format.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
execution_log_id_var: ContextVar[Optional[int]] = ContextVar("execution_log_id", default=None)

# Attributes every LogRecord has; anything else arrived through extra={...}
_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def correlation_fields() -> Dict[str, Any]:
    """Request and run ids bound in the current context (unset ones omitted)."""
    fields: Dict[str, Any] = {}
    request_id = request_id_var.get()
    if request_id:
        fields["request_id"] = request_id
    execution_log_id = execution_log_id_var.get()
    if execution_log_id is not None:
        fields["execution_log_id"] = execution_log_id
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, ids, context."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": timestamp.strftime("%Y-%m-%dT%H:%M:%S.%f") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **correlation_fields(),
        }

        context = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=True, default=str)


class StandardFormatter(logging.Formatter):
    """[2024-01-05 10:00:00] INFO     - portalflow.core.engine - message (request_id=..., execution_log_id=...)"""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{timestamp}] {record.levelname:8s} - {record.name} - {record.getMessage()}"

        ids = correlation_fields()
        if ids:
            line += " (" + ", ".join(f"{key}={value}" for key, value in ids.items()) + ")"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging(level: str = "INFO", json_logs: bool = False, log_file: Optional[str] = None) -> None:
    """
    Configure the root logger.

    LOG_LEVEL, JSON_LOGS ("true"/"false") and LOG_FILE override the arguments.
    """
    level = os.getenv("LOG_LEVEL", level).upper()
    json_logs = os.getenv("JSON_LOGS", str(json_logs)).lower() == "true"
    log_file = os.getenv("LOG_FILE", log_file)

    numeric_level = getattr(logging, level, logging.INFO)
    formatter = JSONFormatter() if json_logs else StandardFormatter()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    logging.getLogger(__name__).info(
        f"Logging configured (level={level}, json={json_logs}, file={log_file or 'none'})"
    )


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def bind_execution_log(execution_log_id: Optional[int]) -> Token:
    """Tag log lines in this context with a run's ExecutionLog id. Pass the token to reset_execution_log."""
    return execution_log_id_var.set(execution_log_id)


def reset_execution_log(token: Token) -> None:
    execution_log_id_var.reset(token)
