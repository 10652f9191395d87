"""
Template Resolver

Resolves placeholders against a workflow context using dotted/bracket paths:
- {{path}}       step templates (URLs, bodies, filenames)
- {path}         user-facing step summaries (userResponseTemplate)
- {path}/${path} API path variables

Unresolved placeholders are left in the text verbatim so that a broken
template degrades visibly instead of silently producing an empty value.

Example:
    >>> resolve_template("Order {{orderId}}", {"orderId": "A1"})
    'Order A1'
    >>> resolve_template("Order {{missing.path}}", {})
    'Order {{missing.path}}'
"""

import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

EXTRACTED_DATA_PREFIX = "extractedData."

_DOUBLE_BRACE_RE = re.compile(r"\{\{([^}]+)\}\}")
_SINGLE_BRACE_RE = re.compile(r"\{([^}]+)\}")
_PATH_VARIABLE_RE = re.compile(r"\{([^}]+)\}|\$\{([^}]+)\}")
_QUERY_VARIABLE_RE = re.compile(r"\{\{([^}]+)\}\}|\$\{([^}]+)\}")
_NUMERIC_SEGMENT_RE = re.compile(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?\s*")
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


# ============================================================================
# PATH LOOKUP
# ============================================================================

def _is_numeric_segment(part: str) -> bool:
    # An empty segment counts as numeric and then fails to parse as an index
    return not part.strip() or bool(_NUMERIC_SEGMENT_RE.fullmatch(part))


def _parse_index(text: str) -> Optional[int]:
    match = _LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else None


def _child(current: Any, key: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(key)
    return None


def _item(container: Any, index: Optional[int]) -> Any:
    if index is None or container is None:
        return None
    if isinstance(container, (list, tuple, str)):
        if 0 <= index < len(container):
            return container[index]
        return None
    if isinstance(container, Mapping):
        return container.get(str(index))
    return None


def _is_scalar(value: Any) -> bool:
    return value is not None and not isinstance(value, (Mapping, list, tuple))


def get_value_by_path(obj: Any, path: str) -> Any:
    """
    Look up a value in a nested structure by dotted path.

    Supported segment forms:
    - plain key:     "customer.name"
    - numeric index: "orders.0.id"
    - bracket index: "orders[0].id"

    An "extractedData." prefix is stripped first, so callers may write
    context-relative or extractedData-relative paths interchangeably.
    If the whole path exists as a literal key holding a scalar
    (flattened field names such as "Bill.Number"), it wins over traversal.

    Args:
        obj: Mapping/list to search
        path: Dotted path

    Returns:
        The value, or None when any segment is missing or null
    """
    if obj is None or not isinstance(path, str):
        return None

    actual_path = path[len(EXTRACTED_DATA_PREFIX):] if path.startswith(EXTRACTED_DATA_PREFIX) else path

    try:
        if isinstance(obj, Mapping) and actual_path in obj and _is_scalar(obj[actual_path]):
            return obj[actual_path]

        current = obj
        for part in actual_path.split("."):
            if "[" in part and "]" in part:
                name = part[:part.index("[")]
                index = _parse_index(part[part.index("[") + 1:part.index("]")])
                current = _item(_child(current, name), index)
            elif _is_numeric_segment(part):
                current = _item(current, _parse_index(part))
            else:
                current = _child(current, part)

            if current is None:
                return None

        return current

    except (TypeError, ValueError) as e:
        logger.error(f"Error getting value by path '{path}': {e}")
        return None


def split_update_path(path: str) -> List[str]:
    """Split "a.b[0].c" into ["a", "b", "0", "c"]."""
    return [part for part in re.split(r"[.\[\]]", path or "") if part]


def set_value_by_path(target: Any, path: str, value: Any) -> Optional[str]:
    """
    Write value into target at a dotted/bracket path, creating objects on the way.

    Returns:
        The last path segment (callers mirror it at the context root), or None
        if the path is empty.
    """
    parts = split_update_path(path)
    if not parts:
        return None

    current = target
    for position, part in enumerate(parts[:-1]):
        # An index segment next creates a list, anything else an object
        container = [] if parts[position + 1].isdigit() else {}
        if isinstance(current, list) and part.isdigit():
            index = int(part)
            while len(current) <= index:
                current.append(None)
            if not isinstance(current[index], (dict, list)):
                current[index] = container
            current = current[index]
            continue
        if not isinstance(current.get(part), (dict, list)):
            current[part] = container
        current = current[part]

    last = parts[-1]
    if isinstance(current, list) and last.isdigit():
        index = int(last)
        while len(current) <= index:
            current.append(None)
        current[index] = value
    else:
        current[last] = value
    return last


# ============================================================================
# STRING CONVERSION
# ============================================================================

def stringify_value(value: Any) -> str:
    """
    Convert a resolved value for insertion into text.

    Booleans render as true/false and null as "null" since templates feed
    URLs and JSON bodies. Whole floats drop the ".0". Containers render as
    compact JSON.
    """
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def escape_single_quotes(text: str) -> str:
    """Double single quotes (SQL/OData literal escaping)."""
    return text.replace("'", "''")


# ============================================================================
# TEMPLATE RESOLUTION
# ============================================================================

def resolve_template(
    template: Any,
    context: Any,
    escape: Optional[Callable[[str], str]] = None,
    missing: Optional[str] = None,
) -> str:
    """
    Resolve {{path}} placeholders against context.

    Args:
        template: Template text (non-strings are stringified)
        context: Mapping to resolve paths against
        escape: Optional transform applied to each substituted value
        missing: Replacement for unresolvable placeholders.
            None (default) keeps the placeholder text verbatim.

    Returns:
        Resolved text
    """
    if template is None:
        return ""
    if not isinstance(template, str):
        return stringify_value(template)

    def replace(match: "re.Match[str]") -> str:
        value = get_value_by_path(context, match.group(1).strip())
        if value is None:
            return match.group(0) if missing is None else missing
        text = stringify_value(value)
        return escape(text) if escape else text

    return _DOUBLE_BRACE_RE.sub(replace, template)


def has_placeholders(text: str) -> bool:
    return bool(text) and bool(_DOUBLE_BRACE_RE.search(text))


def resolve_user_response(template: Optional[str], context: Any) -> Optional[str]:
    """
    Resolve a single-brace {path} step summary.

    Falls back to the original template text if resolution raises.
    """
    if not template:
        return None

    def replace(match: "re.Match[str]") -> str:
        value = get_value_by_path(context, match.group(1).strip())
        if value is None:
            return match.group(0)
        return stringify_value(value)

    try:
        return _SINGLE_BRACE_RE.sub(replace, template)
    except (TypeError, ValueError) as e:
        logger.error(f"Error resolving user response template: {e}")
        return template


def resolve_path_variables(path: str, context: Any) -> str:
    """Substitute {name} and ${name} variables in an API path."""
    if not path:
        return ""

    def replace(match: "re.Match[str]") -> str:
        name = match.group(1) or match.group(2)
        value = get_value_by_path(context, name)
        if value is None:
            return match.group(0)
        return stringify_value(value)

    return _PATH_VARIABLE_RE.sub(replace, path)


def resolve_query_value(value: str, context: Any, escape_quotes: bool = False) -> str:
    """
    Substitute {{name}} and ${name} in a query parameter value.

    Args:
        value: Parameter template
        context: Mapping to resolve against
        escape_quotes: Double single quotes in substituted values ($filter literals)
    """

    def replace(match: "re.Match[str]") -> str:
        name = match.group(1) or match.group(2)
        resolved = get_value_by_path(context, name)
        if resolved is None:
            return match.group(0)
        text = stringify_value(resolved)
        if escape_quotes and "'" in text:
            text = escape_single_quotes(text)
        return text

    return _QUERY_VARIABLE_RE.sub(replace, value or "")
