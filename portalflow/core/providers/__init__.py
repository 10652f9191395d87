"""
Generative AI providers
"""

from .model_provider import (
    ModelProvider,
    ContentPart,
    text_part,
    inline_part,
    strip_code_fences,
    parse_json_response,
)

__all__ = [
    "ModelProvider",
    "ContentPart",
    "text_part",
    "inline_part",
    "strip_code_fences",
    "parse_json_response",
]
