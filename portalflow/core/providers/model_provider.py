"""
Model Provider Abstract Interface

Defines the contract for generative AI providers (OpenAI, Anthropic).
Steps hand a provider a list of content parts and get one text completion back.

Content parts:
    {"text": "Match the record below..."}
    {"inline_data": {"mime_type": "application/pdf", "data": "<base64>"}}
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import json
import logging
import re

from ..exceptions import AIResponseParseError

logger = logging.getLogger(__name__)

ContentPart = Dict[str, Any]

_LEADING_FENCE_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\s*```\s*$")


class ModelProvider(ABC):
    """
    Abstract interface for generative AI providers.

    All providers must implement:
    1. generate() - Produce a text completion from content parts
    2. get_model_name() - Return the model identifier
    """

    @abstractmethod
    async def generate(
        self,
        parts: List[ContentPart],
        temperature: float = 0.1,
        max_tokens: int = 4096,
    ) -> str:
        """
        Produce a single text completion.

        Args:
            parts: Text and inline binary parts, in prompt order
            temperature: Sampling temperature
            max_tokens: Completion token ceiling

        Returns:
            The completion text

        Raises:
            AIProviderError: If the provider call fails
        """
        pass

    @abstractmethod
    def get_model_name(self) -> str:
        """Get model identifier (e.g., "gpt-4o-mini")"""
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(model={self.get_model_name()})>"


def text_part(text: str) -> ContentPart:
    return {"text": text}


def inline_part(data: str, mime_type: str = "application/pdf") -> ContentPart:
    return {"inline_data": {"mime_type": mime_type, "data": data}}


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence, if any."""
    cleaned = (text or "").strip()
    cleaned = _LEADING_FENCE_RE.sub("", cleaned)
    cleaned = _TRAILING_FENCE_RE.sub("", cleaned)
    return cleaned.strip()


def parse_json_response(text: str, output_data: Optional[Any] = None) -> Any:
    """
    Parse an AI completion as JSON after stripping code fences.

    Raises:
        AIResponseParseError: If the text is not valid JSON
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"Failed to parse AI response as JSON: {e}")
        raise AIResponseParseError(
            f"Failed to parse AI response: {e}",
            raw_text=text or "",
            output_data=output_data,
        ) from e
