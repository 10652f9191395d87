"""
Anthropic Provider Implementation

Messages API with text blocks and base64 document/image blocks.
"""

import asyncio
import logging
import os
from typing import Dict, Any, List, Optional

import anthropic

from .model_provider import ContentPart, ModelProvider
from ..exceptions import AIProviderError

logger = logging.getLogger(__name__)


class AnthropicProvider(ModelProvider):
    """Anthropic provider (synchronous SDK client run in the default executor)."""

    MODELS = {
        "claude-sonnet-4-5": {"api_name": "claude-sonnet-4-5-20250929"},
        "claude-haiku-4-5": {"api_name": "claude-haiku-4-5-20251001"},
        "claude-opus-4-5": {"api_name": "claude-opus-4-5-20251101"},
    }

    def __init__(self, model_name: str, api_key: Optional[str] = None):
        """
        Initialize Anthropic provider.

        Args:
            model_name: Model to use (e.g., "claude-sonnet-4-5")
            api_key: Optional Anthropic API key (or use ANTHROPIC_API_KEY env var)

        Raises:
            ValueError: If model is not supported or no API key is available
        """
        if model_name not in self.MODELS:
            raise ValueError(
                f"Unsupported Anthropic model: '{model_name}'. "
                f"Supported models: {list(self.MODELS.keys())}"
            )

        self.model_name = model_name
        self.model_config = self.MODELS[model_name]

        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required.")

        self.client = anthropic.Anthropic(api_key=api_key)
        logger.info(f"AnthropicProvider initialized with model: {model_name}")

    def _to_content(self, parts: List[ContentPart]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = []
        for part in parts:
            if "text" in part:
                content.append({"type": "text", "text": part["text"]})
                continue

            inline = part.get("inline_data") or {}
            mime_type = inline.get("mime_type", "application/pdf")
            block_type = "image" if mime_type.startswith("image/") else "document"
            content.append({
                "type": block_type,
                "source": {"type": "base64", "media_type": mime_type, "data": inline.get("data", "")},
            })
        return content

    async def generate(
        self,
        parts: List[ContentPart],
        temperature: float = 0.1,
        max_tokens: int = 4096,
    ) -> str:
        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.client.messages.create(
                    model=self.model_config["api_name"],
                    max_tokens=max_tokens,
                    temperature=temperature,
                    messages=[{"role": "user", "content": self._to_content(parts)}]
                )
            )
        except anthropic.AnthropicError as e:
            logger.error(f"Anthropic generate failed: {e}")
            raise AIProviderError(f"Anthropic API error: {e}") from e

        text_content = ""
        for block in response.content:
            if block.type == "text":
                text_content += block.text
        return text_content

    def get_model_name(self) -> str:
        """Get model name."""
        return self.model_name
