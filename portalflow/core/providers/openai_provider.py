"""
OpenAI Provider Implementation

Chat completions with text and file content parts (PDFs are sent as
base64 file parts, images as data URLs).
"""

import asyncio
import logging
import os
from typing import Dict, Any, List, Optional

import openai

from .model_provider import ContentPart, ModelProvider
from ..exceptions import AIProviderError

logger = logging.getLogger(__name__)


class OpenAIProvider(ModelProvider):
    """OpenAI provider (synchronous SDK client run in the default executor)."""

    MODELS = {
        "gpt-4o-mini": {"api_name": "gpt-4o-mini"},
        "gpt-4o": {"api_name": "gpt-4o"},
        "gpt-4.1-mini": {"api_name": "gpt-4.1-mini"},
        "gpt-5-mini": {"api_name": "gpt-5-mini"},
        "gpt-5": {"api_name": "gpt-5"},
    }

    def __init__(self, model_name: str, api_key: Optional[str] = None):
        """
        Initialize OpenAI provider.

        Args:
            model_name: Model to use (e.g., "gpt-4o-mini")
            api_key: Optional OpenAI API key (or use OPENAI_API_KEY env var)

        Raises:
            ValueError: If model is not supported or no API key is available
        """
        if model_name not in self.MODELS:
            raise ValueError(
                f"Unsupported OpenAI model: '{model_name}'. "
                f"Supported models: {list(self.MODELS.keys())}"
            )

        self.model_name = model_name
        self.model_config = self.MODELS[model_name]

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required.")

        self.client = openai.OpenAI(api_key=api_key)
        logger.info(f"OpenAIProvider initialized with model: {model_name}")

    def _to_content(self, parts: List[ContentPart]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = []
        for part in parts:
            if "text" in part:
                content.append({"type": "text", "text": part["text"]})
                continue

            inline = part.get("inline_data") or {}
            mime_type = inline.get("mime_type", "application/pdf")
            data_url = f"data:{mime_type};base64,{inline.get('data', '')}"
            if mime_type.startswith("image/"):
                content.append({"type": "image_url", "image_url": {"url": data_url}})
            else:
                content.append({
                    "type": "file",
                    "file": {"filename": "document.pdf", "file_data": data_url},
                })
        return content

    async def generate(
        self,
        parts: List[ContentPart],
        temperature: float = 0.1,
        max_tokens: int = 4096,
    ) -> str:
        api_params: Dict[str, Any] = {
            "model": self.model_config["api_name"],
            "messages": [{"role": "user", "content": self._to_content(parts)}],
        }

        # GPT-5 takes max_completion_tokens and only the default temperature
        if self.model_name.startswith("gpt-5"):
            api_params["max_completion_tokens"] = max_tokens
        else:
            api_params["max_tokens"] = max_tokens
            api_params["temperature"] = temperature

        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.client.chat.completions.create(**api_params)
            )
        except openai.OpenAIError as e:
            logger.error(f"OpenAI generate failed: {e}")
            raise AIProviderError(f"OpenAI API error: {e}") from e

        return response.choices[0].message.content or ""

    def get_model_name(self) -> str:
        """Get model name."""
        return self.model_name
