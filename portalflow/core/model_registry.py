"""
Model Registry - Factory for Model Providers

Centralized registry for creating model provider instances.
Supports aliases for user-friendly model names.
"""

import logging
import os
from typing import Dict, List, Optional, Tuple, Type

from .providers.model_provider import ModelProvider
from .providers.openai_provider import OpenAIProvider
from .providers.anthropic_provider import AnthropicProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class ModelRegistry:
    """
    Factory for creating model provider instances.

    This registry:
    1. Maps model names/aliases to provider classes
    2. Creates provider instances on demand and caches them
    3. Picks the default provider from AI_MODEL

    Example:
        >>> provider = ModelRegistry.get_provider("mini")  # alias
        >>> provider.get_model_name()
        'gpt-4o-mini'
    """

    # Registry: model_name → (Provider class, internal model name)
    _REGISTRY: Dict[str, Tuple[Type[ModelProvider], str]] = {
        # OpenAI models
        "gpt-4o-mini": (OpenAIProvider, "gpt-4o-mini"),
        "gpt-4o": (OpenAIProvider, "gpt-4o"),
        "gpt-4.1-mini": (OpenAIProvider, "gpt-4.1-mini"),
        "gpt-5-mini": (OpenAIProvider, "gpt-5-mini"),
        "gpt-5": (OpenAIProvider, "gpt-5"),
        "mini": (OpenAIProvider, "gpt-4o-mini"),

        # Anthropic models
        "claude-sonnet-4-5": (AnthropicProvider, "claude-sonnet-4-5"),
        "claude-haiku-4-5": (AnthropicProvider, "claude-haiku-4-5"),
        "claude-opus-4-5": (AnthropicProvider, "claude-opus-4-5"),
        "sonnet": (AnthropicProvider, "claude-sonnet-4-5"),
        "haiku": (AnthropicProvider, "claude-haiku-4-5"),
        "opus": (AnthropicProvider, "claude-opus-4-5"),
    }

    # Cache for provider instances (avoid recreating)
    _CACHE: Dict[str, ModelProvider] = {}

    @classmethod
    def get_provider(cls, model_name: str, api_key: Optional[str] = None) -> ModelProvider:
        """
        Get provider instance for a model.

        Args:
            model_name: Model name or alias (e.g., "gpt-4o-mini", "sonnet")
            api_key: Optional API key (or use environment variable)

        Returns:
            Provider instance

        Raises:
            ValueError: If model name is not registered or the provider cannot be built
        """
        if not model_name:
            raise ValueError("Model name cannot be empty")

        cache_key = f"{model_name}:{api_key or 'default'}"
        if cache_key in cls._CACHE:
            logger.debug(f"Using cached provider for model: {model_name}")
            return cls._CACHE[cache_key]

        if model_name not in cls._REGISTRY:
            raise ValueError(
                f"Unknown model: '{model_name}'. "
                f"Available models: {', '.join(cls.list_models())}"
            )

        provider_class, internal_model_name = cls._REGISTRY[model_name]
        logger.info(f"Creating provider for model: {model_name} → {internal_model_name}")

        provider = provider_class(internal_model_name, api_key=api_key)
        cls._CACHE[cache_key] = provider
        return provider

    @classmethod
    def get_default_provider(cls) -> Optional[ModelProvider]:
        """
        Provider for AI_MODEL (default gpt-4o-mini).

        Returns None when the provider cannot be built (typically no API
        key configured); AI steps then fail with a configuration error.
        """
        model_name = os.getenv("AI_MODEL", DEFAULT_MODEL)
        try:
            return cls.get_provider(model_name)
        except ValueError as e:
            logger.warning(f"No AI provider available: {e}")
            return None

    @classmethod
    def list_models(cls) -> List[str]:
        """List all available models (including aliases)."""
        return sorted(cls._REGISTRY.keys())

    @classmethod
    def is_valid_model(cls, model_name: str) -> bool:
        return model_name in cls._REGISTRY

    @classmethod
    def clear_cache(cls) -> None:
        """Drop cached provider instances (tests, key rotation)."""
        cls._CACHE.clear()
