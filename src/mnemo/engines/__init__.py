"""Reasoning backends used for intent resolution."""

from __future__ import annotations

import logging

from mnemo.config import EngineConfig
from mnemo.engines.base import EngineError, EngineResponse, ReasoningBackend, ToolCall

logger = logging.getLogger(__name__)

__all__ = [
    "EngineError",
    "EngineResponse",
    "ReasoningBackend",
    "ToolCall",
    "build_backends",
]


def build_backends(config: EngineConfig) -> list[ReasoningBackend]:
    """Backends in the order they are tried: router first, then the direct provider.

    An empty list means every turn is resolved by the rule fallback.
    """
    backends: list[ReasoningBackend] = []

    if config.router_url:
        from mnemo.engines.router import AIRouterEngine

        backends.append(
            AIRouterEngine(
                base_url=config.router_url,
                api_key=config.router_api_key,
                use_case=config.use_case,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
            )
        )

    if config.name == "none" or not config.api_key:
        return backends

    if config.name == "anthropic":
        try:
            from mnemo.engines.anthropic_api import AnthropicAPIEngine

            backends.append(
                AnthropicAPIEngine(
                    api_key=config.api_key,
                    model=config.model or "claude-sonnet-4-5-20250929",
                    max_tokens=config.max_tokens,
                    temperature=config.temperature,
                    timeout=config.timeout,
                )
            )
        except ImportError as e:
            logger.warning("Anthropic engine unavailable: %s", e)
    elif config.name == "openai":
        from mnemo.engines.openai_chat import OpenAIChatEngine

        backends.append(
            OpenAIChatEngine(
                api_key=config.api_key,
                model=config.model or "gpt-4o-mini",
                base_url=config.base_url,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
            )
        )
    else:
        logger.warning("Unknown engine %r, using rule fallback only", config.name)

    return backends
