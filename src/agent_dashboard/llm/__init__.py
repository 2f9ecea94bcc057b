"""LLM transport adapters."""

from agent_dashboard.llm.client import (
    LLMAdapter,
    LLMRequestError,
    OpenAIChatCompletionsAdapter,
    build_llm_adapter,
)

__all__ = ["LLMAdapter", "LLMRequestError", "OpenAIChatCompletionsAdapter", "build_llm_adapter"]
