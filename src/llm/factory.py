"""Factory returning configured LLM client implementation."""

from __future__ import annotations

from config.settings import Settings
from llm.base import BaseLLMClient
from llm.openai_client import OpenAIClient
from llm.vllm_client import VLLMClient


def build_llm_client(settings: Settings) -> BaseLLMClient:
    """Instantiate the configured LLM connector."""

    if settings.llm_provider == "self_hosted_vllm":
        return VLLMClient(settings)
    if settings.llm_provider in {"openai", "deepseek"}:
        return OpenAIClient(settings)
    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")
