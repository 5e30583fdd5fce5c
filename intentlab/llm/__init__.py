# llm/__init__.py
# 后端契约、LLM 配置管理与 HTTP 适配器 / Backend contract, LLM config & HTTP adapters

from intentlab.llm.backend import (
    LLMBackend,
    OpenAICompatibleBackend,
    create_backend,
    supports_embeddings,
)
from intentlab.llm.chat_completions_adapter import ChatCompletionsAdapter
from intentlab.llm.config import LLMConfigLoader, ModelEndpointConfig
from intentlab.llm.embeddings_adapter import EmbeddingsAdapter
from intentlab.llm.types import EmbedResult, GenerateResult, TokenUsage

__all__ = [
    "ChatCompletionsAdapter",
    "EmbedResult",
    "EmbeddingsAdapter",
    "GenerateResult",
    "LLMBackend",
    "LLMConfigLoader",
    "ModelEndpointConfig",
    "OpenAICompatibleBackend",
    "TokenUsage",
    "create_backend",
    "supports_embeddings",
]
