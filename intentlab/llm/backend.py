# backend.py
# =============================================================================
# 文本生成 / 向量后端契约与 OpenAI 兼容实现
#
# 职责：
#   - 定义流水线依赖的最小后端能力（LLMBackend 协议）
#       generate_text(system, user, temperature?, max_tokens?) -> GenerateResult
#       embed_text(text) -> EmbedResult
#       embed_texts(texts) -> List[EmbedResult]（可选，批量）
#   - OpenAICompatibleBackend：组合 ChatCompletionsAdapter 与 EmbeddingsAdapter
#   - create_backend()：通过 LLMConfigLoader 按 generation / embedding 角色
#     构建后端（代码 > 配置文件 > 环境变量）
#
# 后端不做重试与限流：统一由流水线的 PipelineThrottler 负责。
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx

from intentlab.errors import ConfigurationError
from intentlab.llm.chat_completions_adapter import ChatCompletionsAdapter
from intentlab.llm.config import EMBEDDING_ROLE, GENERATION_ROLE, LLMConfigLoader
from intentlab.llm.embeddings_adapter import EmbeddingsAdapter
from intentlab.llm.types import EmbedResult, GenerateResult

logger = logging.getLogger(__name__)


@runtime_checkable
class LLMBackend(Protocol):
    """流水线所需的最小后端能力。 / Minimal backend capability."""

    async def generate_text(
        self,
        system: str,
        user: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerateResult:
        ...

    async def embed_text(self, text: str) -> EmbedResult:
        ...


def supports_embeddings(backend: Any) -> bool:
    """后端是否具备向量能力。"""
    if backend is None or not callable(getattr(backend, "embed_text", None)):
        return False
    probe = getattr(backend, "supports_embeddings", None)
    if isinstance(probe, bool):
        return probe
    return True


class OpenAICompatibleBackend:
    """基于 OpenAI 兼容 HTTP 接口的后端。

    embedder 为 None 时后端只具备文本生成能力（supports_embeddings 为 False），
    此时请求 SSR 方法会在运行开始前被拒绝。
    """

    def __init__(
        self,
        generator: ChatCompletionsAdapter,
        embedder: Optional[EmbeddingsAdapter] = None,
        reasoning_effort: Optional[str] = None,
        verbosity: Optional[str] = None,
    ):
        self._generator = generator
        self._embedder = embedder
        self._reasoning_effort = reasoning_effort
        self._verbosity = verbosity

    @property
    def model(self) -> str:
        return self._generator.model

    @property
    def embedding_model(self) -> Optional[str]:
        return self._embedder.model if self._embedder else None

    @property
    def supports_embeddings(self) -> bool:
        return self._embedder is not None

    def configure(
        self,
        reasoning_effort: Optional[str] = None,
        verbosity: Optional[str] = None,
    ) -> OpenAICompatibleBackend:
        """返回带有阶段级推理强度 / 详略提示的视图，原实例不变。"""
        return OpenAICompatibleBackend(
            self._generator,
            self._embedder,
            reasoning_effort=reasoning_effort,
            verbosity=verbosity,
        )

    async def generate_text(
        self,
        system: str,
        user: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerateResult:
        return await self._generator.generate(
            system,
            user,
            temperature=temperature,
            max_tokens=max_tokens,
            reasoning_effort=self._reasoning_effort,
            verbosity=self._verbosity,
        )

    async def embed_text(self, text: str) -> EmbedResult:
        return await self._require_embedder().embed(text)

    async def embed_texts(self, texts: Sequence[str]) -> List[EmbedResult]:
        return await self._require_embedder().embed_many(texts)

    def _require_embedder(self) -> EmbeddingsAdapter:
        if self._embedder is None:
            raise ConfigurationError(
                "后端未配置 embedding 角色，无法生成文本向量。"
            )
        return self._embedder


def create_backend(
    llm_config: Optional[Dict[str, Any]] = None,
    config_file: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> OpenAICompatibleBackend:
    """按配置构建 OpenAICompatibleBackend。

    Args:
        llm_config: 代码传入的模型配置（最高优先级），格式参见 LLMConfigLoader。
        config_file: LLM 配置文件路径（可选，不传则自动搜索）。
        transport: 可选 httpx transport（测试时注入）。

    Raises:
        ConfigurationError: generation 角色配置缺失。
    """
    loader = LLMConfigLoader(llm_config=llm_config, config_file=config_file)

    for role, info in loader.summary().items():
        logger.info(
            "模型配置: %s → %s/%s (url=%s, key=%s)",
            role,
            info["platform"],
            info["model"],
            info["url"],
            info["api_key"],
        )

    try:
        generator = ChatCompletionsAdapter.from_endpoint_config(
            loader.resolve(GENERATION_ROLE), transport=transport
        )
    except ValueError as e:
        if isinstance(e, ConfigurationError):
            raise
        raise ConfigurationError(str(e)) from e

    embedder: Optional[EmbeddingsAdapter] = None
    if loader.has_role(EMBEDDING_ROLE):
        try:
            embedder = EmbeddingsAdapter.from_endpoint_config(
                loader.resolve(EMBEDDING_ROLE), transport=transport
            )
        except ValueError as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(str(e)) from e
    else:
        logger.info("未配置 embedding 角色，SSR 方法不可用")

    return OpenAICompatibleBackend(generator, embedder)
