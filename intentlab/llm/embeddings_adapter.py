# embeddings_adapter.py
# =============================================================================
# OpenAI Embeddings API 适配器（文本向量）
#
# 职责：
#   - 将单条或多条文本转换为 /embeddings 请求
#   - 按输入顺序还原返回的向量（响应中按 index 排序）
#   - 与 ChatCompletionsAdapter 共享端点解析、认证与错误映射逻辑
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from intentlab.errors import BackendError
from intentlab.llm.chat_completions_adapter import (
    auth_headers,
    detect_azure,
    post_json,
    resolve_endpoint,
)
from intentlab.llm.types import EmbedResult, TokenUsage

logger = logging.getLogger(__name__)


class EmbeddingsAdapter:
    """OpenAI Embeddings API 适配器。"""

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        api_version: Optional[str] = None,
        dimensions: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._endpoint = resolve_endpoint(url, "/embeddings", api_version)
        self._is_azure = detect_azure(url)
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._dimensions = dimensions
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, text: str) -> EmbedResult:
        """嵌入单条文本。"""
        results = await self.embed_many([text])
        return results[0]

    async def embed_many(self, texts: Sequence[str]) -> List[EmbedResult]:
        """一次请求嵌入多条文本，结果顺序与输入一致。

        批量请求的用量只记在第一条结果上，避免重复计费。

        Raises:
            BackendError: HTTP 失败、响应无法解析或向量数量与输入不符。
        """
        if not texts:
            return []

        body: Dict[str, Any] = {"model": self._model, "input": list(texts)}
        if self._dimensions is not None:
            body["dimensions"] = self._dimensions

        data = await post_json(
            self._endpoint,
            auth_headers(self._api_key, self._is_azure),
            body,
            self._timeout,
            self._transport,
            "Embeddings API",
        )

        items = data.get("data")
        if not isinstance(items, list) or len(items) != len(texts):
            raise BackendError(
                f"Embeddings API 返回向量数量异常：期望 {len(texts)}，"
                f"实际 {len(items) if isinstance(items, list) else 0}"
            )

        ordered = sorted(items, key=lambda item: item.get("index", 0))
        usage = self._extract_usage(data)

        results: List[EmbedResult] = []
        for i, item in enumerate(ordered):
            vector = item.get("embedding")
            if not isinstance(vector, list) or not vector:
                raise BackendError(f"Embeddings API 第 {i} 条结果缺少向量")
            results.append(
                EmbedResult(
                    embedding=[float(v) for v in vector],
                    usage=usage if i == 0 else None,
                )
            )
        return results

    @staticmethod
    def _extract_usage(response_data: Dict[str, Any]) -> Optional[TokenUsage]:
        usage = response_data.get("usage")
        if not isinstance(usage, dict):
            return None
        tokens = usage.get("total_tokens", usage.get("prompt_tokens", 0))
        return TokenUsage(input_tokens=int(tokens))

    @classmethod
    def from_endpoint_config(
        cls, config, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> EmbeddingsAdapter:
        """从 ModelEndpointConfig 创建适配器实例。

        Raises:
            ValueError: 缺少必要的配置（url / api_key）。
        """
        if not config.url:
            raise ValueError(
                "Embeddings API 需要显式配置 url，"
                "但 embedding 角色的 url 为空。请在 llm_config 中设置 url。"
            )
        if not config.api_key:
            raise ValueError(
                "Embeddings API 需要显式配置 api_key，"
                "请在 llm_config 中设置 api_key 或通过环境变量提供。"
            )
        return cls(
            url=config.url,
            api_key=config.api_key,
            model=config.model_name,
            timeout=config.timeout or 60.0,
            api_version=config.api_version,
            dimensions=config.extra.get("dimensions"),
            transport=transport,
        )
