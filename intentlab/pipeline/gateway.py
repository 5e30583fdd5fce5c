# gateway.py
# =============================================================================
# 受治理的后端访问 / Governed backend access
#
# 策略只通过 GovernedBackend 访问后端，每次调用依次经过：
#   成本上限检查 → 缓存查找 → 阶段并发池 + 限流窗口 → 后端 → 成本记账
#
# 文本生成走调用方所在阶段（dlr / flr / ssr）的并发池，
# 向量调用统一走 embed 池。
# =============================================================================

from __future__ import annotations

import inspect
import logging
from dataclasses import replace
from typing import Any, List, Optional, Sequence

from intentlab.errors import CostCapExceededError
from intentlab.llm.types import EmbedResult, GenerateResult
from intentlab.pipeline.cache import (
    EMBEDDING_NAMESPACE,
    LLM_NAMESPACE,
    CacheManager,
    create_embedding_cache_key,
    create_llm_cache_key,
)
from intentlab.pipeline.guardrails import CostTracker
from intentlab.pipeline.throttle import PipelineThrottler

logger = logging.getLogger(__name__)

EMBED_STAGE = "embed"

# 限流窗口的预估 token（调用完成后以实际用量覆盖）
ESTIMATED_TOKENS = {"dlr": 800, "flr": 1000, "ssr": 1000, EMBED_STAGE: 200}

# 后端未返回用量时的记账估算
FALLBACK_INPUT_TOKENS = 700
FALLBACK_OUTPUT_TOKENS = 70


class GovernedBackend:
    """包装原始后端，统一施加限流、并发、缓存与成本控制。"""

    def __init__(
        self,
        backend: Any,
        throttler: PipelineThrottler,
        cost_tracker: CostTracker,
        cache: Optional[CacheManager] = None,
    ):
        self._backend = backend
        self._throttler = throttler
        self._cost_tracker = cost_tracker
        self._cache = cache

    @property
    def backend(self) -> Any:
        return self._backend

    @property
    def cost_tracker(self) -> CostTracker:
        return self._cost_tracker

    @property
    def model(self) -> str:
        return str(getattr(self._backend, "model", None) or "default")

    @property
    def embedding_model(self) -> str:
        return str(getattr(self._backend, "embedding_model", None) or self.model)

    def for_stage(
        self,
        stage: str,
        reasoning_effort: Optional[str] = None,
        verbosity: Optional[str] = None,
        cache_salt: Optional[str] = None,
    ) -> StageBackend:
        """返回绑定到某个阶段的视图。

        后端提供 configure() 时，把推理强度 / 详略提示传给它；
        否则原样使用后端。
        """
        self._throttler.semaphore(stage)
        target = self._backend
        configure = getattr(self._backend, "configure", None)
        if (
            (reasoning_effort or verbosity)
            and callable(configure)
            and not inspect.iscoroutinefunction(configure)
        ):
            target = configure(reasoning_effort=reasoning_effort, verbosity=verbosity)
        return StageBackend(
            self, target, stage, reasoning_effort, verbosity, cache_salt
        )

    def check_budget(self) -> None:
        """成本已超上限时拒绝发起新工作。

        Raises:
            CostCapExceededError: 预计成本超过 cost_cap_usd。
        """
        if self._cost_tracker.should_stop():
            stats = self._cost_tracker.stats()
            raise CostCapExceededError(
                f"预计成本 ${stats['estimated_cost_usd']:.4f} 已超过上限 "
                f"${stats['cost_cap_usd']:.4f}",
                cost_stats=stats,
            )

    # =========================================================================
    # 文本生成 / Generation
    # =========================================================================

    async def _generate(
        self,
        view: StageBackend,
        system: str,
        user: str,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> GenerateResult:
        self.check_budget()

        async def call() -> GenerateResult:
            result = await self._throttler.execute(
                view.stage,
                ESTIMATED_TOKENS.get(view.stage, 1000),
                lambda: view.target.generate_text(
                    system, user, temperature=temperature, max_tokens=max_tokens
                ),
            )
            self._record_generation(result, max_tokens)
            return result

        if self._cache is None:
            return await call()

        key = create_llm_cache_key(
            self.model,
            system,
            user,
            temperature,
            max_tokens,
            salt=view.cache_salt,
            reasoning_effort=view.reasoning_effort,
            verbosity=view.verbosity,
        )
        result, hit = await self._cache.get_or_create(LLM_NAMESPACE, key, call)
        return replace(result, cached=True) if hit else result

    def _record_generation(
        self, result: GenerateResult, max_tokens: Optional[int]
    ) -> None:
        usage = getattr(result, "usage", None)
        if usage is not None:
            self._cost_tracker.record_call(usage.input_tokens, usage.output_tokens)
        else:
            self._cost_tracker.record_call(
                FALLBACK_INPUT_TOKENS,
                max_tokens if max_tokens is not None else FALLBACK_OUTPUT_TOKENS,
            )

    # =========================================================================
    # 向量 / Embeddings
    # =========================================================================

    async def embed_text(self, text: str) -> EmbedResult:
        self.check_budget()
        if self._cache is None:
            return await self._embed_one(text)

        key = create_embedding_cache_key(self.embedding_model, text)
        result, hit = await self._cache.get_or_create(
            EMBEDDING_NAMESPACE, key, lambda: self._embed_one(text)
        )
        return replace(result, cached=True) if hit else result

    async def embed_texts(self, texts: Sequence[str]) -> List[EmbedResult]:
        """批量嵌入，结果顺序与输入一致。

        后端提供 embed_texts 时对缓存未命中的文本发起一次批量调用，
        否则逐条调用 embed_text。
        """
        self.check_budget()
        results: List[Optional[EmbedResult]] = [None] * len(texts)
        pending: List[int] = []

        for i, text in enumerate(texts):
            if self._cache is not None:
                key = create_embedding_cache_key(self.embedding_model, text)
                cached = self._cache.get(EMBEDDING_NAMESPACE, key)
                if cached is not None:
                    results[i] = replace(cached, cached=True)
                    continue
            pending.append(i)

        batch_fn = getattr(self._backend, "embed_texts", None)
        if pending and callable(batch_fn) and len(pending) > 1:
            batch = [texts[i] for i in pending]
            fresh = await self._throttler.execute(
                EMBED_STAGE,
                ESTIMATED_TOKENS[EMBED_STAGE] * len(batch),
                lambda: batch_fn(batch),
            )
            self._record_embedding_batch(fresh, batch)
            for i, result in zip(pending, fresh):
                results[i] = result
                if self._cache is not None:
                    self._cache.set(
                        EMBEDDING_NAMESPACE,
                        create_embedding_cache_key(self.embedding_model, texts[i]),
                        result,
                    )
        else:
            for i in pending:
                results[i] = await self._embed_one(texts[i])
                if self._cache is not None:
                    self._cache.set(
                        EMBEDDING_NAMESPACE,
                        create_embedding_cache_key(self.embedding_model, texts[i]),
                        results[i],
                    )

        return [r for r in results if r is not None]

    async def _embed_one(self, text: str) -> EmbedResult:
        result = await self._throttler.execute(
            EMBED_STAGE,
            ESTIMATED_TOKENS[EMBED_STAGE],
            lambda: self._backend.embed_text(text),
        )
        self._record_embedding(result, text)
        return result

    def _record_embedding_batch(
        self, results: Sequence[EmbedResult], texts: Sequence[str]
    ) -> None:
        """一次批量请求只记一次：有用量时求和，否则按文本长度估算。"""
        usages = [r.usage for r in results if getattr(r, "usage", None) is not None]
        if usages:
            tokens = sum(u.input_tokens for u in usages)
        else:
            tokens = sum(max(1, len(t) // 4) for t in texts)
        self._cost_tracker.record_embedding(tokens)

    def _record_embedding(self, result: EmbedResult, text: str) -> None:
        usage = getattr(result, "usage", None)
        if usage is not None:
            self._cost_tracker.record_embedding(usage.input_tokens)
        else:
            # 粗略按 4 字符 / token 估算
            self._cost_tracker.record_embedding(max(1, len(text) // 4))


class StageBackend:
    """GovernedBackend 绑定到单个阶段的视图，满足 LLMBackend 协议。"""

    def __init__(
        self,
        gateway: GovernedBackend,
        target: Any,
        stage: str,
        reasoning_effort: Optional[str],
        verbosity: Optional[str],
        cache_salt: Optional[str],
    ):
        self._gateway = gateway
        self.target = target
        self.stage = stage
        self.reasoning_effort = reasoning_effort
        self.verbosity = verbosity
        self.cache_salt = cache_salt

    async def generate_text(
        self,
        system: str,
        user: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerateResult:
        return await self._gateway._generate(
            self, system, user, temperature, max_tokens
        )

    async def embed_text(self, text: str) -> EmbedResult:
        return await self._gateway.embed_text(text)

    def with_hints(
        self,
        reasoning_effort: Optional[str] = None,
        verbosity: Optional[str] = None,
    ) -> StageBackend:
        """同一阶段、同一缓存盐，换一组推理提示（FLR 两个子阶段用）。"""
        return self._gateway.for_stage(
            self.stage, reasoning_effort, verbosity, self.cache_salt
        )
