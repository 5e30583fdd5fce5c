# test_gateway.py
# =============================================================================
# GovernedBackend 测试
#
# 测试内容：
#   1. 调用经过成本记账（实际用量 / 缺失用量时的估算）
#   2. 缓存：相同盐命中、不同盐各自调用后端
#   3. 成本超限时拒绝新调用
#   4. 阶段推理提示经 configure() 传给后端
#   5. 批量向量：只对未命中的文本发起一次批量调用
# =============================================================================

import random

import pytest

from intentlab.errors import ConfigurationError, CostCapExceededError
from intentlab.llm.types import EmbedResult, GenerateResult, TokenUsage
from intentlab.pipeline.cache import CacheManager
from intentlab.pipeline.config import ConcurrencyConfig, RateLimitConfig
from intentlab.pipeline.gateway import (
    FALLBACK_INPUT_TOKENS,
    GovernedBackend,
)
from intentlab.pipeline.guardrails import CostTracker
from intentlab.pipeline.throttle import PipelineThrottler


# ---------------------------------------------------------------------------
# 共享 mock 辅助 / Shared mock helpers
# ---------------------------------------------------------------------------


class FakeBackend:
    model = "fake-chat"
    embedding_model = "fake-embed"

    def __init__(self, text="4", usage=TokenUsage(100, 5)):
        self.text = text
        self.usage = usage
        self.generate_calls = []
        self.embed_calls = []
        self.batch_calls = []
        self.configured = []

    def configure(self, reasoning_effort=None, verbosity=None):
        self.configured.append((reasoning_effort, verbosity))
        return self

    async def generate_text(self, system, user, temperature=None, max_tokens=None):
        self.generate_calls.append((system, user, temperature, max_tokens))
        return GenerateResult(text=self.text, usage=self.usage)

    async def embed_text(self, text):
        self.embed_calls.append(text)
        return EmbedResult(embedding=[float(len(text)), 1.0])

    async def embed_texts(self, texts):
        self.batch_calls.append(list(texts))
        return [EmbedResult(embedding=[float(len(t)), 1.0]) for t in texts]


def _gateway(backend, cache=None, cost_cap_usd=None):
    throttler = PipelineThrottler(
        RateLimitConfig(),
        ConcurrencyConfig().as_limits(),
        rng=random.Random(0),
    )
    return GovernedBackend(backend, throttler, CostTracker(cost_cap_usd), cache)


# ---------------------------------------------------------------------------
# 文本生成 / Generation
# ---------------------------------------------------------------------------


class TestGeneration:
    @pytest.mark.asyncio
    async def test_records_actual_usage(self):
        backend = FakeBackend()
        gateway = _gateway(backend)

        result = await gateway.for_stage("dlr").generate_text("sys", "user", 0.3, 5)

        assert result.text == "4"
        assert gateway.cost_tracker.calls_completed == 1
        assert gateway.cost_tracker.input_tokens == 100
        assert gateway.cost_tracker.output_tokens == 5

    @pytest.mark.asyncio
    async def test_estimates_missing_usage(self):
        backend = FakeBackend(usage=None)
        gateway = _gateway(backend)

        await gateway.for_stage("dlr").generate_text("sys", "user", 0.3, 5)

        assert gateway.cost_tracker.input_tokens == FALLBACK_INPUT_TOKENS
        assert gateway.cost_tracker.output_tokens == 5

    @pytest.mark.asyncio
    async def test_same_salt_hits_cache(self):
        backend = FakeBackend()
        gateway = _gateway(backend, cache=CacheManager())

        first = await gateway.for_stage("dlr", cache_salt="r0:s0").generate_text("s", "u", 0.3, 5)
        second = await gateway.for_stage("dlr", cache_salt="r0:s0").generate_text("s", "u", 0.3, 5)

        assert len(backend.generate_calls) == 1
        assert not first.cached
        assert second.cached
        assert second.text == first.text
        # 命中不重复记账
        assert gateway.cost_tracker.calls_completed == 1

    @pytest.mark.asyncio
    async def test_distinct_salts_are_independent_samples(self):
        backend = FakeBackend()
        gateway = _gateway(backend, cache=CacheManager())

        await gateway.for_stage("dlr", cache_salt="r0:s0").generate_text("s", "u", 0.3, 5)
        await gateway.for_stage("dlr", cache_salt="r0:s1").generate_text("s", "u", 0.3, 5)

        assert len(backend.generate_calls) == 2

    @pytest.mark.asyncio
    async def test_budget_exceeded_rejects_new_calls(self):
        backend = FakeBackend(usage=TokenUsage(1_000_000, 0))
        gateway = _gateway(backend, cost_cap_usd=0.01)

        await gateway.for_stage("dlr").generate_text("s", "u", 0.3, 5)
        with pytest.raises(CostCapExceededError) as exc_info:
            await gateway.for_stage("dlr").generate_text("s", "u", 0.3, 5)

        assert len(backend.generate_calls) == 1
        assert exc_info.value.cost_stats["calls_completed"] == 1

    @pytest.mark.asyncio
    async def test_stage_hints_are_forwarded(self):
        backend = FakeBackend()
        gateway = _gateway(backend)

        view = gateway.for_stage("flr", reasoning_effort="medium", verbosity="low")
        await view.generate_text("s", "u", 0.7, 150)
        view.with_hints("none", "low")

        assert backend.configured == [("medium", "low"), ("none", "low")]

    def test_unknown_stage(self):
        with pytest.raises(ConfigurationError):
            _gateway(FakeBackend()).for_stage("vision")

    def test_model_fallback(self):
        class Anonymous:
            async def generate_text(self, system, user, temperature=None, max_tokens=None):
                return GenerateResult(text="3")

        gateway = _gateway(Anonymous())
        assert gateway.model == "default"
        assert gateway.embedding_model == "default"


# ---------------------------------------------------------------------------
# 向量 / Embeddings
# ---------------------------------------------------------------------------


class TestEmbeddings:
    @pytest.mark.asyncio
    async def test_batch_only_for_misses(self):
        backend = FakeBackend()
        gateway = _gateway(backend, cache=CacheManager())

        await gateway.embed_text("bb")
        results = await gateway.embed_texts(["a", "bb", "ccc"])

        assert [r.embedding[0] for r in results] == [1.0, 2.0, 3.0]
        assert results[1].cached
        assert backend.batch_calls == [["a", "ccc"]]
        # 一次单条请求 + 一次批量请求
        assert gateway.cost_tracker.embedding_calls == 2

    @pytest.mark.asyncio
    async def test_single_text_per_item_call(self):
        backend = FakeBackend()
        gateway = _gateway(backend, cache=CacheManager())

        await gateway.embed_texts(["only"])

        assert backend.batch_calls == []
        assert backend.embed_calls == ["only"]

    @pytest.mark.asyncio
    async def test_repeat_embedding_served_from_cache(self):
        backend = FakeBackend()
        cache = CacheManager()
        gateway = _gateway(backend, cache=cache)

        await gateway.embed_texts(["x", "y"])
        again = await gateway.embed_text("x")

        assert again.cached
        assert backend.embed_calls == []
        assert cache.stats()["embedding_size"] == 2

    @pytest.mark.asyncio
    async def test_embedding_cost_estimated_without_usage(self):
        backend = FakeBackend()
        gateway = _gateway(backend)

        await gateway.embed_text("x" * 40)

        assert gateway.cost_tracker.embedding_tokens == 10

    @pytest.mark.asyncio
    async def test_batch_usage_recorded_once(self):
        class UsageBatchBackend(FakeBackend):
            async def embed_texts(self, texts):
                self.batch_calls.append(list(texts))
                # 与 Embeddings API 一致：整批用量只挂在第一条结果上
                return [
                    EmbedResult(
                        embedding=[float(len(t)), 1.0],
                        usage=TokenUsage(50) if i == 0 else None,
                    )
                    for i, t in enumerate(texts)
                ]

        gateway = _gateway(UsageBatchBackend())

        await gateway.embed_texts(["alpha" * 10, "beta" * 10, "gamma" * 10, "delta" * 10, "eps" * 10])

        assert gateway.cost_tracker.embedding_tokens == 50
        assert gateway.cost_tracker.embedding_calls == 1

    @pytest.mark.asyncio
    async def test_batch_without_usage_estimated_per_text(self):
        gateway = _gateway(FakeBackend())

        await gateway.embed_texts(["x" * 40, "y" * 8])

        assert gateway.cost_tracker.embedding_tokens == 12
        assert gateway.cost_tracker.embedding_calls == 1
