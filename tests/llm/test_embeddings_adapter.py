# test_embeddings_adapter.py
# =============================================================================
# EmbeddingsAdapter 单元测试 / EmbeddingsAdapter unit tests
# - 批量请求与结果排序 / Batched request & result ordering
# - 用量只记在第一条结果 / Usage attributed once per batch
# - 响应异常 / Malformed responses
# =============================================================================

import json

import httpx
import pytest

from intentlab.errors import BackendError, RateLimitError
from intentlab.llm.config import ModelEndpointConfig
from intentlab.llm.embeddings_adapter import EmbeddingsAdapter


def _adapter(handler, **kwargs):
    return EmbeddingsAdapter(
        url="https://api.openai.com/v1",
        api_key="sk-test",
        model="text-embedding-3-small",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestEmbedMany:
    """批量嵌入测试。 / Batch embedding tests."""

    @pytest.mark.asyncio
    async def test_orders_by_index(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"index": 1, "embedding": [0.0, 1.0]},
                        {"index": 0, "embedding": [1.0, 0.0]},
                    ],
                    "usage": {"prompt_tokens": 6, "total_tokens": 6},
                },
            )

        results = await _adapter(handler, dimensions=2).embed_many(["first", "second"])

        assert [r.embedding for r in results] == [[1.0, 0.0], [0.0, 1.0]]
        assert results[0].usage.input_tokens == 6
        assert results[1].usage is None
        assert captured["url"] == "https://api.openai.com/v1/embeddings"
        assert captured["body"] == {
            "model": "text-embedding-3-small",
            "input": ["first", "second"],
            "dimensions": 2,
        }

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_request(self):
        def handler(request):
            raise AssertionError("should not be called")

        assert await _adapter(handler).embed_many([]) == []

    @pytest.mark.asyncio
    async def test_single_embed(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5, 0.5]}]})

        result = await _adapter(handler).embed("hello")
        assert result.embedding == [0.5, 0.5]
        assert result.usage is None


class TestMalformed:
    """异常响应测试。 / Malformed response tests."""

    @pytest.mark.asyncio
    async def test_count_mismatch(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

        with pytest.raises(BackendError, match="期望 2"):
            await _adapter(handler).embed_many(["a", "b"])

    @pytest.mark.asyncio
    async def test_missing_vector(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": []}]})

        with pytest.raises(BackendError):
            await _adapter(handler).embed("a")

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        def handler(request):
            return httpx.Response(429, json={"error": "slow down"})

        with pytest.raises(RateLimitError):
            await _adapter(handler).embed("a")


class TestFromEndpointConfig:
    def test_dimensions_from_extra(self):
        config = ModelEndpointConfig.from_dict(
            {
                "model_name": "text-embedding-3-small",
                "api_key": "sk-test",
                "url": "https://api.openai.com/v1",
                "dimensions": 256,
            }
        )
        adapter = EmbeddingsAdapter.from_endpoint_config(config)
        assert adapter.model == "text-embedding-3-small"
        assert adapter._dimensions == 256

    def test_requires_url(self):
        config = ModelEndpointConfig(model_platform="openai", model_name="m", api_key="k")
        with pytest.raises(ValueError, match="url"):
            EmbeddingsAdapter.from_endpoint_config(config)
