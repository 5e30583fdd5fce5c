# test_chat_completions_adapter.py
# =============================================================================
# ChatCompletionsAdapter 单元测试 / ChatCompletionsAdapter unit tests
# - URL 补全逻辑 / URL completion logic
# - Azure 检测与认证头 / Azure detection & auth headers
# - 请求构建（普通模型 / 推理模型） / Request building
# - 响应解析与用量 / Response parsing & usage
# - HTTP 失败映射 / HTTP failure mapping (httpx.MockTransport)
# - from_endpoint_config 工厂方法 / Factory method
# =============================================================================

import json

import httpx
import pytest

from intentlab.errors import (
    BackendError,
    BackendUnavailableError,
    RateLimitError,
)
from intentlab.llm.chat_completions_adapter import (
    ChatCompletionsAdapter,
    auth_headers,
    detect_azure,
    resolve_endpoint,
)
from intentlab.llm.config import ModelEndpointConfig


def _adapter(handler=None, **kwargs):
    transport = httpx.MockTransport(handler) if handler else None
    params = dict(url="https://api.openai.com/v1", api_key="sk-test", model="gpt-test")
    params.update(kwargs)
    return ChatCompletionsAdapter(transport=transport, **params)


class TestResolveEndpoint:
    """URL 补全逻辑测试。 / URL completion logic tests."""

    def test_appends_chat_completions_to_base_url(self):
        result = resolve_endpoint("https://api.example.com/v1", "/chat/completions")
        assert result == "https://api.example.com/v1/chat/completions"

    def test_preserves_existing_path(self):
        url = "https://api.openai.com/v1/chat/completions"
        assert resolve_endpoint(url, "/chat/completions") == url

    def test_appends_api_version_for_azure(self):
        result = resolve_endpoint(
            "https://xxx.openai.azure.com/openai",
            "/chat/completions",
            api_version="2025-04-01-preview",
        )
        assert "/chat/completions" in result
        assert "api-version=2025-04-01-preview" in result

    def test_no_api_version_for_non_azure(self):
        result = resolve_endpoint(
            "https://api.openai.com/v1", "/chat/completions", api_version="2025-04-01-preview"
        )
        assert "api-version" not in result

    def test_strips_trailing_slash(self):
        result = resolve_endpoint("https://api.openai.com/v1/", "/chat/completions")
        assert result == "https://api.openai.com/v1/chat/completions"


class TestAzure:
    """Azure 检测与认证测试。 / Azure detection & auth tests."""

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://xxx.cognitiveservices.azure.com/openai", True),
            ("https://xxx.openai.azure.com/v1", True),
            ("https://xxx.services.ai.azure.com/openai", True),
            ("https://api.openai.com/v1", False),
        ],
    )
    def test_detect(self, url, expected):
        assert detect_azure(url) is expected

    def test_headers(self):
        assert auth_headers("k", is_azure=True)["api-key"] == "k"
        assert auth_headers("k", is_azure=False)["Authorization"] == "Bearer k"


class TestBuildRequest:
    """请求构建测试。 / Request building tests."""

    def test_standard_model(self):
        body = _adapter()._build_request("sys", "user", temperature=0.3, max_tokens=5)
        assert body["model"] == "gpt-test"
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "user"},
        ]
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 5
        assert "reasoning_effort" not in body

    def test_omits_system_when_empty(self):
        body = _adapter()._build_request("", "Hello")
        assert body["messages"] == [{"role": "user", "content": "Hello"}]

    def test_reasoning_model(self):
        body = _adapter()._build_request(
            "sys", "user", temperature=0.3, max_tokens=150, reasoning_effort="high", verbosity="low"
        )
        assert body["reasoning_effort"] == "high"
        assert body["verbosity"] == "low"
        assert body["max_completion_tokens"] == 150
        assert "temperature" not in body
        assert "max_tokens" not in body

    def test_default_effort_from_constructor(self):
        body = _adapter(reasoning_effort="none")._build_request("sys", "user", max_tokens=5)
        assert body["reasoning_effort"] == "none"
        assert body["max_completion_tokens"] == 5


class TestExtract:
    """响应解析测试。 / Response parsing tests."""

    def test_text_from_standard_response(self):
        data = {"choices": [{"message": {"role": "assistant", "content": "4"}}]}
        assert ChatCompletionsAdapter._extract_text(data) == "4"

    def test_empty_on_missing_choices(self):
        assert ChatCompletionsAdapter._extract_text({}) == ""
        assert ChatCompletionsAdapter._extract_text({"choices": []}) == ""

    def test_usage(self):
        usage = ChatCompletionsAdapter._extract_usage(
            {"usage": {"prompt_tokens": 12, "completion_tokens": 3}}
        )
        assert (usage.input_tokens, usage.output_tokens, usage.total_tokens) == (12, 3, 15)
        assert ChatCompletionsAdapter._extract_usage({}) is None


class TestGenerate:
    """端到端 HTTP 测试（MockTransport）。 / HTTP round trip via MockTransport."""

    @pytest.mark.asyncio
    async def test_posts_and_parses(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "choices": [{"message": {"content": "5"}}],
                    "usage": {"prompt_tokens": 40, "completion_tokens": 1},
                },
            )

        result = await _adapter(handler).generate("sys", "rate it", temperature=0.3, max_tokens=5)

        assert result.text == "5"
        assert result.usage.input_tokens == 40
        assert captured["url"] == "https://api.openai.com/v1/chat/completions"
        assert captured["auth"] == "Bearer sk-test"
        assert captured["body"]["messages"][1]["content"] == "rate it"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error_type, retryable",
        [
            (429, RateLimitError, True),
            (503, BackendUnavailableError, True),
            (400, BackendError, False),
            (401, BackendError, False),
        ],
    )
    async def test_status_mapping(self, status, error_type, retryable):
        def handler(request):
            return httpx.Response(status, text="nope")

        with pytest.raises(error_type) as exc_info:
            await _adapter(handler).generate("sys", "user")
        assert exc_info.value.status_code == status
        assert exc_info.value.retryable is retryable

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(BackendError):
            await _adapter(handler).generate("sys", "user")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendError) as exc_info:
            await _adapter(handler).generate("sys", "user")
        assert not exc_info.value.retryable


class TestFromEndpointConfig:
    """工厂方法测试。 / Factory method tests."""

    def test_raises_without_url(self):
        config = ModelEndpointConfig(model_platform="openai", model_name="gpt-test", api_key="k")
        with pytest.raises(ValueError, match="url"):
            ChatCompletionsAdapter.from_endpoint_config(config)

    def test_raises_without_api_key(self):
        config = ModelEndpointConfig(
            model_platform="openai", model_name="gpt-test", url="https://api.openai.com/v1"
        )
        with pytest.raises(ValueError, match="api_key"):
            ChatCompletionsAdapter.from_endpoint_config(config)

    def test_creates_adapter_with_valid_config(self):
        config = ModelEndpointConfig(
            model_platform="openai",
            model_name="gpt-test",
            api_key="sk-test",
            url="https://api.openai.com/v1",
            temperature=0.5,
            max_tokens=2048,
            reasoning_effort="low",
        )
        adapter = ChatCompletionsAdapter.from_endpoint_config(config)
        assert adapter.model == "gpt-test"
        assert adapter._temperature == 0.5
        assert adapter._max_tokens == 2048
        assert adapter._reasoning_effort == "low"
