# test_llm_backend.py
# =============================================================================
# LLM 配置加载与后端构建测试
#
# 测试内容：
#   1. ModelEndpointConfig.from_dict 简写 / 完整格式与取值校验
#   2. LLMConfigLoader 分层合并（文件 < 代码）与环境变量展开
#   3. create_backend：generation 必填、embedding 可选
#   4. OpenAICompatibleBackend.configure 把推理提示带入请求
# =============================================================================

import json

import httpx
import pytest

from intentlab.errors import ConfigurationError
from intentlab.llm.backend import (
    LLMBackend,
    OpenAICompatibleBackend,
    create_backend,
    supports_embeddings,
)
from intentlab.llm.config import (
    LLMConfigLoader,
    ModelEndpointConfig,
    _mask_key,
    normalize_base_url,
)


def _missing(tmp_path):
    return str(tmp_path / "absent.yaml")


class TestEndpointConfig:
    """端点配置测试。 / Endpoint config tests."""

    def test_shorthand(self):
        config = ModelEndpointConfig.from_dict("text-embedding-3-small")
        assert config.model_name == "text-embedding-3-small"
        assert config.model_platform == "openai"

    def test_full_dict_extra_passthrough(self):
        config = ModelEndpointConfig.from_dict(
            {"model": "deepseek-chat", "temperature": 0.2, "dimensions": 64}
        )
        assert config.model_platform == "deepseek"
        assert config.temperature == 0.2
        assert config.extra == {"dimensions": 64}

    def test_rejects_bad_reasoning_effort(self):
        with pytest.raises(ConfigurationError):
            ModelEndpointConfig.from_dict({"model_name": "gpt-5.2", "reasoning_effort": "max"})

    def test_rejects_bad_verbosity(self):
        with pytest.raises(ConfigurationError):
            ModelEndpointConfig.from_dict({"model_name": "gpt-5.2", "verbosity": "verbose"})


class TestLoader:
    """分层合并测试。 / Layered merge tests."""

    def test_code_overrides_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("INTENT_TEST_KEY", "sk-from-env")
        path = tmp_path / "llm_config.yaml"
        path.write_text(
            "_default:\n"
            "  api_key: ${INTENT_TEST_KEY}\n"
            "  url: ${INTENT_TEST_URL:-https://api.openai.com/v1}\n"
            "generation:\n"
            "  model_name: gpt-5.2\n"
            "  temperature: 0.4\n",
            encoding="utf-8",
        )
        loader = LLMConfigLoader(
            llm_config={"generation": {"temperature": 0.9}}, config_file=str(path)
        )

        config = loader.resolve("generation")

        assert config.api_key == "sk-from-env"
        assert config.url == "https://api.openai.com/v1"
        assert config.model_name == "gpt-5.2"
        assert config.temperature == 0.9

    def test_missing_model_raises(self, tmp_path):
        loader = LLMConfigLoader(llm_config={}, config_file=_missing(tmp_path))
        with pytest.raises(ConfigurationError, match="generation"):
            loader.resolve("generation")

    def test_has_role_and_summary(self, tmp_path):
        loader = LLMConfigLoader(
            llm_config={"_default": {"api_key": "sk-1234567890abcdef"}, "generation": "gpt-5.2"},
            config_file=_missing(tmp_path),
        )
        assert loader.has_role("generation")
        assert not loader.has_role("embedding")
        summary = loader.summary()
        assert summary["generation"]["api_key"] == "sk-12345...cdef"
        assert summary["generation"]["url"] == "(auto)"

    def test_mask_and_normalize(self):
        assert _mask_key(None) == "(env)"
        assert _mask_key("short") == "sho***"
        assert normalize_base_url("https://api.openai.com/v1/embeddings") == "https://api.openai.com/v1"


def _llm_config(with_embedding=True):
    config = {
        "_default": {"api_key": "sk-test", "url": "https://api.openai.com/v1"},
        "generation": "gpt-5.2",
    }
    if with_embedding:
        config["embedding"] = "text-embedding-3-small"
    return config


class TestCreateBackend:
    """后端构建测试。 / Backend factory tests."""

    def test_generation_and_embedding(self, tmp_path):
        backend = create_backend(_llm_config(), config_file=_missing(tmp_path))
        assert backend.model == "gpt-5.2"
        assert backend.embedding_model == "text-embedding-3-small"
        assert supports_embeddings(backend)
        assert isinstance(backend, LLMBackend)

    def test_generation_only(self, tmp_path):
        backend = create_backend(_llm_config(with_embedding=False), config_file=_missing(tmp_path))
        assert backend.embedding_model is None
        assert not supports_embeddings(backend)

    def test_missing_generation(self, tmp_path):
        with pytest.raises(ConfigurationError):
            create_backend({}, config_file=_missing(tmp_path))

    def test_missing_url_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError, match="url"):
            create_backend(
                {"_default": {"api_key": "sk-test"}, "generation": "gpt-5.2"},
                config_file=_missing(tmp_path),
            )

    @pytest.mark.asyncio
    async def test_embed_without_embedder(self, tmp_path):
        backend = create_backend(_llm_config(with_embedding=False), config_file=_missing(tmp_path))
        with pytest.raises(ConfigurationError):
            await backend.embed_text("hello")


class TestConfigure:
    @pytest.mark.asyncio
    async def test_hints_reach_request(self, tmp_path):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"content": "3"}}]})

        backend = create_backend(
            _llm_config(),
            config_file=_missing(tmp_path),
            transport=httpx.MockTransport(handler),
        )
        hinted = backend.configure(reasoning_effort="medium", verbosity="low")

        await hinted.generate_text("sys", "user", temperature=0.7, max_tokens=150)
        await backend.generate_text("sys", "user", temperature=0.7, max_tokens=150)

        assert isinstance(hinted, OpenAICompatibleBackend)
        assert bodies[0]["reasoning_effort"] == "medium"
        assert bodies[0]["verbosity"] == "low"
        assert "temperature" not in bodies[0]
        assert "reasoning_effort" not in bodies[1]
        assert bodies[1]["temperature"] == 0.7


class TestSupportsEmbeddings:
    def test_plain_object(self):
        class GenerateOnly:
            async def generate_text(self, system, user, temperature=None, max_tokens=None):
                return None

        assert not supports_embeddings(GenerateOnly())
        assert not supports_embeddings(None)
