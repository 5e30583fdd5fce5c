# chat_completions_adapter.py
# =============================================================================
# OpenAI Chat Completions API 适配器（文本生成）
#
# 职责：
#   - 将 (system_prompt, user_message) 调用转换为 Chat Completions 请求
#   - 解析返回结构，提取文本内容与 token 用量
#   - 将 HTTP 失败映射为 BackendError 分类（429/5xx 可重试，其余立即上抛）
#
# 重试不在适配器内进行：可重试错误由 PipelineThrottler 统一退避重试，
# 保证所有调用共享同一个限流窗口。
#
# URL 兼容性：
#   1. 基础 URL：https://api.openai.com/v1 -> 自动追加 /chat/completions
#   2. 完整路径：https://xxx.azure.com/openai/chat/completions -> 直接使用
#   3. 带 query 参数 -> 直接使用（保留所有 query 参数）
#
# 认证方式：
#   - 标准端点：Authorization: Bearer <key>
#   - Azure 端点：api-key: <key>（自动检测 Azure 域名）
# =============================================================================

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import httpx

from intentlab.errors import BackendError, backend_error_for_status
from intentlab.llm.types import GenerateResult, TokenUsage

logger = logging.getLogger(__name__)

# Azure 相关域名后缀（用于自动检测认证方式）
AZURE_DOMAIN_SUFFIXES = (
    "cognitiveservices.azure.com",
    "openai.azure.com",
    "services.ai.azure.com",
)


def detect_azure(url: str) -> bool:
    """检测 URL 是否为 Azure 端点。"""
    hostname = urlparse(url).hostname or ""
    return any(hostname.endswith(d) for d in AZURE_DOMAIN_SUFFIXES)


def resolve_endpoint(
    url: str, path_suffix: str, api_version: Optional[str] = None
) -> str:
    """智能解析端点 URL。

    处理逻辑：
    1. URL 路径中已包含 path_suffix -> 直接使用
    2. 否则在路径末尾追加 path_suffix
    3. Azure URL 且 query 中无 api-version -> 自动追加
    """
    parsed = urlparse(url)

    path = parsed.path
    if path_suffix not in path:
        path = path.rstrip("/") + path_suffix

    query_params = parse_qs(parsed.query, keep_blank_values=True)

    if api_version and "api-version" not in query_params:
        if detect_azure(url):
            query_params["api-version"] = [api_version]

    new_query = urlencode(query_params, doseq=True)
    return urlunparse(parsed._replace(path=path, query=new_query))


def auth_headers(api_key: str, is_azure: bool) -> Dict[str, str]:
    headers: Dict[str, str] = {"Content-Type": "application/json"}
    if is_azure:
        headers["api-key"] = api_key
    else:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


async def post_json(
    endpoint: str,
    headers: Dict[str, str],
    body: Dict[str, Any],
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport],
    api_name: str,
) -> Dict[str, Any]:
    """发送 JSON 请求并把失败映射为 BackendError。

    Raises:
        RateLimitError: HTTP 429。
        BackendUnavailableError: HTTP 5xx。
        BackendError: 其他 HTTP 状态、网络异常或响应不是合法 JSON。
    """
    try:
        async with httpx.AsyncClient(
            timeout=timeout, transport=transport
        ) as client:
            response = await client.post(endpoint, headers=headers, json=body)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as e:
        logger.warning(
            "%s 调用失败 (HTTP %d): %s",
            api_name,
            e.response.status_code,
            e.response.text[:200],
        )
        raise backend_error_for_status(
            e.response.status_code,
            f"{api_name} HTTP {e.response.status_code}: {e.response.text[:200]}",
        ) from e
    except httpx.RequestError as e:
        logger.warning("%s 请求异常: %s", api_name, e)
        raise BackendError(f"{api_name} 请求异常: {e}") from e
    except json.JSONDecodeError as e:
        raise BackendError(f"{api_name} 响应不是合法 JSON: {e}") from e


class ChatCompletionsAdapter:
    """OpenAI Chat Completions API 适配器。

    通过 httpx 异步 HTTP 直连调用 Chat Completions API 端点，
    返回文本与 token 用量。
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        api_version: Optional[str] = None,
        reasoning_effort: Optional[str] = None,
        verbosity: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """初始化适配器。

        Args:
            url: API 端点 URL（基础 URL 或完整 /chat/completions 路径）。
            api_key: API 密钥。
            model: 模型名称（如 "gpt-5.2"）。
            temperature: 默认生成温度（单次调用可覆盖）。
            max_tokens: 默认最大输出 token 数（单次调用可覆盖）。
            timeout: 请求超时时间（秒）。
            api_version: Azure API 版本（可选）。
            reasoning_effort: 默认推理强度（设置后按推理模型构建请求）。
            verbosity: 默认输出详略程度。
            transport: 可选 httpx transport（测试时注入 MockTransport）。
        """
        self._endpoint = resolve_endpoint(url, "/chat/completions", api_version)
        self._is_azure = detect_azure(url)
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._reasoning_effort = reasoning_effort
        self._verbosity = verbosity
        self._transport = transport

        if self._is_azure:
            logger.info(
                "检测到 Azure 端点，将使用 api-key 认证头: %s",
                self._endpoint,
            )

    @property
    def model(self) -> str:
        return self._model

    async def generate(
        self,
        system_prompt: str,
        user_message: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        reasoning_effort: Optional[str] = None,
        verbosity: Optional[str] = None,
    ) -> GenerateResult:
        """调用 Chat Completions API 并返回文本与用量。

        Raises:
            BackendError: HTTP 失败或响应无法解析（429/5xx 为可重试子类）。
        """
        body = self._build_request(
            system_prompt,
            user_message,
            temperature=temperature,
            max_tokens=max_tokens,
            reasoning_effort=reasoning_effort,
            verbosity=verbosity,
        )
        data = await post_json(
            self._endpoint,
            auth_headers(self._api_key, self._is_azure),
            body,
            self._timeout,
            self._transport,
            "Chat Completions API",
        )
        return GenerateResult(
            text=self._extract_text(data),
            usage=self._extract_usage(data),
        )

    # =========================================================================
    # 请求构建与响应解析
    # =========================================================================

    def _build_request(
        self,
        system_prompt: str,
        user_message: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        reasoning_effort: Optional[str] = None,
        verbosity: Optional[str] = None,
    ) -> Dict[str, Any]:
        """构建 Chat Completions API 请求体。

        推理模型使用 max_completion_tokens 且不接受 temperature。
        """
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_message})

        body: Dict[str, Any] = {"model": self._model, "messages": messages}

        effort = reasoning_effort or self._reasoning_effort
        detail = verbosity or self._verbosity
        limit = max_tokens if max_tokens is not None else self._max_tokens

        if effort is not None:
            body["reasoning_effort"] = effort
            if detail is not None:
                body["verbosity"] = detail
            if limit is not None:
                body["max_completion_tokens"] = limit
        else:
            body["temperature"] = (
                temperature if temperature is not None else self._temperature
            )
            if limit is not None:
                body["max_tokens"] = limit

        return body

    @staticmethod
    def _extract_text(response_data: Dict[str, Any]) -> str:
        """从响应中提取文本：response["choices"][0]["message"]["content"]。"""
        choices = response_data.get("choices", [])
        if choices:
            message = choices[0].get("message", {})
            content = message.get("content")
            if content is not None:
                return content

        logger.warning(
            "Chat Completions API 响应中未找到文本内容: %s",
            json.dumps(response_data, ensure_ascii=False)[:300],
        )
        return ""

    @staticmethod
    def _extract_usage(response_data: Dict[str, Any]) -> Optional[TokenUsage]:
        usage = response_data.get("usage")
        if not isinstance(usage, dict):
            return None
        return TokenUsage(
            input_tokens=int(usage.get("prompt_tokens", 0)),
            output_tokens=int(usage.get("completion_tokens", 0)),
        )

    @classmethod
    def from_endpoint_config(
        cls, config, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> ChatCompletionsAdapter:
        """从 ModelEndpointConfig 创建适配器实例。

        Raises:
            ValueError: 缺少必要的配置（url / api_key）。
        """
        if not config.url:
            raise ValueError(
                "Chat Completions API 需要显式配置 url，"
                "但 generation 角色的 url 为空。请在 llm_config 中设置 url。"
            )
        if not config.api_key:
            raise ValueError(
                "Chat Completions API 需要显式配置 api_key，"
                "请在 llm_config 中设置 api_key 或通过环境变量提供。"
            )

        return cls(
            url=config.url,
            api_key=config.api_key,
            model=config.model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout or 120.0,
            api_version=config.api_version,
            reasoning_effort=config.reasoning_effort,
            verbosity=config.verbosity,
            transport=transport,
        )
