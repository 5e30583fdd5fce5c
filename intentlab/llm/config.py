# config.py
# =============================================================================
# LLM 配置加载与合并模块 / LLM config loading & merging module
#
# 职责 / Responsibilities:
#   - 定义端点配置的数据结构（ModelEndpointConfig）
#     / Define the endpoint config data structure (ModelEndpointConfig)
#   - 三层优先级配置加载：代码传入 > 配置文件 > 环境变量
#     / Three-tier priority loading: code > config file > env vars
#   - 为 generation（文本生成）与 embedding（向量）两个角色提供解析后的配置
#     / Resolve configs for the generation and embedding roles
#   - 配置缺失时抛出 ConfigurationError，不提供任何硬编码默认模型
#     / Raise ConfigurationError on missing config; no hardcoded default models
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from intentlab.errors import ConfigurationError
from intentlab.utils.config_files import find_and_read_yaml

logger = logging.getLogger(__name__)

GENERATION_ROLE = "generation"
EMBEDDING_ROLE = "embedding"

# 已知角色，仅用于配置缺失时给出友好提示 / Known roles, for friendlier errors
_KNOWN_ROLES = [GENERATION_ROLE, EMBEDDING_ROLE]

_VALID_REASONING_EFFORTS = ("none", "low", "medium", "high")
_VALID_VERBOSITY = ("low", "medium", "high")


# =============================================================================
# 数据结构 / Data Structures
# =============================================================================


@dataclass
class ModelEndpointConfig:
    """单个模型端点的完整配置。
    / Complete config for a single model endpoint.
    """

    # --- 必填：模型标识 / Required: model identity ---
    model_platform: str  # "openai" / "deepseek" / "qwen" ...
    model_name: str  # "gpt-5.2" / "text-embedding-3-small" ...

    # --- 可选：连接信息 / Optional: connection info ---
    api_key: Optional[str] = None
    url: Optional[str] = None

    # --- 可选：模型行为参数 / Optional: model behavior params ---
    temperature: float = 0.7
    # 安全默认上限 / Safe default cap
    max_tokens: Optional[int] = 4096
    timeout: Optional[float] = None
    # 推理模型参数（仅部分端点支持） / Reasoning-model params (some endpoints only)
    reasoning_effort: Optional[str] = None
    verbosity: Optional[str] = None

    # --- 可选：Azure 专用 / Optional: Azure-specific ---
    api_version: Optional[str] = None

    # --- 可选：额外参数（透传给适配器） / Optional: extra params ---
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> ModelEndpointConfig:
        """从字典构建配置。 / Build config from dict.

        支持两种格式 / Two formats supported:
        1. 简写格式（仅模型名字符串） / Shorthand: "gpt-5.2"
        2. 完整格式（字典） / Full dict: {"model_name": "gpt-5.2", "api_key": ...}
        """
        if isinstance(data, str):
            return cls(model_platform=_infer_platform(data), model_name=data)

        model_name = data.get("model_name") or data.get("model", "")
        model_platform = data.get("model_platform") or _infer_platform(
            model_name
        )

        reasoning_effort = data.get("reasoning_effort")
        if (
            reasoning_effort is not None
            and reasoning_effort not in _VALID_REASONING_EFFORTS
        ):
            raise ConfigurationError(
                f"不支持的 reasoning_effort: '{reasoning_effort}'。"
                f"仅支持: {', '.join(_VALID_REASONING_EFFORTS)}。"
            )
        verbosity = data.get("verbosity")
        if verbosity is not None and verbosity not in _VALID_VERBOSITY:
            raise ConfigurationError(
                f"不支持的 verbosity: '{verbosity}'。"
                f"仅支持: {', '.join(_VALID_VERBOSITY)}。"
            )

        _known_keys = {
            "model",
            "model_name",
            "model_platform",
            "api_key",
            "url",
            "temperature",
            "max_tokens",
            "timeout",
            "reasoning_effort",
            "verbosity",
            "api_version",
        }

        return cls(
            model_platform=model_platform,
            model_name=model_name,
            api_key=data.get("api_key"),
            url=data.get("url"),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=(
                data["max_tokens"] if "max_tokens" in data else 4096
            ),
            timeout=data.get("timeout"),
            reasoning_effort=reasoning_effort,
            verbosity=verbosity,
            api_version=data.get("api_version"),
            extra={
                k: v
                for k, v in data.items()
                if k not in _known_keys
            },
        )


# =============================================================================
# 平台推断 / Platform Inference
# =============================================================================

# 模型名称 → 平台映射规则（按关键词匹配） / Model name → platform rules
_PLATFORM_INFERENCE_RULES: List[tuple] = [
    (["gpt-", "o1-", "o3-", "text-embedding", "chatgpt"], "openai"),
    (["deepseek"], "deepseek"),
    (["qwen", "qwq"], "qwen"),
    (["llama", "nomic-embed"], "ollama"),
]


def _infer_platform(model_name: str) -> str:
    """根据模型名称推断 model_platform。 / Infer model_platform from model name.

    未能推断时返回 "openai"（最通用的 fallback）。
    """
    name_lower = model_name.lower()
    for keywords, platform in _PLATFORM_INFERENCE_RULES:
        for kw in keywords:
            if kw in name_lower:
                return platform
    logger.debug(
        "无法从模型名称 '%s' 推断平台，使用默认 'openai'", model_name
    )
    return "openai"


# =============================================================================
# 配置加载器 / Config Loader
# =============================================================================


class LLMConfigLoader:
    """LLM 配置加载器 — 实现三层优先级配置合并。
    / LLM config loader — three-tier priority merging.

    llm_config 字典格式 / Dict format:
    {
        "_default": {"api_key": "sk-xxx", "url": "https://api.openai.com/v1"},
        "generation": {"model_name": "gpt-5.2", "reasoning_effort": "high"},
        "embedding": "text-embedding-3-small",  # 简写 / shorthand
    }
    """

    _CONFIG_SEARCH_PATHS = [
        "llm_config.yaml",
        "llm_config.yml",
        "config/llm_config.yaml",
        "config/llm_config.yml",
    ]

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
    ):
        self._code_config = llm_config or {}
        self._file_config: Dict[str, Any] = find_and_read_yaml(
            config_file, self._CONFIG_SEARCH_PATHS
        )

    def resolve(self, role: str) -> ModelEndpointConfig:
        """解析指定角色的完整模型配置。 / Resolve full model config for a role.

        合并策略（低 → 高） / Merge order (low → high):
        文件 _default < 文件角色级 < 代码 _default < 代码角色级

        Raises:
            ConfigurationError: 合并后 model_name 仍为空。
        """
        merged: Dict[str, Any] = {}
        for layer in (self._file_config, self._code_config):
            default = layer.get("_default", {})
            if isinstance(default, dict):
                merged.update({k: v for k, v in default.items() if v is not None})
            role_cfg = layer.get(role, {})
            if isinstance(role_cfg, str):
                merged["model_name"] = role_cfg
                merged["model_platform"] = _infer_platform(role_cfg)
            elif isinstance(role_cfg, dict):
                merged.update({k: v for k, v in role_cfg.items() if v is not None})

        model_name = merged.get("model_name") or merged.get("model", "")
        if not model_name:
            hint = ""
            if role in _KNOWN_ROLES:
                hint = (
                    f"\n提示：'{role}' 是 intentlab 的已知角色，"
                    f"请在 llm_config 参数、llm_config.yaml 配置文件"
                    f"或 _default 全局配置中为其指定模型。"
                )
            raise ConfigurationError(
                f"角色 '{role}' 的 LLM 模型配置缺失：未找到 model_name。{hint}"
            )
        merged["model_name"] = model_name
        return ModelEndpointConfig.from_dict(merged)

    def has_role(self, role: str) -> bool:
        """检查角色是否有独立配置。 / Check whether a role is configured."""
        return role in self._code_config or role in self._file_config

    def summary(self) -> Dict[str, Dict[str, str]]:
        """输出配置摘要（隐藏 API Key），用于日志/调试。"""
        result = {}
        for role in _KNOWN_ROLES:
            try:
                cfg = self.resolve(role)
            except ConfigurationError:
                continue
            result[role] = {
                "platform": cfg.model_platform,
                "model": cfg.model_name,
                "url": cfg.url or "(auto)",
                "api_key": _mask_key(cfg.api_key),
            }
        return result


# =============================================================================
# 工具函数 / Utility Functions
# =============================================================================


def normalize_base_url(url: str) -> str:
    """将 URL 规范化为基础地址，剥离已知的 API 路径后缀。
    / Normalize URL to base address, stripping known API path suffixes.

    示例 / Examples:
    - ".../v1/chat/completions" → ".../v1"
    - ".../v1/embeddings" → ".../v1"
    - ".../v1" → ".../v1" (unchanged)
    """
    _API_PATH_SUFFIXES = [
        "/chat/completions",
        "/completions",
        "/embeddings",
    ]

    normalized = url.rstrip("/")
    for suffix in _API_PATH_SUFFIXES:
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)]
            break

    return normalized


def _mask_key(key: Optional[str]) -> str:
    """遮蔽 API Key，仅显示前 8 位和后 4 位。 / Mask API key."""
    if not key:
        return "(env)"
    if len(key) <= 12:
        return key[:3] + "***"
    return key[:8] + "..." + key[-4:]
