# config.py
# =============================================================================
# 流水线配置 / Pipeline configuration
#
# 合并顺序（低 → 高） / Merge order (low → high):
#   默认值 < 配置文件 pipeline_config.yaml（可选 pipeline: 段）< 代码传入
#
# 配置在运行开始时构建一次，运行期间不可变（frozen dataclass）。
# 未知键、未知方法、非法数值都在构建时抛出 ConfigurationError，
# 不会拖到运行中途才暴露。
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from typing import Any, Dict, Mapping, Optional, Union

from intentlab.errors import ConfigurationError
from intentlab.utils.config_files import find_and_read_yaml

logger = logging.getLogger(__name__)

# 评分方法（大小写敏感） / Rating methods (case-sensitive)
VALID_METHODS = ("DLR", "FLR", "SSR")

_VALID_REASONING = ("none", "low", "medium", "high")
_VALID_VERBOSITY = ("low", "medium", "high")

_CONFIG_SEARCH_PATHS = [
    "pipeline_config.yaml",
    "pipeline_config.yml",
    "config/pipeline_config.yaml",
    "config/pipeline_config.yml",
]


# =============================================================================
# 配置数据结构 / Config data structures
# =============================================================================


@dataclass(frozen=True)
class ConcurrencyConfig:
    """各阶段的并发上限。 / Per-stage concurrency limits."""
    dlr: int = 20
    flr: int = 15
    ssr: int = 15
    embed: int = 30

    def as_limits(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class RateLimitConfig:
    """请求 / token 限流参数。 / Request and token rate limits."""
    rpm: int = 500
    tpm: int = 150_000
    retry_backoff_ms: int = 1000  # 429/5xx 首次退避基数
    max_retries: int = 3


@dataclass(frozen=True)
class ReasoningConfig:
    """各阶段推理强度提示。 / Per-stage reasoning effort hints."""
    dlr: str = "none"  # 纯分类
    flr_text: str = "medium"
    flr_rating: str = "none"
    ssr_text: str = "high"


@dataclass(frozen=True)
class VerbosityConfig:
    """各阶段输出详略提示。 / Per-stage verbosity hints."""
    dlr: str = "low"
    flr_text: str = "medium"
    flr_rating: str = "low"
    ssr_text: str = "medium"


@dataclass(frozen=True)
class MaxOutputTokens:
    """各阶段输出 token 上限。 / Per-stage output token budgets."""
    dlr: int = 5  # 只需 "1".."5"
    flr_text: int = 150  # 1-3 句
    flr_rating: int = 5
    ssr_text: int = 150


@dataclass(frozen=True)
class SSRParams:
    """SSR 参数。 / Similarity-to-PMF parameters."""
    epsilon: float = 0.01
    temperature: float = 1.0
    anchor_sets: int = 6


@dataclass(frozen=True)
class PipelineConfig:
    """一次流水线运行的完整配置。 / Full configuration of one pipeline run."""
    method: str = "SSR"
    n_respondents: int = 200
    n_samples_per_respondent: int = 2

    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    reasoning_effort: ReasoningConfig = field(default_factory=ReasoningConfig)
    verbosity: VerbosityConfig = field(default_factory=VerbosityConfig)
    max_output_tokens: MaxOutputTokens = field(default_factory=MaxOutputTokens)
    ssr: SSRParams = field(default_factory=SSRParams)

    # 运行控制 / Operational controls
    dry_run: bool = False
    cost_cap_usd: Optional[float] = None

    # 缓存 / Caching
    use_cache: bool = True
    prompt_cache_key: Optional[str] = None

    # 置信区间 / Confidence interval
    bootstrap_iterations: int = 1000
    confidence_level: float = 0.95

    @property
    def total_tasks(self) -> int:
        return self.n_respondents * self.n_samples_per_respondent

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_PIPELINE_CONFIG = PipelineConfig()

_SECTION_TYPES = {
    "concurrency": ConcurrencyConfig,
    "rate_limits": RateLimitConfig,
    "reasoning_effort": ReasoningConfig,
    "verbosity": VerbosityConfig,
    "max_output_tokens": MaxOutputTokens,
    "ssr": SSRParams,
}


# =============================================================================
# 构建与校验 / Build & validate
# =============================================================================


def build_pipeline_config(
    overrides: Union[PipelineConfig, Mapping[str, Any], None] = None,
    config_file: Optional[str] = None,
) -> PipelineConfig:
    """合并默认值、配置文件与代码覆盖项，返回校验后的 PipelineConfig。

    Args:
        overrides: 代码传入的覆盖项。可以是完整的 PipelineConfig，
            也可以是只包含部分字段的嵌套字典，例如
            {"method": "DLR", "concurrency": {"dlr": 5}}。
        config_file: 配置文件路径（可选，不传则自动搜索）。
            文件可以直接是配置映射，也可以把配置放在 pipeline: 段下。

    Raises:
        ConfigurationError: 未知键、未知方法或非法数值。
    """
    merged: Dict[str, Any] = DEFAULT_PIPELINE_CONFIG.to_dict()

    file_config = find_and_read_yaml(config_file, _CONFIG_SEARCH_PATHS)
    if "pipeline" in file_config:
        file_config = file_config["pipeline"] or {}
    if file_config:
        _deep_merge(merged, file_config, "pipeline")

    if isinstance(overrides, PipelineConfig):
        _deep_merge(merged, overrides.to_dict(), "pipeline")
    elif overrides:
        _deep_merge(merged, dict(overrides), "pipeline")

    config = _from_dict(merged)
    validate_pipeline_config(config)
    return config


def _deep_merge(base: Dict[str, Any], update: Mapping[str, Any], path: str) -> None:
    """把 update 合并进 base；遇到 base 中不存在的键立即报错。"""
    for key, value in update.items():
        if key not in base:
            raise ConfigurationError(f"未知配置项: '{path}.{key}'")
        if isinstance(base[key], dict):
            if is_dataclass(value):
                value = asdict(value)
            if not isinstance(value, Mapping):
                raise ConfigurationError(
                    f"配置项 '{path}.{key}' 必须是映射，收到 {type(value).__name__}"
                )
            _deep_merge(base[key], value, f"{path}.{key}")
        else:
            base[key] = value


def _from_dict(data: Dict[str, Any]) -> PipelineConfig:
    kwargs: Dict[str, Any] = {}
    for f in fields(PipelineConfig):
        value = data[f.name]
        section_type = _SECTION_TYPES.get(f.name)
        if section_type is not None:
            value = section_type(**value)
        kwargs[f.name] = value
    return PipelineConfig(**kwargs)


def validate_pipeline_config(config: PipelineConfig) -> None:
    """校验配置取值。 / Validate configuration values.

    Raises:
        ConfigurationError: 任一字段取值非法。
    """
    if config.method not in VALID_METHODS:
        raise ConfigurationError(
            f"不支持的评分方法: '{config.method}'。"
            f"仅支持: {', '.join(VALID_METHODS)}（大小写敏感）。"
        )

    _require_int("n_respondents", config.n_respondents, minimum=1)
    _require_int(
        "n_samples_per_respondent", config.n_samples_per_respondent, minimum=1
    )

    for name, value in asdict(config.concurrency).items():
        _require_int(f"concurrency.{name}", value, minimum=1)

    _require_int("rate_limits.rpm", config.rate_limits.rpm, minimum=1)
    _require_int("rate_limits.tpm", config.rate_limits.tpm, minimum=1)
    _require_number(
        "rate_limits.retry_backoff_ms", config.rate_limits.retry_backoff_ms
    )
    _require_int("rate_limits.max_retries", config.rate_limits.max_retries, minimum=0)

    for name, value in asdict(config.reasoning_effort).items():
        if value not in _VALID_REASONING:
            raise ConfigurationError(
                f"reasoning_effort.{name} 不支持 '{value}'，"
                f"仅支持: {', '.join(_VALID_REASONING)}。"
            )
    for name, value in asdict(config.verbosity).items():
        if value not in _VALID_VERBOSITY:
            raise ConfigurationError(
                f"verbosity.{name} 不支持 '{value}'，"
                f"仅支持: {', '.join(_VALID_VERBOSITY)}。"
            )
    for name, value in asdict(config.max_output_tokens).items():
        _require_int(f"max_output_tokens.{name}", value, minimum=1)

    _require_number("ssr.epsilon", config.ssr.epsilon)
    _require_number("ssr.temperature", config.ssr.temperature)
    if config.ssr.temperature <= 0:
        raise ConfigurationError("ssr.temperature 必须大于 0")
    _require_int("ssr.anchor_sets", config.ssr.anchor_sets, minimum=1)

    if not isinstance(config.dry_run, bool):
        raise ConfigurationError("dry_run 必须是布尔值")
    if not isinstance(config.use_cache, bool):
        raise ConfigurationError("use_cache 必须是布尔值")
    if config.cost_cap_usd is not None:
        _require_number("cost_cap_usd", config.cost_cap_usd)

    _require_int("bootstrap_iterations", config.bootstrap_iterations, minimum=1)
    _require_number("confidence_level", config.confidence_level)
    if not 0 < config.confidence_level < 1:
        raise ConfigurationError("confidence_level 必须在 (0, 1) 之间")


def _require_int(name: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(
            f"配置项 '{name}' 必须是整数，收到 {value!r}"
        )
    if value < minimum:
        raise ConfigurationError(
            f"配置项 '{name}' 必须 ≥ {minimum}，收到 {value}"
        )


def _require_number(name: str, value: Any) -> None:
    """非负数值。"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(
            f"配置项 '{name}' 必须是数值，收到 {value!r}"
        )
    if value < 0:
        raise ConfigurationError(f"配置项 '{name}' 不能为负数，收到 {value}")
