# base.py
# =============================================================================
# 评分策略契约与共享提示词片段 / Strategy contract & shared prompt blocks
#
# 契约：execute(backend, persona, concept, price_point, options) -> StrategyOutput
# 三种策略由同样的三个领域输入构建确定性的提示词，不修改输入，
# 每个样本调用后端 1~2 次。
# =============================================================================

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from intentlab import prompts
from intentlab.pipeline.config import (
    MaxOutputTokens,
    ReasoningConfig,
    SSRParams,
    VerbosityConfig,
)
from intentlab.primitives.models import Persona, PricePoint, ProductConcept

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyOptions:
    """单个样本执行所需的参数。"""
    max_output_tokens: MaxOutputTokens = field(default_factory=MaxOutputTokens)
    reasoning_effort: ReasoningConfig = field(default_factory=ReasoningConfig)
    verbosity: VerbosityConfig = field(default_factory=VerbosityConfig)
    ssr: SSRParams = field(default_factory=SSRParams)
    # SSR 预计算的锚点向量 [组][等级][维度]
    anchor_embeddings: Optional[Sequence[Sequence[Sequence[float]]]] = None
    # 缓存盐：区分同一运行中的独立样本
    cache_salt: Optional[str] = None


@dataclass(frozen=True)
class StrategyOutput:
    """单个样本的结果。"""
    pmf: Tuple[float, ...]
    rationale: Optional[str] = None
    raw: Optional[str] = None
    rating: Optional[int] = None


class RatingStrategy(ABC):
    """评分策略基类。

    name 是 PipelineConfig.method 的取值，stage 是 PipelineThrottler 中
    对应的并发池名称，task_stages 是一个样本包含的 TaskKey 阶段。
    """

    name: str = ""
    stage: str = ""
    task_stages: Tuple[str, ...] = ()
    requires_embeddings: bool = False

    def concurrency(self, config: Any) -> int:
        """该策略的批大小（= 阶段并发上限）。"""
        return getattr(config.concurrency, self.stage)

    @abstractmethod
    async def execute(
        self,
        backend: Any,
        persona: Persona,
        concept: ProductConcept,
        price_point: PricePoint,
        options: StrategyOptions,
    ) -> StrategyOutput:
        ...


def stage_view(
    backend: Any,
    stage: str,
    reasoning_effort: Optional[str] = None,
    verbosity: Optional[str] = None,
    cache_salt: Optional[str] = None,
) -> Any:
    """受治理后端返回阶段视图；普通后端原样返回。"""
    for_stage = getattr(backend, "for_stage", None)
    if callable(for_stage):
        return for_stage(
            stage,
            reasoning_effort=reasoning_effort,
            verbosity=verbosity,
            cache_salt=cache_salt,
        )
    return backend


@contextmanager
def task_stage(stage: str) -> Iterator[None]:
    """把失败所在的 TaskKey 阶段记到异常的 task_stage 属性上。"""
    try:
        yield
    except Exception as e:
        e.task_stage = stage  # type: ignore[attr-defined]
        raise


# =============================================================================
# 提示词片段 / Prompt blocks
# =============================================================================


def format_persona(
    persona: Persona, prefix: str = "", values_label: str = "Values"
) -> str:
    return prompts.PERSONA_LINES.format(
        prefix=prefix,
        age=persona.age,
        income=persona.income,
        location=persona.location,
        household=persona.household,
        values_label=values_label,
        values=", ".join(persona.psychographics),
    )


def format_concept(
    concept: ProductConcept,
    features_label: str = "Features",
    claims_label: str = "Claims",
    include_positioning: bool = False,
) -> str:
    """描述 + 可选的特性 / 宣称 / 定位行；空字段整行省略。"""
    lines: List[str] = [concept.description]
    if concept.features:
        lines.append(f"{features_label}: {', '.join(concept.features)}")
    if concept.claims:
        lines.append(f"{claims_label}: {', '.join(concept.claims)}")
    if include_positioning and concept.positioning:
        lines.append(f"Brand positioning: {concept.positioning}")
    return "\n".join(lines)


def format_price(price: float) -> str:
    """19.0 → "19"，19.5 → "19.5"。"""
    return f"{price:g}" if float(price).is_integer() else f"{price}"


def format_price_block(price_point: PricePoint) -> str:
    lines = [
        f"Price: ${format_price(price_point.price)}",
        "Purchase type: "
        + (
            "Monthly subscription"
            if price_point.is_subscription
            else "One-time purchase"
        ),
    ]
    if price_point.shipping:
        lines.append(f"Shipping: {price_point.shipping}")
    if price_point.discount_framing:
        lines.append(f"Discount: {price_point.discount_framing}")
    return "\n".join(lines)


# =============================================================================
# 自由文本生成 / Free-text generation
# =============================================================================


async def generate_free_text(
    backend: Any,
    system: str,
    user: str,
    temperature: float,
    max_tokens: int,
) -> str:
    """生成自由文本；首次为空时带纠正提示重试一次。

    Returns:
        去除首尾空白后的文本；重试后仍为空则返回 ""。
    """
    result = await backend.generate_text(
        system, user, temperature=temperature, max_tokens=max_tokens
    )
    text = (result.text or "").strip()
    if text:
        return text

    logger.warning("自由文本为空，带纠正提示重试一次")
    result = await backend.generate_text(
        system,
        user + prompts.FREE_TEXT_RETRY_SUFFIX,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    text = (result.text or "").strip()
    if not text:
        logger.warning("重试后自由文本仍为空，降级为中性评分")
    return text
