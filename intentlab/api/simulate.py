# simulate.py
# =============================================================================
# 公共 API — 价格点 / 价格曲线模拟与价格断崖检测。
#
# simulate_price_point() 运行一次流水线并返回面向报告的价格点摘要；
# simulate_price_curve() 依次模拟多个价格，共享同一个 CacheManager，
# 使锚点向量只计算一次；detect_price_cliffs() 找出相邻价格之间
# Top-2-Box 明显下降的位置。
# =============================================================================

"""公共 API — 价格点与价格曲线模拟。"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

from intentlab.pipeline.cache import CacheManager
from intentlab.pipeline.config import PipelineConfig
from intentlab.pipeline.runner import ProgressCallback, run_pipeline
from intentlab.primitives.events import PipelineProgress
from intentlab.primitives.models import (
    ConfidenceInterval,
    Persona,
    PricePoint,
    ProductConcept,
    SimulationResult,
)

logger = logging.getLogger(__name__)

# 报告中保留的样本理由条数
MAX_SAMPLE_RATIONALES = 12

DEFAULT_CLIFF_THRESHOLD = 0.1

PipelineConfigLike = Union[PipelineConfig, Mapping[str, Any], None]
CurveProgressCallback = Callable[[int, int, PipelineProgress], Any]


@dataclass(frozen=True)
class PricePointResult:
    """单个价格点的模拟摘要。"""
    price_point: float
    segment_id: str
    likert_pmf: Tuple[float, ...]
    expected_likert: float
    top2_box: float
    bottom2_box: float
    entropy: float
    sample_rationales: Tuple[str, ...]
    confidence: ConfidenceInterval
    simulation: Optional[SimulationResult] = None


@dataclass(frozen=True)
class PriceCliff:
    """相邻价格之间的意向断崖。"""
    from_price: float
    to_price: float
    drop: float
    percent_drop: float


def summarize_simulation(
    result: SimulationResult,
    price_point: PricePoint,
    segment_id: str = "default",
) -> PricePointResult:
    """把 SimulationResult 转换为价格点摘要。"""
    rationales: List[str] = []
    for respondent in result.respondents:
        rationales.extend(respondent.rationales or ())
    confidence = result.top2_box_ci or ConfidenceInterval(lower=0.0, upper=0.0)
    return PricePointResult(
        price_point=price_point.price,
        segment_id=segment_id,
        likert_pmf=result.aggregated_pmf,
        expected_likert=result.metrics.expected_likert,
        top2_box=result.metrics.top2_box,
        bottom2_box=result.metrics.bottom2_box,
        entropy=result.metrics.entropy,
        sample_rationales=tuple(rationales[:MAX_SAMPLE_RATIONALES]),
        confidence=confidence,
        simulation=result,
    )


async def simulate_price_point(
    backend: Any,
    persona: Persona,
    concept: ProductConcept,
    price_point: PricePoint,
    config: PipelineConfigLike = None,
    *,
    segment_id: str = "default",
    cache: Optional[CacheManager] = None,
    on_progress: Optional[ProgressCallback] = None,
    **runner_kwargs: Any,
) -> PricePointResult:
    """模拟单个价格点的购买意向。

    参数：
        backend: 满足 LLMBackend 协议的后端。
        persona / concept / price_point: 领域输入。
        config: PipelineConfig 或部分覆盖字典（默认 SSR）。
        segment_id: 受众分群标识，原样写入结果。
        cache: 可选的共享缓存。
        on_progress: 进度回调（同步或异步）。
        runner_kwargs: 透传给 PipelineRunner（run_id / rng / clock / sleep ...）。

    返回：
        PricePointResult，包含 PMF、指标、最多 12 条样本理由与 Top-2-Box 置信区间。
    """
    result = await run_pipeline(
        backend,
        persona,
        concept,
        price_point,
        config,
        on_progress,
        cache=cache,
        **runner_kwargs,
    )
    return summarize_simulation(result, price_point, segment_id)


async def simulate_price_curve(
    backend: Any,
    persona: Persona,
    concept: ProductConcept,
    prices: Sequence[Union[float, PricePoint]],
    config: PipelineConfigLike = None,
    *,
    segment_id: str = "default",
    cache: Optional[CacheManager] = None,
    on_progress: Optional[CurveProgressCallback] = None,
    **runner_kwargs: Any,
) -> List[PricePointResult]:
    """依次模拟多个价格点。

    数字价格按一次性购买处理。所有价格共享一个 CacheManager，
    因此锚点向量只在第一个价格点计算一次。

    on_progress(price_idx, n_prices, progress) 在每个任务结束后调用。
    """
    shared_cache = cache if cache is not None else CacheManager()
    points = [
        p if isinstance(p, PricePoint) else PricePoint(price=float(p))
        for p in prices
    ]

    results: List[PricePointResult] = []
    for idx, point in enumerate(points):
        logger.info("价格曲线: %d/%d，价格 $%s", idx + 1, len(points), point.price)

        forward = None
        if on_progress is not None:

            async def forward(event: PipelineProgress, _idx: int = idx) -> None:
                value = on_progress(_idx, len(points), event)
                if inspect.isawaitable(value):
                    await value

        results.append(
            await simulate_price_point(
                backend,
                persona,
                concept,
                point,
                config,
                segment_id=segment_id,
                cache=shared_cache,
                on_progress=forward,
                **runner_kwargs,
            )
        )
    return results


def detect_price_cliffs(
    results: Sequence[PricePointResult],
    threshold: float = DEFAULT_CLIFF_THRESHOLD,
) -> List[PriceCliff]:
    """找出相邻价格之间 Top-2-Box 下降超过 threshold 的位置。

    结果先按价格升序排序；percent_drop = drop / 较低价格的 Top-2-Box。
    """
    ordered = sorted(results, key=lambda r: r.price_point)
    cliffs: List[PriceCliff] = []
    for current, nxt in zip(ordered, ordered[1:]):
        drop = current.top2_box - nxt.top2_box
        if drop > threshold:
            cliffs.append(
                PriceCliff(
                    from_price=current.price_point,
                    to_price=nxt.price_point,
                    drop=drop,
                    percent_drop=drop / current.top2_box if current.top2_box else 0.0,
                )
            )
    return cliffs
