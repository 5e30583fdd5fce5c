# intentlab/primitives/models.py
# =============================================================================
# 领域数据模型 / Domain data models
#
# 输入（Persona / ProductConcept / PricePoint）由调用方构造，策略只读使用；
# 输出（RespondentResult / SimulationResult）在流水线结束时一次性生成。
# / Inputs are built by callers and read-only to strategies; outputs are
#   built once at the end of a pipeline run and never mutated afterwards.
# =============================================================================

"""Domain data models for purchase-intent simulation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Likert 量表点数 / Number of Likert scale points
LIKERT_POINTS = 5

# 中性评分（解析失败时的安全降级） / Neutral rating used as the safe fallback
NEUTRAL_RATING = 3

VALID_PURCHASE_TYPES = ("one-time", "subscription")

# 任务阶段 / Task stages
TASK_STAGES = ("dlr_call", "flr_text", "flr_rating", "ssr_text", "ssr_embed")


def one_hot_pmf(rating: int) -> List[float]:
    """评分 r ∈ {1..5} 的 one-hot PMF。 / One-hot PMF for a rating r in 1..5."""
    if not 1 <= rating <= LIKERT_POINTS:
        raise ValueError(f"rating 必须在 1..{LIKERT_POINTS} 之间，收到 {rating}")
    pmf = [0.0] * LIKERT_POINTS
    pmf[rating - 1] = 1.0
    return pmf


# =============================================================================
# 输入 / Inputs
# =============================================================================


@dataclass(frozen=True)
class Persona:
    """消费者画像。 / Demographic and psychographic consumer descriptor."""
    age: str
    income: str
    location: str
    household: str
    psychographics: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # 允许传入 list，统一冻结为 tuple / Accept lists, freeze to tuple
        object.__setattr__(self, "psychographics", tuple(self.psychographics))


@dataclass(frozen=True)
class ProductConcept:
    """产品概念。 / Product concept under test."""
    name: str
    category: str
    description: str
    features: Tuple[str, ...] = ()
    claims: Tuple[str, ...] = ()
    positioning: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "features", tuple(self.features))
        object.__setattr__(self, "claims", tuple(self.claims))


@dataclass(frozen=True)
class PricePoint:
    """价格点。 / Price point with purchase framing."""
    price: float
    purchase_type: str = "one-time"
    shipping: Optional[str] = None
    discount_framing: Optional[str] = None

    def __post_init__(self) -> None:
        if self.purchase_type not in VALID_PURCHASE_TYPES:
            raise ValueError(
                f"不支持的 purchase_type: '{self.purchase_type}'。"
                f"仅支持: {', '.join(VALID_PURCHASE_TYPES)}。"
            )

    @property
    def is_subscription(self) -> bool:
        return self.purchase_type == "subscription"


# 预置画像模板 / Preset persona templates for personal-care concept testing
PRESET_PERSONAS: Dict[str, Persona] = {
    "skincare-obsessed": Persona(
        age="25-40",
        income="$60,000-$120,000",
        location="Urban",
        household="Single or couple, no kids",
        psychographics=(
            "Ingredient-conscious",
            "Follows skincare influencers",
            "Willing to pay for results",
        ),
    ),
    "clean-beauty": Persona(
        age="28-45",
        income="$50,000-$100,000",
        location="Urban/Suburban",
        household="Varies",
        psychographics=(
            "Eco-driven",
            "Reads ingredient labels",
            "Prefers cruelty-free brands",
        ),
    ),
    "budget-conscious-mom": Persona(
        age="30-50",
        income="$40,000-$80,000",
        location="Suburban",
        household="Married with children",
        psychographics=("Value-seeker", "Time-pressed", "Practical purchases"),
    ),
    "minimalist-men": Persona(
        age="25-45",
        income="$50,000-$100,000",
        location="Urban",
        household="Single or couple",
        psychographics=(
            "Low-maintenance routine",
            "Function over brand",
            "Seeks simplicity",
        ),
    ),
    "gen-z-tiktok": Persona(
        age="18-26",
        income="$25,000-$55,000",
        location="Urban",
        household="Living with family or roommates",
        psychographics=(
            "Trend-aware",
            "Social-media-influenced",
            "Discovery-driven",
        ),
    ),
}


# =============================================================================
# 任务标识 / Task identity
# =============================================================================


@dataclass(frozen=True)
class TaskKey:
    """DAG 中单个任务的唯一标识。 / Unique identifier of one task in a run."""
    run_id: str
    concept_id: str
    respondent_id: int
    sample_idx: int
    stage: str

    def serialize(self) -> str:
        """序列化为 run:concept:respondent:sample:stage。"""
        return (
            f"{self.run_id}:{self.concept_id}:{self.respondent_id}:"
            f"{self.sample_idx}:{self.stage}"
        )

    @classmethod
    def parse(cls, text: str) -> TaskKey:
        """从 serialize() 的输出还原。 / Inverse of serialize().

        run_id 不含 ':'；concept_id 可以含 ':'，取首尾字段之间的全部内容。
        """
        run_id, sep, rest = text.partition(":")
        parts = rest.rsplit(":", 3)
        if not sep or len(parts) != 4:
            raise ValueError(f"无法解析 TaskKey: '{text}'")
        concept_id, respondent_id, sample_idx, stage = parts
        if stage not in TASK_STAGES:
            raise ValueError(f"未知任务阶段: '{stage}'")
        return cls(
            run_id=run_id,
            concept_id=concept_id,
            respondent_id=int(respondent_id),
            sample_idx=int(sample_idx),
            stage=stage,
        )


# =============================================================================
# 输出 / Outputs
# =============================================================================


@dataclass(frozen=True)
class RespondentResult:
    """单个受访者的全部样本结果。 / All samples of one simulated respondent."""
    respondent_id: int
    sample_pmfs: Tuple[Tuple[float, ...], ...]
    average_pmf: Tuple[float, ...]
    rationales: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class PmfMetrics:
    """从聚合 PMF 派生的指标。 / Metrics derived from the aggregate PMF."""
    expected_likert: float
    top2_box: float
    bottom2_box: float
    entropy: float


@dataclass(frozen=True)
class ConfidenceInterval:
    """Bootstrap 置信区间。 / Bootstrap confidence interval."""
    lower: float
    upper: float
    level: float = 0.95


@dataclass(frozen=True)
class TaskFailure:
    """被隔离的失败任务。 / A task failure isolated from aggregation."""
    task_key: str
    error_type: str
    message: str


@dataclass(frozen=True)
class SimulationResult:
    """一次 run_pipeline 调用的最终产物。 / Terminal artifact of one pipeline run.

    degraded 为 True 表示有任务失败并被排除在聚合之外，
    completed_tasks / total_tasks 给出实际完成比例。
    / degraded is True when failed tasks were excluded from aggregation.
    """
    run_id: str
    concept_id: str
    method: str
    config: Any  # PipelineConfig（避免循环导入） / avoids a circular import
    respondents: Tuple[RespondentResult, ...]
    aggregated_pmf: Tuple[float, ...]
    metrics: PmfMetrics
    credits_used: int
    duration_ms: float
    completed_tasks: int = 0
    total_tasks: int = 0
    failed_tasks: Tuple[TaskFailure, ...] = ()
    top2_box_ci: Optional[ConfidenceInterval] = None
    cost_stats: Dict[str, Any] = field(default_factory=dict)
    cache_stats: Optional[Dict[str, Any]] = None

    @property
    def degraded(self) -> bool:
        return bool(self.failed_tasks)

    def to_dict(self) -> Dict[str, Any]:
        """序列化为字典，便于持久化或审计。 / Serialize for persistence or audit."""
        data = asdict(self)
        data["degraded"] = self.degraded
        return data
