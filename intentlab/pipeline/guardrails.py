# guardrails.py
# =============================================================================
# 成本护栏 / Cost guardrails
#
#   - 积分估算：credits = ceil(受访者数 / 100)，与方法无关
#   - 积分充足性检查（可选超额）
#   - CostTracker：运行中累计 token 用量，按单价推算成本，超出硬上限即停止
#   - 干跑模式：把受访者数 / 样本数夹紧到小的固定值（只降不升）
# =============================================================================

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional

from intentlab.errors import ConfigurationError, InsufficientCreditsError

logger = logging.getLogger(__name__)


# =============================================================================
# 积分经济 / Credit economics
# =============================================================================


@dataclass(frozen=True)
class CreditEconomics:
    respondents_per_credit: int = 100
    api_cost_per_credit: float = 0.44  # 每积分的 API 成本（美元）
    overage_price: float = 2.50  # 每超额积分售价（美元）


CREDIT_ECONOMICS = CreditEconomics()

# 每个样本的后端调用数：FLR = 文本 + 评分，SSR = 文本 + 向量
CALLS_PER_SAMPLE = {"DLR": 1, "FLR": 2, "SSR": 2}

# 超过该积分数时给出大额运行警告
LARGE_RUN_CREDITS = 50


def calculate_credits_needed(
    n_respondents: int,
    respondents_per_credit: int = CREDIT_ECONOMICS.respondents_per_credit,
) -> int:
    """credits = ceil(n / respondents_per_credit)。"""
    if n_respondents <= 0:
        return 0
    return math.ceil(n_respondents / respondents_per_credit)


@dataclass(frozen=True)
class CostEstimate:
    """一次运行的预估成本。 / A-priori cost estimate of one run."""
    credits_needed: int
    api_cost_usd: float
    respondents: int
    samples_per_respondent: int
    method: str
    calls_per_sample: int
    total_calls: int
    warning: Optional[str] = None


def estimate_cost(
    n_respondents: int,
    method: str,
    samples_per_respondent: int = 2,
) -> CostEstimate:
    """按固定规则估算积分与 API 成本。

    Raises:
        ConfigurationError: 未知方法。
    """
    if method not in CALLS_PER_SAMPLE:
        raise ConfigurationError(f"不支持的评分方法: '{method}'")

    calls_per_sample = CALLS_PER_SAMPLE[method]
    credits = calculate_credits_needed(n_respondents)
    api_cost = credits * CREDIT_ECONOMICS.api_cost_per_credit

    warning = None
    if credits > LARGE_RUN_CREDITS:
        warning = f"Large run: {credits} credits (~${api_cost:.2f} API cost)"

    return CostEstimate(
        credits_needed=credits,
        api_cost_usd=api_cost,
        respondents=n_respondents,
        samples_per_respondent=samples_per_respondent,
        method=method,
        calls_per_sample=calls_per_sample,
        total_calls=n_respondents * samples_per_respondent * calls_per_sample,
        warning=warning,
    )


@dataclass(frozen=True)
class CreditCheck:
    """积分充足性检查结果。"""
    allowed: bool
    reason: Optional[str] = None
    overage_credits: int = 0
    overage_cost_usd: float = 0.0


def check_credit_sufficiency(
    credits_needed: int,
    credits_available: int,
    overage_enabled: bool = False,
) -> CreditCheck:
    """比较所需与可用积分；开启超额时仍允许，并报告超额量与费用。"""
    if credits_needed <= credits_available:
        return CreditCheck(allowed=True)

    overage = credits_needed - credits_available
    if overage_enabled:
        overage_cost = overage * CREDIT_ECONOMICS.overage_price
        return CreditCheck(
            allowed=True,
            reason=f"Will use {overage} overage credits (${overage_cost:.2f})",
            overage_credits=overage,
            overage_cost_usd=overage_cost,
        )

    return CreditCheck(
        allowed=False,
        reason=(
            f"Insufficient credits: need {credits_needed}, "
            f"have {credits_available}"
        ),
    )


def ensure_credits(
    credits_needed: int,
    credits_available: int,
    overage_enabled: bool = False,
) -> CreditCheck:
    """同 check_credit_sufficiency，但不允许时抛出异常。

    Raises:
        InsufficientCreditsError: 积分不足且未开启超额。
    """
    check = check_credit_sufficiency(
        credits_needed, credits_available, overage_enabled
    )
    if not check.allowed:
        raise InsufficientCreditsError(
            check.reason or "Insufficient credits",
            credits_needed=credits_needed,
            credits_available=credits_available,
        )
    if check.reason:
        logger.info("积分检查: %s", check.reason)
    return check


# =============================================================================
# 运行中成本追踪 / Live cost tracking
# =============================================================================


@dataclass(frozen=True)
class TokenPricing:
    """每百万 token 单价（美元）。"""
    input_per_million: float = 1.75
    output_per_million: float = 14.00
    embedding_per_million: float = 0.02


DEFAULT_PRICING = TokenPricing()

# 成本达到上限的该比例时标记 at_risk
AT_RISK_RATIO = 0.8


class CostTracker:
    """累计调用次数与 token 用量，推算成本并判断是否应停止。

    should_stop() 必须在发起新工作之前检查；超限后已发出的调用
    正常完成并照常记账，不做强制取消。
    """

    def __init__(
        self,
        cost_cap_usd: Optional[float] = None,
        pricing: TokenPricing = DEFAULT_PRICING,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cost_cap_usd = cost_cap_usd
        self._pricing = pricing
        self._clock = clock
        self._start = clock()
        self.calls_completed = 0
        self.embedding_calls = 0
        self.credits_used = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.embedding_tokens = 0

    @property
    def cost_cap_usd(self) -> Optional[float]:
        return self._cost_cap_usd

    def record_call(self, input_tokens: int, output_tokens: int) -> None:
        self.calls_completed += 1
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens

    def record_embedding(self, tokens: int) -> None:
        self.embedding_calls += 1
        self.embedding_tokens += tokens

    def record_credits(self, credits: int) -> None:
        self.credits_used += credits

    def projected_cost_usd(self) -> float:
        p = self._pricing
        return (
            self.input_tokens / 1_000_000 * p.input_per_million
            + self.output_tokens / 1_000_000 * p.output_per_million
            + self.embedding_tokens / 1_000_000 * p.embedding_per_million
        )

    def should_stop(self) -> bool:
        """预计成本是否已超过硬上限。未设上限时永远返回 False。"""
        if self._cost_cap_usd is None:
            return False
        return self.projected_cost_usd() > self._cost_cap_usd

    @property
    def at_risk(self) -> bool:
        if self._cost_cap_usd is None:
            return False
        return self.projected_cost_usd() > self._cost_cap_usd * AT_RISK_RATIO

    def stats(self) -> Dict[str, Any]:
        """序列化为字典，便于持久化或审计。"""
        return {
            "duration_ms": (self._clock() - self._start) * 1000.0,
            "calls_completed": self.calls_completed,
            "embedding_calls": self.embedding_calls,
            "credits_used": self.credits_used,
            "tokens_used": {
                "input": self.input_tokens,
                "output": self.output_tokens,
                "embedding": self.embedding_tokens,
            },
            "estimated_cost_usd": self.projected_cost_usd(),
            "cost_cap_usd": self._cost_cap_usd,
            "at_risk": self.at_risk,
        }


# =============================================================================
# 干跑模式 / Dry run
# =============================================================================


@dataclass(frozen=True)
class DryRunLimits:
    n_respondents: int = 10
    n_samples: int = 1


DRY_RUN_LIMITS = DryRunLimits()


def apply_dry_run_limits(config):
    """把 n_respondents / n_samples_per_respondent 夹紧到干跑上限。

    只降不升：调用方请求的值更小时保持不变。
    config 可以是任何带这两个字段的 dataclass（通常是 PipelineConfig）。
    """
    return replace(
        config,
        n_respondents=min(config.n_respondents, DRY_RUN_LIMITS.n_respondents),
        n_samples_per_respondent=min(
            config.n_samples_per_respondent, DRY_RUN_LIMITS.n_samples
        ),
    )
