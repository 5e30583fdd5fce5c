# strategies/__init__.py
# 三种评分策略与按方法名的注册表 / Rating strategies & method registry

from typing import Dict

from intentlab.errors import ConfigurationError
from intentlab.pipeline.strategies.base import (
    RatingStrategy,
    StrategyOptions,
    StrategyOutput,
)
from intentlab.pipeline.strategies.dlr import DLRStrategy
from intentlab.pipeline.strategies.flr import FLRStrategy
from intentlab.pipeline.strategies.rating import (
    RatingParse,
    parse_dlr_response,
    parse_rating,
    rate_with_retry,
)
from intentlab.pipeline.strategies.ssr import SSRStrategy, compute_anchor_embeddings

STRATEGIES: Dict[str, RatingStrategy] = {
    s.name: s for s in (DLRStrategy(), FLRStrategy(), SSRStrategy())
}


def strategy_for(method: str) -> RatingStrategy:
    """按方法名取策略。

    Raises:
        ConfigurationError: 未知方法。
    """
    try:
        return STRATEGIES[method]
    except KeyError:
        raise ConfigurationError(
            f"不支持的评分方法: '{method}'。仅支持: {', '.join(STRATEGIES)}。"
        ) from None


__all__ = [
    "DLRStrategy",
    "FLRStrategy",
    "RatingParse",
    "RatingStrategy",
    "SSRStrategy",
    "STRATEGIES",
    "StrategyOptions",
    "StrategyOutput",
    "compute_anchor_embeddings",
    "parse_dlr_response",
    "parse_rating",
    "rate_with_retry",
    "strategy_for",
]
