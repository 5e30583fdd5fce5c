# rating.py
# =============================================================================
# 评分解析与统一的 "重试一次 → 降级为中性" 策略（DLR 与 FLR Stage B 共用）
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from intentlab import prompts
from intentlab.primitives.models import LIKERT_POINTS, NEUTRAL_RATING, one_hot_pmf

logger = logging.getLogger(__name__)

_VALID_DIGITS = tuple(str(r) for r in range(1, LIKERT_POINTS + 1))

RETRY_TEMPERATURE = 0.1
RETRY_MAX_TOKENS = 3


@dataclass(frozen=True)
class RatingParse:
    """解析结果：要么是 1..5 的评分，要么是错误说明。"""
    rating: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.rating is not None


def parse_rating(response: Optional[str]) -> RatingParse:
    """解析 1..5 评分。

    规则：去除首尾空白；整体恰为 1..5 的单个数字则接受；
    否则首字符为 1..5 时取首字符（"4 - probably" → 4，"12" → 1）；
    其余情况均无效（"7"、"banana"、""）。
    """
    trimmed = (response or "").strip()
    if not trimmed:
        return RatingParse(error="empty response")
    if trimmed in _VALID_DIGITS:
        return RatingParse(rating=int(trimmed))
    if trimmed[0] in _VALID_DIGITS:
        return RatingParse(rating=int(trimmed[0]))
    return RatingParse(error=f"no rating in {trimmed[:40]!r}")


def parse_dlr_response(response: Optional[str]) -> Optional[List[float]]:
    """解析为 one-hot PMF；无效时返回 None。"""
    parsed = parse_rating(response)
    if not parsed.ok:
        return None
    return one_hot_pmf(parsed.rating)


@dataclass(frozen=True)
class RatingOutcome:
    rating: int
    raw: str
    retried: bool = False
    fell_back: bool = False


async def rate_with_retry(
    backend: Any,
    system: str,
    user: str,
    temperature: float,
    max_tokens: int,
) -> RatingOutcome:
    """请求评分；输出无效时带纠正提示重试一次，仍无效则返回中性评分 3。

    内容校验失败在此处消化，不向上抛出；后端错误照常上抛。
    """
    result = await backend.generate_text(
        system, user, temperature=temperature, max_tokens=max_tokens
    )
    parsed = parse_rating(result.text)
    if parsed.ok:
        return RatingOutcome(rating=parsed.rating, raw=result.text)

    logger.warning("评分输出无效 (%s)，重试一次", parsed.error)
    retry = await backend.generate_text(
        system,
        user + prompts.RATING_RETRY_SUFFIX,
        temperature=RETRY_TEMPERATURE,
        max_tokens=RETRY_MAX_TOKENS,
    )
    parsed = parse_rating(retry.text)
    if parsed.ok:
        return RatingOutcome(rating=parsed.rating, raw=retry.text, retried=True)

    logger.warning(
        "重试后评分仍无效 (%s)，降级为中性评分 %d", parsed.error, NEUTRAL_RATING
    )
    return RatingOutcome(
        rating=NEUTRAL_RATING, raw=result.text, retried=True, fell_back=True
    )
