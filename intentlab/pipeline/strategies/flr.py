# flr.py
"""FLR（Free-text then Likert Rating）：先生成自由文本，再对文本评分。

Stage A 以较高温度生成第一人称购买理由；Stage B 把该文本连同产品与价格
交给评分提示，解析 / 重试 / 降级规则与 DLR 相同。输出 Stage B 的 one-hot
PMF，并把 Stage A 文本作为 rationale。
"""

from __future__ import annotations

import logging
from typing import Any

from intentlab import prompts
from intentlab.pipeline.strategies.base import (
    RatingStrategy,
    StrategyOptions,
    StrategyOutput,
    format_concept,
    format_persona,
    format_price,
    generate_free_text,
    stage_view,
    task_stage,
)
from intentlab.pipeline.strategies.rating import rate_with_retry
from intentlab.primitives.models import (
    NEUTRAL_RATING,
    Persona,
    PricePoint,
    ProductConcept,
    one_hot_pmf,
)

logger = logging.getLogger(__name__)

FLR_TEXT_TEMPERATURE = 0.7
FLR_RATING_TEMPERATURE = 0.2


def build_flr_text_prompt(
    persona: Persona, concept: ProductConcept, price_point: PricePoint
) -> str:
    return prompts.FLR_TEXT_USER_PROMPT.format(
        persona_block=format_persona(
            persona, prefix="- ", values_label="Shopping values"
        ),
        name=concept.name,
        category=concept.category,
        concept_block=format_concept(
            concept, features_label="Key features", claims_label="Brand claims"
        ),
        price=format_price(price_point.price),
        price_suffix="/month" if price_point.is_subscription else "",
    )


def build_flr_rating_prompt(
    consumer_response: str, concept: ProductConcept, price_point: PricePoint
) -> str:
    return prompts.FLR_RATING_USER_PROMPT.format(
        name=concept.name,
        price=format_price(price_point.price),
        consumer_response=consumer_response,
    )


class FLRStrategy(RatingStrategy):
    name = "FLR"
    stage = "flr"
    task_stages = ("flr_text", "flr_rating")

    async def execute(
        self,
        backend: Any,
        persona: Persona,
        concept: ProductConcept,
        price_point: PricePoint,
        options: StrategyOptions,
    ) -> StrategyOutput:
        # Stage A: 自由文本
        text_view = stage_view(
            backend,
            self.stage,
            reasoning_effort=options.reasoning_effort.flr_text,
            verbosity=options.verbosity.flr_text,
            cache_salt=options.cache_salt,
        )
        with task_stage("flr_text"):
            rationale = await generate_free_text(
                text_view,
                prompts.FLR_TEXT_SYSTEM_PROMPT,
                build_flr_text_prompt(persona, concept, price_point),
                temperature=FLR_TEXT_TEMPERATURE,
                max_tokens=options.max_output_tokens.flr_text,
            )
        if not rationale:
            return StrategyOutput(
                pmf=tuple(one_hot_pmf(NEUTRAL_RATING)),
                rationale="",
                rating=NEUTRAL_RATING,
            )

        # Stage B: 对文本评分
        rating_view = stage_view(
            backend,
            self.stage,
            reasoning_effort=options.reasoning_effort.flr_rating,
            verbosity=options.verbosity.flr_rating,
            cache_salt=options.cache_salt,
        )
        with task_stage("flr_rating"):
            outcome = await rate_with_retry(
                rating_view,
                prompts.FLR_RATING_SYSTEM_PROMPT,
                build_flr_rating_prompt(rationale, concept, price_point),
                temperature=FLR_RATING_TEMPERATURE,
                max_tokens=options.max_output_tokens.flr_rating,
            )
        return StrategyOutput(
            pmf=tuple(one_hot_pmf(outcome.rating)),
            rationale=rationale,
            raw=outcome.raw,
            rating=outcome.rating,
        )
