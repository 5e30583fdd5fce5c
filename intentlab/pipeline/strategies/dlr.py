# dlr.py
"""DLR（Direct Likert Rating）：一次调用直接输出 1-5 评分。

最快、最便宜，但永远是 one-hot，且模型直接吐数字时倾向于集中在中间档，
不适合作为生产质量的结果。
"""

from __future__ import annotations

from typing import Any

from intentlab import prompts
from intentlab.pipeline.strategies.base import (
    RatingStrategy,
    StrategyOptions,
    StrategyOutput,
    format_concept,
    format_persona,
    format_price,
    stage_view,
    task_stage,
)
from intentlab.pipeline.strategies.rating import rate_with_retry
from intentlab.primitives.models import (
    Persona,
    PricePoint,
    ProductConcept,
    one_hot_pmf,
)

DLR_TEMPERATURE = 0.3


def build_dlr_prompt(
    persona: Persona, concept: ProductConcept, price_point: PricePoint
) -> str:
    return prompts.DLR_USER_PROMPT.format(
        persona_block=format_persona(persona, values_label="Values"),
        name=concept.name,
        category=concept.category,
        concept_block=format_concept(concept),
        price=format_price(price_point.price),
        purchase_short="monthly" if price_point.is_subscription else "one-time",
    )


class DLRStrategy(RatingStrategy):
    name = "DLR"
    stage = "dlr"
    task_stages = ("dlr_call",)

    async def execute(
        self,
        backend: Any,
        persona: Persona,
        concept: ProductConcept,
        price_point: PricePoint,
        options: StrategyOptions,
    ) -> StrategyOutput:
        view = stage_view(
            backend,
            self.stage,
            reasoning_effort=options.reasoning_effort.dlr,
            verbosity=options.verbosity.dlr,
            cache_salt=options.cache_salt,
        )
        with task_stage("dlr_call"):
            outcome = await rate_with_retry(
                view,
                prompts.DLR_SYSTEM_PROMPT,
                build_dlr_prompt(persona, concept, price_point),
                temperature=DLR_TEMPERATURE,
                max_tokens=options.max_output_tokens.dlr,
            )
        return StrategyOutput(
            pmf=tuple(one_hot_pmf(outcome.rating)),
            raw=outcome.raw,
            rating=outcome.rating,
        )
