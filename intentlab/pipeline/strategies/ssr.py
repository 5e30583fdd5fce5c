# ssr.py
"""SSR（Semantic Similarity Rating）：自由文本 → 向量 → 锚点相似度 PMF。

与 FLR 一样先生成自由文本，但 Stage B 不再做第二次生成调用，而是把文本
嵌入后与预计算的锚点向量比较，得到保留不确定性的软 PMF。
锚点向量每次运行只计算一次（或取自缓存），所有样本共享。
"""

from __future__ import annotations

import logging
from typing import Any, List, Sequence

from intentlab import prompts
from intentlab.errors import ConfigurationError
from intentlab.pipeline.strategies.base import (
    RatingStrategy,
    StrategyOptions,
    StrategyOutput,
    format_concept,
    format_persona,
    format_price_block,
    generate_free_text,
    stage_view,
    task_stage,
)
from intentlab.primitives.models import (
    NEUTRAL_RATING,
    Persona,
    PricePoint,
    ProductConcept,
    one_hot_pmf,
)
from intentlab.ssr.engine import ssr_pmf_average

logger = logging.getLogger(__name__)

SSR_TEXT_TEMPERATURE = 0.7


def build_ssr_text_prompt(
    persona: Persona, concept: ProductConcept, price_point: PricePoint
) -> str:
    return prompts.SSR_TEXT_USER_PROMPT.format(
        persona_block=format_persona(
            persona, prefix="- ", values_label="Shopping style"
        ),
        name=concept.name,
        category=concept.category,
        concept_block=format_concept(
            concept,
            features_label="Key features",
            claims_label="Claims",
            include_positioning=True,
        ),
        price_block=format_price_block(price_point),
    )


async def compute_anchor_embeddings(
    backend: Any, anchor_sets: Sequence[Sequence[str]]
) -> List[List[List[float]]]:
    """预计算每组锚点语句的向量。

    后端提供 embed_texts 时每组一次批量调用，否则逐条调用 embed_text。
    """
    embeddings: List[List[List[float]]] = []
    batch_fn = getattr(backend, "embed_texts", None)
    for anchor_set in anchor_sets:
        if callable(batch_fn):
            results = await batch_fn(list(anchor_set))
        else:
            results = [await backend.embed_text(text) for text in anchor_set]
        embeddings.append([list(r.embedding) for r in results])
    logger.info("锚点向量预计算完成: %d 组", len(embeddings))
    return embeddings


class SSRStrategy(RatingStrategy):
    name = "SSR"
    stage = "ssr"
    task_stages = ("ssr_text", "ssr_embed")
    requires_embeddings = True

    async def execute(
        self,
        backend: Any,
        persona: Persona,
        concept: ProductConcept,
        price_point: PricePoint,
        options: StrategyOptions,
    ) -> StrategyOutput:
        if not options.anchor_embeddings:
            raise ConfigurationError("SSR 需要预计算的锚点向量")

        view = stage_view(
            backend,
            self.stage,
            reasoning_effort=options.reasoning_effort.ssr_text,
            verbosity=options.verbosity.ssr_text,
            cache_salt=options.cache_salt,
        )
        with task_stage("ssr_text"):
            rationale = await generate_free_text(
                view,
                prompts.SSR_TEXT_SYSTEM_PROMPT,
                build_ssr_text_prompt(persona, concept, price_point),
                temperature=SSR_TEXT_TEMPERATURE,
                max_tokens=options.max_output_tokens.ssr_text,
            )
        if not rationale:
            return StrategyOutput(
                pmf=tuple(one_hot_pmf(NEUTRAL_RATING)),
                rationale="",
                rating=NEUTRAL_RATING,
            )

        with task_stage("ssr_embed"):
            embedded = await view.embed_text(rationale)
        pmf = ssr_pmf_average(
            embedded.embedding,
            options.anchor_embeddings,
            epsilon=options.ssr.epsilon,
            temperature=options.ssr.temperature,
        )
        return StrategyOutput(
            pmf=tuple(float(p) for p in pmf),
            rationale=rationale,
        )
