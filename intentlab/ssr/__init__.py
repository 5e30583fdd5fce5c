# ssr/__init__.py
# 语义相似度评分：相似度 → PMF 引擎、锚点语句、统计指标
# / Semantic similarity rating: similarity-to-PMF engine, anchors, metrics

from intentlab.ssr.anchors import ANCHOR_SETS
from intentlab.ssr.engine import (
    cosine_sim,
    normalize,
    ssr_pmf_average,
    ssr_pmf_one_set,
    uniform_pmf,
    validate_anchor_embeddings,
)
from intentlab.ssr.metrics import (
    aggregate_pmfs,
    bootstrap_confidence,
    bottom2_box,
    compute_metrics,
    distribution_entropy,
    expected_likert,
    top2_box,
)

__all__ = [
    "ANCHOR_SETS",
    "aggregate_pmfs",
    "bootstrap_confidence",
    "bottom2_box",
    "compute_metrics",
    "cosine_sim",
    "distribution_entropy",
    "expected_likert",
    "normalize",
    "ssr_pmf_average",
    "ssr_pmf_one_set",
    "top2_box",
    "uniform_pmf",
    "validate_anchor_embeddings",
]
