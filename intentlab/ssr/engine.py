# intentlab/ssr/engine.py
# =============================================================================
# 语义相似度 → Likert PMF 引擎 / Similarity-to-PMF engine
#
# 纯数值模块：无 I/O、无并发。 / Pure numeric module: no I/O, no concurrency.
#
# 单组锚点的计算步骤 / Per anchor set:
#   1. 响应向量与 5 个锚点的余弦相似度（零范数向量相似度记为 0）
#   2. 找到最小相似度及其下标
#   3. 所有相似度减去最小值（最差锚点变为 0）
#   4. 仅在最小值下标处加 epsilon，避免该档概率恰好为 0
#   5. T ≠ 1 时对每项取 max(v, 1e-12) ** (1/T)
#   6. 归一化为和为 1
# 多组锚点：逐组计算后按元素取算术平均。
# =============================================================================

"""Map response embeddings onto Likert PMFs via anchor similarity."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from intentlab.primitives.models import LIKERT_POINTS

# 温度缩放前的下限 / Floor applied before temperature scaling
_TEMPERATURE_FLOOR = 1e-12

DEFAULT_EPSILON = 0.0
DEFAULT_TEMPERATURE = 1.0


def uniform_pmf(n_points: int = LIKERT_POINTS) -> np.ndarray:
    return np.full(n_points, 1.0 / n_points)


def cosine_sim(a: Sequence[float], b: Sequence[float]) -> float:
    """两个向量的余弦相似度。 / Cosine similarity of two vectors.

    长度不一致、空向量或零范数向量返回 0（视为"不相似"），不抛异常。
    / Mismatched lengths, empty or zero-norm vectors yield 0 rather than raising.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return 0.0
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(va.dot(vb) / (norm_a * norm_b))


def normalize(values: Sequence[float]) -> np.ndarray:
    """归一化为概率分布；总和 <= 0 时返回均匀分布。

    / Normalize to sum to 1; a non-positive total yields the uniform PMF.
    """
    arr = np.asarray(values, dtype=float)
    total = arr.sum()
    if total <= 0:
        return uniform_pmf(arr.size)
    return arr / total


def ssr_pmf_one_set(
    response_embedding: Sequence[float],
    anchor_embeddings: Sequence[Sequence[float]],
    epsilon: float = DEFAULT_EPSILON,
    temperature: float = DEFAULT_TEMPERATURE,
) -> np.ndarray:
    """单组锚点（按 Likert 1..5 排序）的 SSR PMF。

    / SSR PMF for one anchor set ordered by Likert level.

    p(r) ∝ sim(r) - min_sim + ε·δ(r, argmin)，可选温度缩放 p^(1/T)。

    Args:
        response_embedding: 自由文本回答的向量。
        anchor_embeddings: 5 个锚点语句的向量，下标 i 对应评分 i+1。
        epsilon: 仅加在最不相似锚点上的平滑常数。
        temperature: 温度，T > 1 使分布更平坦，T < 1 更尖锐。

    Returns:
        长度为锚点数的 PMF（numpy 数组），和为 1。
    """
    sims = np.array(
        [cosine_sim(response_embedding, anchor) for anchor in anchor_embeddings],
        dtype=float,
    )
    if sims.size == 0:
        return uniform_pmf()

    # argmin 返回第一个最小值下标 / argmin picks the first minimum
    min_idx = int(np.argmin(sims))
    raw = sims - sims[min_idx]
    raw[min_idx] += epsilon

    if temperature != 1:
        raw = np.maximum(raw, _TEMPERATURE_FLOOR) ** (1.0 / temperature)

    return normalize(raw)


def ssr_pmf_average(
    response_embedding: Sequence[float],
    anchor_sets_embeddings: Sequence[Sequence[Sequence[float]]],
    epsilon: float = DEFAULT_EPSILON,
    temperature: float = DEFAULT_TEMPERATURE,
) -> np.ndarray:
    """多组锚点 PMF 的逐元素平均。 / Element-wise mean of per-set PMFs.

    锚点组为空时返回均匀分布 [0.2] * 5。
    / An empty anchor-set collection yields the uniform PMF.
    """
    if len(anchor_sets_embeddings) == 0:
        return uniform_pmf()

    pmfs = [
        ssr_pmf_one_set(response_embedding, anchor_set, epsilon, temperature)
        for anchor_set in anchor_sets_embeddings
    ]
    return np.mean(np.vstack(pmfs), axis=0)


def validate_anchor_embeddings(
    anchor_sets_embeddings: Optional[Sequence[Sequence[Sequence[float]]]],
) -> None:
    """检查预计算锚点向量的形状。 / Check the shape of pre-computed anchors.

    Raises:
        ValueError: 锚点缺失、某组不是 5 个向量或向量维度不一致。
    """
    if not anchor_sets_embeddings:
        raise ValueError("SSR 需要预计算的锚点向量，但锚点为空")
    dims = set()
    for i, anchor_set in enumerate(anchor_sets_embeddings):
        if len(anchor_set) != LIKERT_POINTS:
            raise ValueError(
                f"锚点组 {i} 应包含 {LIKERT_POINTS} 个向量，实际 {len(anchor_set)}"
            )
        dims.update(len(vec) for vec in anchor_set)
    if len(dims) != 1 or 0 in dims:
        raise ValueError(f"锚点向量维度不一致或为空: {sorted(dims)}")
