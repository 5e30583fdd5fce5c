# intentlab/ssr/metrics.py
"""PMF 聚合与统计指标。 / PMF aggregation and summary statistics."""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from intentlab.primitives.models import (
    LIKERT_POINTS,
    ConfidenceInterval,
    PmfMetrics,
)
from intentlab.ssr.engine import uniform_pmf


def aggregate_pmfs(pmfs: Sequence[Sequence[float]]) -> np.ndarray:
    """逐元素平均多个 PMF；列表为空时返回均匀分布。

    / Element-wise mean of PMFs; an empty list yields the uniform PMF.
    """
    if len(pmfs) == 0:
        return uniform_pmf()
    return np.mean(np.asarray(pmfs, dtype=float), axis=0)


def expected_likert(pmf: Sequence[float]) -> float:
    """期望评分 E[r] = Σ p(r)·r。"""
    arr = np.asarray(pmf, dtype=float)
    return float(arr.dot(np.arange(1, arr.size + 1)))


def top2_box(pmf: Sequence[float]) -> float:
    """Top-2-Box：P(r ∈ {4, 5})，标准购买意向指标。"""
    return float(pmf[3] + pmf[4])


def bottom2_box(pmf: Sequence[float]) -> float:
    """Bottom-2-Box：P(r ∈ {1, 2})，用于异议分析。"""
    return float(pmf[0] + pmf[1])


def distribution_entropy(pmf: Sequence[float]) -> float:
    """分布熵（比特），跳过零概率项（0·log2(0) = 0）。"""
    total = 0.0
    for p in pmf:
        if p > 0:
            total -= p * math.log2(p)
    return total


def compute_metrics(pmf: Sequence[float]) -> PmfMetrics:
    return PmfMetrics(
        expected_likert=expected_likert(pmf),
        top2_box=top2_box(pmf),
        bottom2_box=bottom2_box(pmf),
        entropy=distribution_entropy(pmf),
    )


def bootstrap_confidence(
    pmfs: Sequence[Sequence[float]],
    level: float = 0.95,
    n_bootstrap: int = 1000,
    rng: Optional[np.random.Generator] = None,
) -> ConfidenceInterval:
    """Top-2-Box 的 Bootstrap 置信区间。 / Bootstrap CI for top-2-box.

    对受访者级 PMF 有放回重采样 n_bootstrap 次，每次取平均并计算
    Top-2-Box，返回经验分位 (1-level)/2 与 1-(1-level)/2。

    Args:
        pmfs: 受访者级 PMF 列表。
        level: 置信水平（默认 0.95 → 2.5% / 97.5% 分位）。
        n_bootstrap: 重采样次数。
        rng: 可选随机数生成器（便于复现）。

    Returns:
        ConfidenceInterval；输入为空时为 [0, 0]。
    """
    if len(pmfs) == 0 or n_bootstrap <= 0:
        return ConfidenceInterval(lower=0.0, upper=0.0, level=level)
    if not 0.0 < level < 1.0:
        raise ValueError(f"level 必须在 (0, 1) 之间，收到 {level}")

    rng = rng or np.random.default_rng()
    matrix = np.asarray(pmfs, dtype=float).reshape(-1, LIKERT_POINTS)
    n = matrix.shape[0]

    # (n_bootstrap, n) 个重采样下标 / resampled indices
    idx = rng.integers(0, n, size=(n_bootstrap, n))
    resampled = matrix[idx].mean(axis=1)
    top2 = np.sort(resampled[:, 3] + resampled[:, 4])

    alpha = 1.0 - level
    lower_idx = min(int(math.floor(n_bootstrap * (alpha / 2))), n_bootstrap - 1)
    upper_idx = min(int(math.floor(n_bootstrap * (1 - alpha / 2))), n_bootstrap - 1)
    return ConfidenceInterval(
        lower=float(top2[lower_idx]),
        upper=float(top2[upper_idx]),
        level=level,
    )
