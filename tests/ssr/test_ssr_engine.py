# test_ssr_engine.py
# =============================================================================
# 相似度 → PMF 引擎单元测试
#
# 测试内容：
#   1. cosine_sim 的退化输入（零向量、维度不一致）
#   2. 单组 / 多组锚点 PMF 为合法分布
#   3. 最不相似锚点只得到 epsilon 质量
#   4. 温度缩放：T > 1 更平坦，T < 1 更尖锐
#   5. 锚点形状校验
# =============================================================================

import math

import numpy as np
import pytest

from intentlab.ssr.anchors import ANCHOR_SETS
from intentlab.ssr.engine import (
    cosine_sim,
    normalize,
    ssr_pmf_average,
    ssr_pmf_one_set,
    uniform_pmf,
    validate_anchor_embeddings,
)


def _basis(i: int, dim: int = 10) -> np.ndarray:
    v = np.zeros(dim)
    v[i] = 1.0
    return v


def _anchor_set(s: int):
    """第 s 组锚点：等级 l 的向量 = e_l + 0.1·e_{5+s}。"""
    return [(_basis(level) + 0.1 * _basis(5 + s)).tolist() for level in range(5)]


def _entropy(pmf) -> float:
    return -sum(p * math.log2(p) for p in pmf if p > 0)


class TestCosineSim:
    """余弦相似度测试。 / Cosine similarity tests."""

    def test_identical_vectors(self):
        assert cosine_sim([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_sim([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_sim([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_norm_is_zero(self):
        assert cosine_sim([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_mismatched_length_is_zero(self):
        assert cosine_sim([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0

    def test_empty_is_zero(self):
        assert cosine_sim([], []) == 0.0


class TestNormalize:
    def test_sums_to_one(self):
        assert normalize([1.0, 1.0, 2.0]).tolist() == pytest.approx([0.25, 0.25, 0.5])

    def test_non_positive_total_gives_uniform(self):
        assert normalize([0.0] * 5).tolist() == pytest.approx([0.2] * 5)


class TestSinglePmf:
    """单组锚点 PMF 测试。 / Single anchor set tests."""

    def test_is_valid_distribution(self):
        rng = np.random.default_rng(7)
        anchors = rng.normal(size=(5, 16)).tolist()
        for _ in range(20):
            response = rng.normal(size=16).tolist()
            pmf = ssr_pmf_one_set(response, anchors, epsilon=0.01)
            assert len(pmf) == 5
            assert all(p >= 0 for p in pmf)
            assert sum(pmf) == pytest.approx(1.0, abs=1e-9)

    def test_least_similar_gets_only_epsilon(self):
        anchors = [_basis(i, 5).tolist() for i in range(5)]
        response = [0.0, 0.1, 0.2, 0.3, 1.0]
        epsilon = 0.05

        pmf = ssr_pmf_one_set(response, anchors, epsilon=epsilon)

        sims = [cosine_sim(response, a) for a in anchors]
        shifted = [s - min(sims) for s in sims]
        total = sum(shifted) + epsilon
        assert int(np.argmin(sims)) == 0
        assert pmf[0] == pytest.approx(epsilon / total)
        assert int(np.argmax(pmf)) == 4

    def test_all_equal_similarity_without_epsilon_is_uniform(self):
        anchors = [_basis(i, 5).tolist() for i in range(5)]
        pmf = ssr_pmf_one_set([0.0] * 5, anchors, epsilon=0.0)
        assert pmf.tolist() == pytest.approx([0.2] * 5)

    def test_empty_anchor_set_is_uniform(self):
        assert ssr_pmf_one_set([1.0], []).tolist() == pytest.approx(uniform_pmf().tolist())


class TestTemperature:
    """温度缩放测试。 / Temperature scaling tests."""

    def setup_method(self):
        self.anchors = [_basis(i, 5).tolist() for i in range(5)]
        self.response = [0.1, 0.2, 0.4, 0.8, 1.0]

    def test_higher_temperature_flattens(self):
        base = ssr_pmf_one_set(self.response, self.anchors, epsilon=0.01, temperature=1.0)
        flat = ssr_pmf_one_set(self.response, self.anchors, epsilon=0.01, temperature=3.0)
        assert _entropy(flat) > _entropy(base)

    def test_lower_temperature_sharpens(self):
        base = ssr_pmf_one_set(self.response, self.anchors, epsilon=0.01, temperature=1.0)
        sharp = ssr_pmf_one_set(self.response, self.anchors, epsilon=0.01, temperature=0.3)
        assert _entropy(sharp) < _entropy(base)
        assert int(np.argmax(sharp)) == int(np.argmax(base))


class TestAveragedPmf:
    """多组锚点平均测试。 / Multi-set averaging tests."""

    def test_aligned_response_peaks_at_matching_level(self):
        sets = [_anchor_set(s) for s in range(3)]
        response = sets[0][4]

        pmf = ssr_pmf_average(response, sets, epsilon=0.01)

        assert int(np.argmax(pmf)) == 4
        assert sum(pmf) == pytest.approx(1.0)

    def test_average_of_single_set_equals_single(self):
        anchors = _anchor_set(0)
        response = (_basis(2) + 0.3 * _basis(3)).tolist()
        single = ssr_pmf_one_set(response, anchors, epsilon=0.01)
        averaged = ssr_pmf_average(response, [anchors], epsilon=0.01)
        assert averaged.tolist() == pytest.approx(single.tolist())

    def test_set_order_does_not_matter(self):
        sets = [_anchor_set(s) for s in range(4)]
        response = (_basis(1) + 0.5 * _basis(3) + 0.2 * _basis(7)).tolist()
        forward = ssr_pmf_average(response, sets, epsilon=0.01)
        backward = ssr_pmf_average(response, sets[::-1], epsilon=0.01)
        assert backward.tolist() == pytest.approx(forward.tolist())

    def test_no_sets_is_uniform(self):
        assert ssr_pmf_average([1.0, 0.0], []).tolist() == pytest.approx([0.2] * 5)


class TestValidateAnchors:
    def test_accepts_well_formed(self):
        validate_anchor_embeddings([_anchor_set(0), _anchor_set(1)])

    def test_rejects_missing(self):
        with pytest.raises(ValueError):
            validate_anchor_embeddings([])
        with pytest.raises(ValueError):
            validate_anchor_embeddings(None)

    def test_rejects_wrong_set_size(self):
        with pytest.raises(ValueError, match="锚点组 0"):
            validate_anchor_embeddings([_anchor_set(0)[:4]])

    def test_rejects_mixed_dimensions(self):
        bad = _anchor_set(0)
        bad[2] = [1.0, 0.0]
        with pytest.raises(ValueError):
            validate_anchor_embeddings([bad])


class TestAnchorSets:
    def test_builtin_sets_shape(self):
        assert len(ANCHOR_SETS) == 6
        for anchor_set in ANCHOR_SETS:
            assert len(anchor_set) == 5
            assert all(isinstance(s, str) and s for s in anchor_set)
