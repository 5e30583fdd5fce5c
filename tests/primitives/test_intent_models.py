# test_intent_models.py
# =============================================================================
# 领域数据模型与进度事件测试
# =============================================================================

import pytest

from intentlab.primitives.events import PipelineProgress
from intentlab.primitives.models import (
    PRESET_PERSONAS,
    ConfidenceInterval,
    PmfMetrics,
    PricePoint,
    ProductConcept,
    SimulationResult,
    TaskFailure,
    TaskKey,
    one_hot_pmf,
)


class TestOneHot:
    @pytest.mark.parametrize("rating", [1, 2, 3, 4, 5])
    def test_valid_ratings(self, rating):
        pmf = one_hot_pmf(rating)
        assert sum(pmf) == 1.0
        assert pmf[rating - 1] == 1.0

    @pytest.mark.parametrize("rating", [0, 6, -1])
    def test_out_of_range(self, rating):
        with pytest.raises(ValueError):
            one_hot_pmf(rating)


class TestInputs:
    """输入模型测试。 / Input model tests."""

    def test_price_point_rejects_unknown_purchase_type(self):
        with pytest.raises(ValueError, match="purchase_type"):
            PricePoint(price=10, purchase_type="rental")

    def test_subscription_flag(self):
        assert PricePoint(price=19, purchase_type="subscription").is_subscription
        assert not PricePoint(price=19).is_subscription

    def test_concept_freezes_lists(self):
        concept = ProductConcept(
            name="Glow Serum",
            category="Skincare",
            description="A serum.",
            features=["Vitamin C"],
            claims=["Brightening"],
        )
        assert concept.features == ("Vitamin C",)
        assert concept.claims == ("Brightening",)

    def test_presets_are_complete(self):
        assert len(PRESET_PERSONAS) == 5
        for persona in PRESET_PERSONAS.values():
            assert persona.age and persona.income and persona.psychographics


class TestTaskKey:
    """任务标识测试。 / Task identity tests."""

    def test_serialize_parse_roundtrip(self):
        key = TaskKey("ab12cd34", "serum", 17, 1, "flr_rating")
        text = key.serialize()
        assert text == "ab12cd34:serum:17:1:flr_rating"
        assert TaskKey.parse(text) == key

    def test_concept_id_with_colons_roundtrips(self):
        key = TaskKey("ab12cd34", "sku:serum:v2", 3, 0, "ssr_embed")
        assert TaskKey.parse(key.serialize()) == key

    def test_parse_rejects_unknown_stage(self):
        with pytest.raises(ValueError):
            TaskKey.parse("run:concept:0:0:bogus")

    def test_parse_rejects_wrong_arity(self):
        with pytest.raises(ValueError):
            TaskKey.parse("run:concept:0:dlr_call")


class TestSimulationResult:
    def _result(self, failures=()):
        return SimulationResult(
            run_id="r1",
            concept_id="default",
            method="DLR",
            config=None,
            respondents=(),
            aggregated_pmf=(0.0, 0.0, 0.0, 0.0, 1.0),
            metrics=PmfMetrics(5.0, 1.0, 0.0, 0.0),
            credits_used=1,
            duration_ms=12.5,
            completed_tasks=2,
            total_tasks=2 + len(failures),
            failed_tasks=tuple(failures),
            top2_box_ci=ConfidenceInterval(1.0, 1.0),
        )

    def test_not_degraded_without_failures(self):
        assert not self._result().degraded

    def test_degraded_with_failures(self):
        result = self._result([TaskFailure("r1:default:0:0:dlr_call", "BackendError", "x")])
        assert result.degraded
        data = result.to_dict()
        assert data["degraded"] is True
        assert data["failed_tasks"][0]["error_type"] == "BackendError"
        assert data["top2_box_ci"] == {"lower": 1.0, "upper": 1.0, "level": 0.95}


class TestPipelineProgress:
    def test_fraction(self):
        assert PipelineProgress(completed=5, total=20, stage="DLR", credits_used=1).fraction == 0.25

    def test_fraction_with_zero_total(self):
        assert PipelineProgress(completed=0, total=0, stage="DLR", credits_used=0).fraction == 1.0
