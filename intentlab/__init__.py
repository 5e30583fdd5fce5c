# intentlab/__init__.py
# =============================================================================
# intentlab — 基于 LLM 的购买意向模拟流水线。 / LLM-driven purchase-intent simulation pipeline.
# =============================================================================

"""intentlab — 基于 LLM 的购买意向模拟流水线。 / LLM-driven purchase-intent simulation pipeline."""

from intentlab.pipeline.runner import run_pipeline

__version__ = "0.1.0"
__all__ = ["run_pipeline", "__version__"]
