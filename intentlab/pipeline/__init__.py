# pipeline/__init__.py
# =============================================================================
# 评分流水线 — 配置、治理层（限流 / 成本 / 缓存）、策略与编排器。
# =============================================================================

from intentlab.pipeline.cache import CacheManager, MemoryCache
from intentlab.pipeline.config import (
    DEFAULT_PIPELINE_CONFIG,
    PipelineConfig,
    build_pipeline_config,
)
from intentlab.pipeline.guardrails import (
    CostTracker,
    apply_dry_run_limits,
    calculate_credits_needed,
    check_credit_sufficiency,
    estimate_cost,
)
from intentlab.pipeline.runner import (
    PipelineRunner,
    PipelineState,
    ProgressCallback,
    run_pipeline,
)
from intentlab.pipeline.throttle import PipelineThrottler, RateLimiter, Semaphore

__all__ = [
    "CacheManager",
    "CostTracker",
    "DEFAULT_PIPELINE_CONFIG",
    "MemoryCache",
    "PipelineConfig",
    "PipelineRunner",
    "PipelineState",
    "PipelineThrottler",
    "ProgressCallback",
    "RateLimiter",
    "Semaphore",
    "apply_dry_run_limits",
    "build_pipeline_config",
    "calculate_credits_needed",
    "check_credit_sufficiency",
    "estimate_cost",
    "run_pipeline",
]
