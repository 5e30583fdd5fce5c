# runner.py
# =============================================================================
# 流水线编排器 / Pipeline runner
#
# 状态机：
#   configuring → preparing → executing → aggregating → done
#                                  └────────────────→ aborted（成本超限）
#
#   configuring  合并配置、应用干跑夹紧、校验 SSR 所需的向量能力
#   preparing    SSR 时预计算锚点向量（每次运行一次，或取自缓存）
#   executing    受访者 × 样本 任务按阶段并发上限分批；批内并发，批间串行
#   aggregating  每个受访者取样本平均，再对受访者做等权平均，计算指标与 CI
#
# 失败策略：
#   - 单个任务的后端 / 未知错误被隔离，记为 TaskFailure，不参与聚合；
#     结果中的 degraded / completed_tasks / total_tasks 反映降级程度
#   - 所有任务都失败时抛出 PipelineExecutionError
#   - 配置错误、护栏错误与不可重试的 4xx（如凭证无效）从不隔离，
#     当前批次结束后直接上抛
#   - 成本超限时不再启动新批次，抛出 CostCapExceededError（附带部分结果），
#     不会把不完整的聚合当作完整结果返回
#
# 异步进度回调在后台调度，不阻塞任务；运行结束前统一等待。
# =============================================================================

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np

from intentlab.errors import (
    BackendError,
    ConfigurationError,
    CostCapExceededError,
    GuardrailError,
    PipelineExecutionError,
)
from intentlab.llm.backend import supports_embeddings
from intentlab.pipeline.cache import CacheManager
from intentlab.pipeline.config import PipelineConfig, build_pipeline_config
from intentlab.pipeline.gateway import GovernedBackend
from intentlab.pipeline.guardrails import (
    CREDIT_ECONOMICS,
    CostTracker,
    apply_dry_run_limits,
    estimate_cost,
)
from intentlab.pipeline.strategies import (
    RatingStrategy,
    StrategyOptions,
    StrategyOutput,
    compute_anchor_embeddings,
    strategy_for,
)
from intentlab.pipeline.throttle import PipelineThrottler
from intentlab.primitives.events import PipelineProgress
from intentlab.primitives.models import (
    Persona,
    PricePoint,
    ProductConcept,
    RespondentResult,
    SimulationResult,
    TaskFailure,
    TaskKey,
)
from intentlab.ssr.anchors import ANCHOR_SETS
from intentlab.ssr.engine import validate_anchor_embeddings
from intentlab.ssr.metrics import aggregate_pmfs, bootstrap_confidence, compute_metrics

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelineProgress], Any]


class PipelineState(str, Enum):
    CONFIGURING = "configuring"
    PREPARING = "preparing"
    EXECUTING = "executing"
    AGGREGATING = "aggregating"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class _RunContext:
    """单次运行的可变状态，只由 runner 自身修改。"""
    run_id: str
    concept_id: str
    config: PipelineConfig
    strategy: RatingStrategy
    gateway: GovernedBackend
    options: StrategyOptions
    total: int
    samples: Dict[int, List[Tuple[int, StrategyOutput]]] = field(
        default_factory=lambda: defaultdict(list)
    )
    failures: List[TaskFailure] = field(default_factory=list)
    # 尚未结束的异步进度回调
    callbacks: Set[asyncio.Future] = field(default_factory=set)
    completed: int = 0
    succeeded: int = 0


class PipelineRunner:
    """驱动一次购买意向模拟。

    Args:
        backend: 满足 LLMBackend 协议的后端。
        config: PipelineConfig 或部分覆盖字典；None 表示使用默认值与配置文件。
        on_progress: 每个任务结束后调用的进度回调（同步或异步皆可），
            只用于观测，回调异常会被记录并忽略。
        cache: 显式注入的 CacheManager（可跨运行共享）；未注入且
            use_cache 为 True 时，每次运行新建一个。
        anchor_sets: 自定义锚点语句组；默认使用内置的锚点组。
        run_id: 外部指定的运行 ID；不传则自动生成。
        rng: bootstrap 使用的随机数生成器（便于复现）。
        clock / sleep: 可注入的时钟与 sleep（测试用）。
        config_file: 流水线配置文件路径（可选）。
    """

    def __init__(
        self,
        backend: Any,
        config: Union[PipelineConfig, Mapping[str, Any], None] = None,
        on_progress: Optional[ProgressCallback] = None,
        *,
        cache: Optional[CacheManager] = None,
        anchor_sets: Optional[Sequence[Sequence[str]]] = None,
        run_id: Optional[str] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
        config_file: Optional[str] = None,
    ):
        self._backend = backend
        self._config = build_pipeline_config(config, config_file=config_file)
        self._on_progress = on_progress
        self._cache = cache
        self._anchor_sets = anchor_sets
        self._run_id = run_id
        self._rng = rng
        self._clock = clock
        self._sleep = sleep
        self.state = PipelineState.CONFIGURING

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def _set_state(self, run_id: str, state: PipelineState) -> None:
        self.state = state
        logger.info("[%s] 状态 → %s", run_id, state.value)

    # =========================================================================
    # 主流程 / Main flow
    # =========================================================================

    async def run(
        self,
        persona: Persona,
        concept: ProductConcept,
        price_point: PricePoint,
    ) -> SimulationResult:
        start = self._clock()
        run_id = self._run_id or str(uuid.uuid4())[:8]

        # --- configuring ---
        self._set_state(run_id, PipelineState.CONFIGURING)
        config = self._config
        if config.dry_run:
            config = apply_dry_run_limits(config)
            logger.info(
                "[%s] 干跑模式: %d 受访者 × %d 样本",
                run_id,
                config.n_respondents,
                config.n_samples_per_respondent,
            )

        strategy = strategy_for(config.method)
        if strategy.requires_embeddings and not supports_embeddings(self._backend):
            raise ConfigurationError(
                f"{config.method} 方法需要向量能力，但后端不支持 embed_text"
            )

        anchor_texts = self._select_anchor_sets(config)
        cache = self._cache if config.use_cache else None
        if config.use_cache and cache is None:
            cache = CacheManager()

        throttler = PipelineThrottler(
            config.rate_limits,
            config.concurrency.as_limits(),
            clock=self._clock,
            sleep=self._sleep,
        )
        cost_tracker = CostTracker(config.cost_cap_usd, clock=self._clock)
        gateway = GovernedBackend(self._backend, throttler, cost_tracker, cache)

        estimate = estimate_cost(
            config.n_respondents, config.method, config.n_samples_per_respondent
        )
        if estimate.warning:
            logger.warning("[%s] %s", run_id, estimate.warning)
        logger.info(
            "[%s] 方法=%s, 受访者=%d, 样本=%d, 预计积分=%d, 预计调用=%d",
            run_id,
            config.method,
            config.n_respondents,
            config.n_samples_per_respondent,
            estimate.credits_needed,
            estimate.total_calls,
        )

        ctx = _RunContext(
            run_id=run_id,
            concept_id=concept.id or "default",
            config=config,
            strategy=strategy,
            gateway=gateway,
            options=StrategyOptions(
                max_output_tokens=config.max_output_tokens,
                reasoning_effort=config.reasoning_effort,
                verbosity=config.verbosity,
                ssr=config.ssr,
            ),
            total=config.total_tasks,
        )

        # --- preparing ---
        self._set_state(run_id, PipelineState.PREPARING)
        if strategy.requires_embeddings:
            try:
                anchors = await compute_anchor_embeddings(gateway, anchor_texts)
            except CostCapExceededError as e:
                raise self._abort(ctx, e.reason) from e
            try:
                validate_anchor_embeddings(anchors)
            except ValueError as e:
                raise ConfigurationError(f"锚点向量无效: {e}") from e
            ctx.options = replace(ctx.options, anchor_embeddings=anchors)

        # --- executing ---
        self._set_state(run_id, PipelineState.EXECUTING)
        try:
            await self._execute(ctx, persona, concept, price_point)
        finally:
            await self._drain_callbacks(ctx)

        # --- aggregating ---
        self._set_state(run_id, PipelineState.AGGREGATING)
        if ctx.succeeded == 0:
            self.state = PipelineState.ABORTED
            raise PipelineExecutionError(
                f"全部 {ctx.total} 个任务均失败",
                failures=ctx.failures,
            )

        respondents = self._build_respondents(ctx)
        respondent_pmfs = [r.average_pmf for r in respondents]
        aggregated = aggregate_pmfs(respondent_pmfs)
        metrics = compute_metrics(aggregated)
        ci = bootstrap_confidence(
            respondent_pmfs,
            level=config.confidence_level,
            n_bootstrap=config.bootstrap_iterations,
            rng=self._rng,
        )
        cost_tracker.record_credits(estimate.credits_needed)

        result = SimulationResult(
            run_id=run_id,
            concept_id=ctx.concept_id,
            method=config.method,
            config=config,
            respondents=tuple(respondents),
            aggregated_pmf=tuple(float(p) for p in aggregated),
            metrics=metrics,
            credits_used=estimate.credits_needed,
            duration_ms=(self._clock() - start) * 1000.0,
            completed_tasks=ctx.succeeded,
            total_tasks=ctx.total,
            failed_tasks=tuple(ctx.failures),
            top2_box_ci=ci,
            cost_stats=cost_tracker.stats(),
            cache_stats=cache.stats() if cache is not None else None,
        )

        self._set_state(run_id, PipelineState.DONE)
        logger.info(
            "[%s] 完成: %d/%d 任务, top2=%.3f, E[r]=%.2f, 成本≈$%.4f%s",
            run_id,
            ctx.succeeded,
            ctx.total,
            metrics.top2_box,
            metrics.expected_likert,
            cost_tracker.projected_cost_usd(),
            "（降级）" if result.degraded else "",
        )
        return result

    def _select_anchor_sets(self, config: PipelineConfig) -> List[Sequence[str]]:
        sets = list(self._anchor_sets) if self._anchor_sets is not None else list(ANCHOR_SETS)
        count = min(config.ssr.anchor_sets, len(sets))
        if config.method == "SSR" and count == 0:
            raise ConfigurationError("SSR 需要至少一组锚点语句")
        return sets[:count]

    # =========================================================================
    # 执行 / Execution
    # =========================================================================

    async def _execute(
        self,
        ctx: _RunContext,
        persona: Persona,
        concept: ProductConcept,
        price_point: PricePoint,
    ) -> None:
        tasks = [
            (r, s)
            for r in range(ctx.config.n_respondents)
            for s in range(ctx.config.n_samples_per_respondent)
        ]
        batch_size = ctx.strategy.concurrency(ctx.config)

        for offset in range(0, len(tasks), batch_size):
            if ctx.gateway.cost_tracker.should_stop():
                raise self._abort(ctx, "预计成本已超过上限，停止启动新批次")

            batch = tasks[offset:offset + batch_size]
            logger.debug(
                "[%s] 批次 %d: %d 个任务",
                ctx.run_id,
                offset // batch_size + 1,
                len(batch),
            )
            outcomes = await asyncio.gather(
                *(
                    self._run_task(ctx, r, s, persona, concept, price_point)
                    for r, s in batch
                ),
                return_exceptions=True,
            )

            stop: Optional[CostCapExceededError] = None
            for outcome in outcomes:
                if isinstance(outcome, CostCapExceededError):
                    stop = stop or outcome
                elif isinstance(outcome, BaseException):
                    # 配置 / 护栏 / 客户端错误与取消不隔离
                    self._set_state(ctx.run_id, PipelineState.ABORTED)
                    raise outcome
            if stop is not None:
                raise self._abort(ctx, stop.reason)

    async def _run_task(
        self,
        ctx: _RunContext,
        respondent_id: int,
        sample_idx: int,
        persona: Persona,
        concept: ProductConcept,
        price_point: PricePoint,
    ) -> Optional[StrategyOutput]:
        key = TaskKey(
            run_id=ctx.run_id,
            concept_id=ctx.concept_id,
            respondent_id=respondent_id,
            sample_idx=sample_idx,
            stage=ctx.strategy.task_stages[0],
        )
        salt = f"r{respondent_id}:s{sample_idx}"
        if ctx.config.prompt_cache_key:
            salt = f"{ctx.config.prompt_cache_key}:{salt}"

        try:
            # 启动新工作之前检查成本上限
            ctx.gateway.check_budget()
            output = await ctx.strategy.execute(
                ctx.gateway,
                persona,
                concept,
                price_point,
                replace(ctx.options, cache_salt=salt),
            )
        except (ConfigurationError, GuardrailError):
            raise
        except Exception as e:
            if isinstance(e, BackendError) and e.is_client_error:
                # 凭证无效 / 请求非法：每个任务都会同样失败，不隔离
                logger.error(
                    "[%s] 后端拒绝请求 (HTTP %s)，终止运行: %s",
                    ctx.run_id,
                    e.status_code,
                    e.reason,
                )
                raise
            stage = getattr(e, "task_stage", None) or key.stage
            failure = TaskFailure(
                task_key=replace(key, stage=stage).serialize(),
                error_type=type(e).__name__,
                message=str(e),
            )
            ctx.failures.append(failure)
            ctx.completed += 1
            logger.warning(
                "[%s] 任务 %s 失败，已隔离: %s: %s",
                ctx.run_id,
                failure.task_key,
                failure.error_type,
                failure.message,
            )
            await self._emit_progress(ctx)
            return None

        ctx.samples[respondent_id].append((sample_idx, output))
        ctx.completed += 1
        ctx.succeeded += 1
        await self._emit_progress(ctx)
        return output

    async def _emit_progress(self, ctx: _RunContext) -> None:
        """触发进度回调；回调异常只记录不传播。

        同步回调就地调用，应当尽快返回。异步回调被调度为后台任务，
        任务不等待它完成；run() 返回或抛出前统一收尾。
        """
        if self._on_progress is None:
            return
        event = PipelineProgress(
            completed=ctx.completed,
            total=ctx.total,
            stage=ctx.config.method,
            credits_used=math.ceil(
                ctx.succeeded
                / (CREDIT_ECONOMICS.respondents_per_credit
                   * ctx.config.n_samples_per_respondent)
            ),
            failed=len(ctx.failures),
            run_id=ctx.run_id,
        )
        try:
            result = self._on_progress(event)
        except Exception as e:
            logger.warning("[%s] 进度回调异常（已忽略）: %s", ctx.run_id, e)
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            ctx.callbacks.add(future)
            future.add_done_callback(
                lambda f: self._callback_done(ctx, f)
            )

    @staticmethod
    def _callback_done(ctx: _RunContext, future: asyncio.Future) -> None:
        ctx.callbacks.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("[%s] 进度回调异常（已忽略）: %s", ctx.run_id, error)

    @staticmethod
    async def _drain_callbacks(ctx: _RunContext) -> None:
        """等待所有已调度的异步进度回调结束。"""
        while ctx.callbacks:
            await asyncio.gather(*list(ctx.callbacks), return_exceptions=True)

    # =========================================================================
    # 聚合 / Aggregation
    # =========================================================================

    @staticmethod
    def _build_respondents(ctx: _RunContext) -> List[RespondentResult]:
        respondents: List[RespondentResult] = []
        for respondent_id in sorted(ctx.samples):
            outputs = [o for _, o in sorted(ctx.samples[respondent_id], key=lambda x: x[0])]
            if not outputs:
                continue
            pmfs = tuple(tuple(float(p) for p in o.pmf) for o in outputs)
            rationales = tuple(o.rationale for o in outputs if o.rationale)
            respondents.append(
                RespondentResult(
                    respondent_id=respondent_id,
                    sample_pmfs=pmfs,
                    average_pmf=tuple(float(p) for p in aggregate_pmfs(pmfs)),
                    rationales=rationales or None,
                )
            )
        return respondents

    def _abort(self, ctx: _RunContext, reason: str) -> CostCapExceededError:
        self._set_state(ctx.run_id, PipelineState.ABORTED)
        stats = ctx.gateway.cost_tracker.stats()
        logger.warning(
            "[%s] 成本超限中止: 已完成 %d/%d 任务，预计成本 $%.4f",
            ctx.run_id,
            ctx.succeeded,
            ctx.total,
            stats["estimated_cost_usd"],
        )
        return CostCapExceededError(
            reason,
            completed=ctx.succeeded,
            total=ctx.total,
            partial_respondents=self._build_respondents(ctx),
            cost_stats=stats,
        )


async def run_pipeline(
    backend: Any,
    persona: Persona,
    concept: ProductConcept,
    price_point: PricePoint,
    config: Union[PipelineConfig, Mapping[str, Any], None] = None,
    on_progress: Optional[ProgressCallback] = None,
    **kwargs: Any,
) -> SimulationResult:
    """运行一次购买意向模拟。

    关键字参数同 PipelineRunner（cache / anchor_sets / run_id / rng /
    clock / sleep / config_file）。

    Raises:
        ConfigurationError: 配置非法，或 SSR 缺少向量能力（在任何后端调用之前）。
        CostCapExceededError: 运行中成本超过上限。
        PipelineExecutionError: 所有任务均失败。
    """
    runner = PipelineRunner(backend, config, on_progress, **kwargs)
    return await runner.run(persona, concept, price_point)
