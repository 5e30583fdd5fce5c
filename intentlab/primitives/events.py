# events.py
# =============================================================================
# 流水线进度事件 — 供外部应用实时获取运行状态。
# =============================================================================

"""Pipeline progress events for external integration."""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class PipelineProgress:
    """每个任务结束（成功或失败）后发出的进度事件。

    外部应用通过注册 on_progress 回调来接收此类事件，
    实现进度条、WebSocket 推送、SSE 流等集成场景。
    回调只用于观测，不影响执行。

    Attributes:
        completed: 已结束的任务数（含失败）。
        total: 本次运行的任务总数 (n_respondents × n_samples)。
        stage: 当前方法 ("DLR" | "FLR" | "SSR")。
        credits_used: 截至目前按已完成受访者折算的积分。
        failed: 已失败（被隔离）的任务数。
        run_id: 本次运行的唯一标识。
        timestamp: 事件产生时的单调时钟（秒）。
    """

    completed: int
    total: int
    stage: str
    credits_used: int
    failed: int = 0
    run_id: str = ""
    timestamp: float = field(default_factory=time.monotonic)

    @property
    def fraction(self) -> float:
        """完成比例 (0.0 ~ 1.0)，适合直接驱动进度条。"""
        if self.total <= 0:
            return 1.0
        return min(1.0, self.completed / self.total)
