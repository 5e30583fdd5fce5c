# errors.py
# =============================================================================
# 异常分类 / Failure taxonomy
#
#   configuration — 调用方 bug，在任何后端调用之前快速失败
#   guardrail     — 策略性拒绝（成本上限、积分不足），不是技术故障
#   backend       — 传输/后端故障；429 与 5xx 可重试，其余立即上抛
#   execution     — 所有任务都失败，无法给出聚合结果
#
# 每个异常都带 kind 与可读的 reason，由外部 Web 层翻译为用户消息。
# / Each failure carries a kind and a human-readable reason for the web layer.
# =============================================================================

"""Typed failures raised by intentlab."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class IntentLabError(Exception):
    """所有 intentlab 异常的基类。 / Root of all intentlab failures."""

    kind = "error"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ConfigurationError(IntentLabError, ValueError):
    """配置缺失或非法（未知方法、未知阶段、缺少锚点等）。"""

    kind = "configuration"


# =============================================================================
# 策略性失败 / Guardrail failures
# =============================================================================


class GuardrailError(IntentLabError):
    """策略性失败的基类。 / Base class for policy failures."""

    kind = "guardrail"


class CostCapExceededError(GuardrailError):
    """预计成本超过硬上限，运行中止。

    / Projected cost crossed the hard cap; the run was aborted.

    partial_respondents 仅供失败报告使用，不能当作完整结果。
    / partial_respondents is for failure reports only, never a complete result.
    """

    def __init__(
        self,
        reason: str,
        completed: int = 0,
        total: int = 0,
        partial_respondents: Optional[Sequence[Any]] = None,
        cost_stats: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(reason)
        self.completed = completed
        self.total = total
        self.partial_respondents = list(partial_respondents or [])
        self.cost_stats = dict(cost_stats or {})


class InsufficientCreditsError(GuardrailError):
    """积分不足且未开启超额。 / Not enough credits and overage disabled."""

    def __init__(self, reason: str, credits_needed: int, credits_available: int):
        super().__init__(reason)
        self.credits_needed = credits_needed
        self.credits_available = credits_available


# =============================================================================
# 执行失败 / Execution failures
# =============================================================================


class PipelineExecutionError(IntentLabError):
    """所有任务均失败。 / Every task of the run failed."""

    kind = "execution"

    def __init__(self, reason: str, failures: Optional[List[Any]] = None):
        super().__init__(reason)
        self.failures = list(failures or [])


# =============================================================================
# 后端失败 / Backend failures
# =============================================================================


class BackendError(IntentLabError):
    """传输或后端故障。 / Transport or backend failure.

    retryable 为 True 时由 PipelineThrottler 以指数退避透明重试。
    """

    kind = "backend"
    retryable = False

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        """不可重试的 4xx（凭证无效、请求非法），重复调用不会成功。"""
        return (
            not self.retryable
            and self.status_code is not None
            and 400 <= self.status_code < 500
        )


class RateLimitError(BackendError):
    """HTTP 429。"""

    retryable = True


class BackendUnavailableError(BackendError):
    """HTTP 5xx。"""

    retryable = True


def backend_error_for_status(status_code: int, reason: str) -> BackendError:
    """按 HTTP 状态码映射到具体异常类型。 / Map an HTTP status to its error type."""
    if status_code == 429:
        return RateLimitError(reason, status_code=status_code)
    if 500 <= status_code < 600:
        return BackendUnavailableError(reason, status_code=status_code)
    return BackendError(reason, status_code=status_code)
