# throttle.py
# =============================================================================
# 限流与并发控制 / Rate limiting & concurrency governor
#
#   RateLimiter       — 60 秒滑动窗口，同时约束 RPM 与 TPM；
#                       429/5xx 后设置 throttle_until，后续调用自动等待
#   Semaphore         — asyncio.Semaphore 外加计数，任何退出路径都归还许可
#   PipelineThrottler — 每个阶段一个信号量 + 共享限流器，
#                       对可重试的后端错误做指数退避重试
#
# 时钟与 sleep 可注入，便于在测试中不真实等待。
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from typing import (
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Mapping,
    Optional,
    TypeVar,
)

from intentlab.errors import BackendError, ConfigurationError
from intentlab.pipeline.config import RateLimitConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]

# 滑动窗口长度（秒） / Sliding window length in seconds
WINDOW_SECONDS = 60.0
# 窗口到期后的额外缓冲（秒） / Extra buffer after a window entry expires
SLOT_BUFFER_SECONDS = 0.1
# 单次退避上限（秒） / Cap of a single backoff
MAX_BACKOFF_SECONDS = 60.0


class WindowEntry:
    """窗口中的一次调用记录；record_usage 用实际用量覆盖估算值。"""

    __slots__ = ("timestamp", "tokens")

    def __init__(self, timestamp: float, tokens: int):
        self.timestamp = timestamp
        self.tokens = tokens


# =============================================================================
# 滑动窗口限流器 / Sliding-window rate limiter
# =============================================================================


class RateLimiter:
    """RPM + TPM 滑动窗口限流器。

    所有 "清理 → 检查 → 记录" 序列都在同一把 asyncio.Lock 内完成，
    避免两个并发调用同时认为还有空位。
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._entries: Deque[WindowEntry] = deque()
        self._throttle_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def request_timestamps(self) -> List[float]:
        return [e.timestamp for e in self._entries]

    @property
    def window_tokens(self) -> int:
        return sum(e.tokens for e in self._entries)

    @property
    def throttle_until(self) -> float:
        return self._throttle_until

    async def wait_for_slot(self, estimated_tokens: int = 1000) -> WindowEntry:
        """等待直到窗口内有空位，然后记录本次调用。

        Returns:
            本次调用的窗口记录，调用完成后交给 record_usage()。
        """
        async with self._lock:
            now = self._clock()
            if now < self._throttle_until:
                wait = self._throttle_until - now
                logger.debug("限流冷却中，等待 %.2fs", wait)
                await self._sleep(wait)

            while True:
                now = self._clock()
                self._prune(now)

                if len(self._entries) >= self._config.rpm:
                    wait = (
                        self._entries[0].timestamp
                        + WINDOW_SECONDS
                        - now
                        + SLOT_BUFFER_SECONDS
                    )
                    logger.debug(
                        "RPM 已满 (%d/%d)，等待 %.2fs",
                        len(self._entries),
                        self._config.rpm,
                        wait,
                    )
                    await self._sleep(max(wait, 0.0))
                    continue

                current_tokens = self.window_tokens
                if (
                    self._entries
                    and current_tokens + estimated_tokens > self._config.tpm
                ):
                    wait = (
                        self._entries[0].timestamp
                        + WINDOW_SECONDS
                        - now
                        + SLOT_BUFFER_SECONDS
                    )
                    logger.debug(
                        "TPM 已满 (%d + %d > %d)，等待 %.2fs",
                        current_tokens,
                        estimated_tokens,
                        self._config.tpm,
                        wait,
                    )
                    await self._sleep(max(wait, 0.0))
                    continue
                break

            entry = WindowEntry(self._clock(), estimated_tokens)
            self._entries.append(entry)
            return entry

    def record_usage(
        self, entry: Optional[WindowEntry], total_tokens: int
    ) -> None:
        """用实际 token 用量覆盖估算值（不重新校验已做出的等待决定）。

        entry 为 None 时覆盖最近一条记录。
        """
        if entry is None:
            if not self._entries:
                return
            entry = self._entries[-1]
        entry.tokens = total_tokens

    def handle_rate_limit_error(self, attempt: int) -> float:
        """计算退避时长并设置 throttle_until。

        退避 = min(base × 2^attempt + jitter(0~1s), 60s)

        Returns:
            退避秒数。
        """
        backoff = (self._config.retry_backoff_ms / 1000.0) * (2 ** attempt)
        jitter = self._rng.uniform(0.0, 1.0)
        total = min(backoff + jitter, MAX_BACKOFF_SECONDS)
        self._throttle_until = max(self._throttle_until, self._clock() + total)
        return total

    def reset_throttle(self) -> None:
        self._throttle_until = 0.0

    def _prune(self, now: float) -> None:
        cutoff = now - WINDOW_SECONDS
        while self._entries and self._entries[0].timestamp <= cutoff:
            self._entries.popleft()


# =============================================================================
# 计数信号量 / Counting semaphore
# =============================================================================


class Semaphore:
    """带计数的阶段信号量，排队与唤醒交给 asyncio.Semaphore（FIFO）。

    额外维护 in_use / waiting 供 stats() 使用；release() 次数超过
    acquire() 时报错，而不是悄悄增加许可。
    """

    def __init__(self, permits: int):
        if permits < 1:
            raise ConfigurationError(f"信号量许可数必须 ≥ 1，收到 {permits}")
        self._permits = permits
        self._in_use = 0
        self._waiting = 0
        self._semaphore = asyncio.Semaphore(permits)

    @property
    def permits(self) -> int:
        return self._permits

    @property
    def available(self) -> int:
        return self._permits - self._in_use

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return self._waiting

    async def acquire(self) -> None:
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1
        self._in_use += 1

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("Semaphore.release() 调用次数超过 acquire()")
        self._in_use -= 1
        self._semaphore.release()

    async def with_permit(self, fn: Callable[[], Awaitable[T]]) -> T:
        """持有许可执行 fn，无论成功失败都归还许可。"""
        await self.acquire()
        try:
            return await fn()
        finally:
            self.release()

    async def __aenter__(self) -> Semaphore:
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


# =============================================================================
# 阶段节流器 / Per-stage throttler
# =============================================================================


class PipelineThrottler:
    """组合限流器与按阶段划分的并发池。

    调用顺序：获取阶段信号量 → 等待限流空位 → 执行 → 释放信号量。
    可重试的 BackendError（429 / 5xx）在释放许可后按指数退避重试，
    最多 max_retries 次；不可重试的错误立即上抛。
    """

    def __init__(
        self,
        rate_limit_config: RateLimitConfig,
        concurrency_limits: Mapping[str, int],
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self._config = rate_limit_config
        self._rate_limiter = RateLimiter(
            rate_limit_config, clock=clock, sleep=sleep, rng=rng
        )
        self._semaphores: Dict[str, Semaphore] = {
            stage: Semaphore(limit) for stage, limit in concurrency_limits.items()
        }

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def stages(self) -> List[str]:
        return list(self._semaphores)

    def semaphore(self, stage: str) -> Semaphore:
        sem = self._semaphores.get(stage)
        if sem is None:
            raise ConfigurationError(
                f"未知阶段: '{stage}'。已配置: {', '.join(self._semaphores)}"
            )
        return sem

    async def execute(
        self,
        stage: str,
        estimated_tokens: int,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        """在限流与并发控制下执行 fn。

        fn 的返回值若带有 usage（TokenUsage），用实际用量更新限流窗口。

        Raises:
            ConfigurationError: 未知阶段。
            BackendError: 不可重试的错误，或重试次数用尽。
        """
        semaphore = self.semaphore(stage)
        attempt = 0
        while True:
            async with semaphore:
                entry = await self._rate_limiter.wait_for_slot(estimated_tokens)
                try:
                    result = await fn()
                except BackendError as e:
                    if not e.retryable or attempt >= self._config.max_retries:
                        raise
                    last_error = e
                else:
                    usage = getattr(result, "usage", None)
                    if usage is not None:
                        self._rate_limiter.record_usage(entry, usage.total_tokens)
                    return result

            backoff = self.handle_error(attempt)
            attempt += 1
            logger.warning(
                "阶段 %s 后端暂不可用 (%s)，%.2fs 后第 %d/%d 次重试",
                stage,
                last_error.reason,
                backoff,
                attempt,
                self._config.max_retries,
            )

    def record_usage(self, total_tokens: int) -> None:
        self._rate_limiter.record_usage(None, total_tokens)

    def handle_error(self, attempt: int) -> float:
        return self._rate_limiter.handle_rate_limit_error(attempt)

    def stats(self) -> Dict[str, Dict[str, int]]:
        """各阶段并发池快照。 / Snapshot of every stage pool."""
        return {
            stage: {
                "available": sem.available,
                "waiting": sem.waiting,
                "in_use": sem.in_use,
            }
            for stage, sem in self._semaphores.items()
        }
