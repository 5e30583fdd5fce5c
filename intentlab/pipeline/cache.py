# cache.py
# =============================================================================
# 内容寻址缓存 / Content-addressed cache
#
# 缓存键 = SHA-256(请求参数的规范化 JSON)，跨进程稳定。
# 存储为有界内存映射：超出容量时淘汰最早插入的条目（FIFO），
# 读取会把条目移到末尾以近似最近使用；条目超过 TTL 视为未命中。
#
# 缓存只是性能优化：启用、冷启动或关闭时结果语义完全一致。
# CacheManager 由调用方显式构造并注入，不存在进程级全局单例。
# =============================================================================

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

LLM_NAMESPACE = "llm"
EMBEDDING_NAMESPACE = "embedding"


def hash_string(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _canonical(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def create_llm_cache_key(
    model: str,
    system_prompt: str,
    user_prompt: str,
    temperature: Optional[float],
    max_tokens: Optional[int] = None,
    salt: Optional[str] = None,
    reasoning_effort: Optional[str] = None,
    verbosity: Optional[str] = None,
) -> str:
    """文本生成请求的缓存键。

    salt 用于区分同一请求的独立样本（例如 "r3:s1"），
    避免一次运行中的多个样本共享同一个缓存回复。
    """
    payload: Dict[str, Any] = {
        "model": model,
        "system": system_prompt,
        "user": user_prompt,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if salt is not None:
        payload["salt"] = salt
    if reasoning_effort is not None:
        payload["reasoning_effort"] = reasoning_effort
    if verbosity is not None:
        payload["verbosity"] = verbosity
    return hash_string(_canonical(payload))


def create_embedding_cache_key(model: str, text: str) -> str:
    return hash_string(_canonical({"model": model, "text": text}))


# =============================================================================
# 有界内存缓存 / Bounded in-memory cache
# =============================================================================


class MemoryCache:
    """FIFO 淘汰 + TTL 过期的内存缓存。"""

    def __init__(
        self,
        max_size: int = 10_000,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError(f"max_size 必须 ≥ 1，收到 {max_size}")
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (value, self._clock())

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def purge_expired(self) -> int:
        """清除所有过期条目，返回清除数量。"""
        now = self._clock()
        expired = [
            k for k, (_, stored_at) in self._entries.items()
            if now - stored_at > self._ttl
        ]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# 缓存管理器 / Cache manager
# =============================================================================


class CacheManager:
    """文本生成与向量两个命名空间的缓存，并统计命中率。

    get_or_create() 按键串行化，同一个键的并发未命中只触发一次后端调用。
    """

    def __init__(
        self,
        llm_max_size: int = 5000,
        embedding_max_size: int = 10_000,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._caches: Dict[str, MemoryCache] = {
            LLM_NAMESPACE: MemoryCache(llm_max_size, ttl_seconds, clock),
            EMBEDDING_NAMESPACE: MemoryCache(embedding_max_size, ttl_seconds, clock),
        }
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self.hits = 0
        self.misses = 0

    def _cache(self, namespace: str) -> MemoryCache:
        try:
            return self._caches[namespace]
        except KeyError:
            raise ValueError(f"未知缓存命名空间: '{namespace}'") from None

    def get(self, namespace: str, key: str) -> Optional[Any]:
        value = self._cache(namespace).get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
            logger.debug("缓存命中: %s/%s", namespace, key[:12])
        return value

    def set(self, namespace: str, key: str, value: Any) -> None:
        self._cache(namespace).set(key, value)

    def get_llm_response(self, key: str) -> Optional[Any]:
        return self.get(LLM_NAMESPACE, key)

    def cache_llm_response(self, key: str, value: Any) -> None:
        self.set(LLM_NAMESPACE, key, value)

    def get_embedding(self, key: str) -> Optional[Any]:
        return self.get(EMBEDDING_NAMESPACE, key)

    def cache_embedding(self, key: str, value: Any) -> None:
        self.set(EMBEDDING_NAMESPACE, key, value)

    async def get_or_create(
        self,
        namespace: str,
        key: str,
        factory: Callable[[], Awaitable[Any]],
    ) -> Tuple[Any, bool]:
        """命中则返回缓存值，否则调用 factory 并写入缓存。

        Returns:
            (value, hit)。factory 抛出的异常原样上抛，不写入缓存。
        """
        lock_key = (namespace, key)
        lock = self._locks.setdefault(lock_key, asyncio.Lock())
        try:
            async with lock:
                value = self.get(namespace, key)
                if value is not None:
                    return value, True
                value = await factory()
                self.set(namespace, key, value)
                return value, False
        finally:
            if not lock.locked():
                self._locks.pop(lock_key, None)

    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total > 0 else 0.0,
            "llm_size": self._caches[LLM_NAMESPACE].size,
            "embedding_size": self._caches[EMBEDDING_NAMESPACE].size,
        }

    def purge_expired(self) -> int:
        """TTL 清扫，返回清除的条目总数。"""
        removed = sum(c.purge_expired() for c in self._caches.values())
        if removed:
            logger.info("缓存 TTL 清扫: 清除 %d 条过期条目", removed)
        return removed

    def clear(self) -> None:
        for c in self._caches.values():
            c.clear()
        self.hits = 0
        self.misses = 0
