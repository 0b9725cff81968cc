# cache.py
# =============================================================================
# 评估缓存 / Evaluation cache
#
# 职责 / Responsibilities:
#   - 以规范化输入（+ 可选 tag）的 sha256 为键缓存完整结果，带 TTL
#     / Cache whole results by sha256 of the canonical input (+ optional tag), with a TTL
#   - 并发的相同请求合并到同一个计算（in-flight coalescing）
#     / Coalesce concurrent identical requests onto one computation
#   - 写入整条替换，从不原地修改 / Writes replace the whole entry, never mutate
#   - 后端异常只记录日志并降级为直接计算
#     / Backend errors are logged and degrade to direct computation
# =============================================================================

"""TTL cache with in-flight request coalescing."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float


class MemoryCacheBackend:
    """进程内缓存后端，超出容量时淘汰最早写入的条目。

    / In-process backend; evicts the oldest entry when full.
    """

    def __init__(self, max_entries: int = 50):
        self._max_entries = max_entries
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self._entries.pop(key, None)
        if self._max_entries > 0 and len(self._entries) >= self._max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].created_at)
            del self._entries[oldest]
        self._entries[key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def canonical_key(kind: str, payload: Any, tag: Optional[str] = None) -> str:
    """Stable key: kind plus sha256 of sorted, compact JSON."""
    body = json.dumps(
        {"kind": kind, "payload": payload, "tag": tag or ""},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return f"{kind}:{hashlib.sha256(body.encode('utf-8')).hexdigest()}"


def _consume_exception(task: asyncio.Task) -> None:
    # 所有调用方都已离开时也标记异常已读取 / mark retrieved even when every caller left
    if not task.cancelled():
        task.exception()


class EvaluationCache:
    """评估结果缓存（TTL + 并发合并）。 / Result cache with TTL and coalescing."""

    def __init__(
        self,
        ttl: float = 600.0,
        max_entries: int = 50,
        backend: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl
        self._backend = backend if backend is not None else MemoryCacheBackend(max_entries)
        self._clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "coalesced": 0,
            "backend_errors": 0,
        }

    async def get_or_compute(
        self,
        kind: str,
        payload: Any,
        compute: Callable[[], Awaitable[Any]],
        tag: Optional[str] = None,
    ) -> Any:
        """命中则原样返回缓存值，否则计算并写入。

        / Return the cached value unchanged on a hit; otherwise compute and store.
        Failures are never cached and propagate to every coalesced waiter.
        """
        key = canonical_key(kind, payload, tag)

        entry = self._read(key)
        if entry is not None:
            self._stats["hits"] += 1
            logger.debug("Cache hit: %s", key)
            return entry.value

        pending = self._inflight.get(key)
        if pending is not None:
            self._stats["coalesced"] += 1
            logger.debug("Coalescing onto in-flight computation: %s", key)
            return await asyncio.shield(pending)

        self._stats["misses"] += 1
        # 计算与发起者解耦：取消某个调用方不会取消共享计算
        # / The computation is detached: cancelling one caller never cancels it for the rest
        task = asyncio.ensure_future(self._compute_and_store(key, compute))
        task.add_done_callback(_consume_exception)
        self._inflight[key] = task
        return await asyncio.shield(task)

    async def _compute_and_store(
        self, key: str, compute: Callable[[], Awaitable[Any]]
    ) -> Any:
        try:
            value = await compute()
            self._write(key, value)
            return value
        finally:
            self._inflight.pop(key, None)

    def invalidate(self, kind: str, payload: Any, tag: Optional[str] = None) -> None:
        key = canonical_key(kind, payload, tag)
        try:
            self._backend.delete(key)
        except Exception as exc:
            self._backend_error("delete", key, exc)

    def clear(self) -> None:
        try:
            self._backend.clear()
        except Exception as exc:
            self._backend_error("clear", "*", exc)

    def stats(self) -> Dict[str, int]:
        data = dict(self._stats)
        data["in_flight"] = len(self._inflight)
        try:
            data["size"] = len(self._backend)
        except TypeError:
            data["size"] = -1
        return data

    # ---- Internal methods ----

    def _read(self, key: str) -> Optional[CacheEntry]:
        try:
            entry = self._backend.get(key)
        except Exception as exc:
            self._backend_error("get", key, exc)
            return None
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            try:
                self._backend.delete(key)
            except Exception as exc:
                self._backend_error("delete", key, exc)
            return None
        return entry

    def _write(self, key: str, value: Any) -> None:
        now = self._clock()
        entry = CacheEntry(value=value, created_at=now, expires_at=now + self._ttl)
        try:
            self._backend.set(key, entry)
        except Exception as exc:
            self._backend_error("set", key, exc)

    def _backend_error(self, operation: str, key: str, exc: Exception) -> None:
        self._stats["backend_errors"] += 1
        logger.warning(
            "Cache backend %s failed for %s, computing directly: %s",
            operation,
            key,
            exc,
        )
