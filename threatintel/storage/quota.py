"""Monthly archive quota tracking and enforcement.

The provider bills storage, class A operations (writes, lists, deletes) and
class B operations (reads) past a free allowance. Limits default to 80% of
that allowance:

* storage: 8 GB of 10 GB
* class A: 800K of 1M per month
* class B: 8M of 10M per month

Usage lives in the key-value store under ``r2:usage:YYYY-MM`` and is created
lazily each month with a TTL past month end.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from threatintel.models import QuotaUsage
from threatintel.storage.kv import BaseKVStore

logger = logging.getLogger(__name__)

USAGE_TTL_SECONDS = 60 * 60 * 24 * 32
FREE_TIER = {"storage_gb": 10, "class_a_ops": 1_000_000, "class_b_ops": 10_000_000}


class ArchiveError(Exception):
    """Base for archive policy rejections."""


class QuotaExceededError(ArchiveError):
    """An archive operation would exceed a monthly ceiling."""

    def __init__(self, reason: str, usage: QuotaUsage | None = None):
        super().__init__(reason)
        self.reason = reason
        self.usage = usage


@dataclass(frozen=True)
class QuotaLimits:
    storage_gb: float = 8.0
    class_a_ops: int = 800_000
    class_b_ops: int = 8_000_000
    warning_threshold: float = 0.7
    critical_threshold: float = 0.8

    @classmethod
    def from_config(cls, limits: dict) -> QuotaLimits:
        return cls(**limits)


@dataclass
class QuotaCheck:
    allowed: bool
    usage: QuotaUsage
    reason: str = ""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaTracker:
    """Read, check and update the current month's usage record."""

    def __init__(
        self,
        kv: BaseKVStore,
        limits: QuotaLimits | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.kv = kv
        self.limits = limits or QuotaLimits()
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def current_month(self) -> str:
        return self._clock().astimezone(timezone.utc).strftime("%Y-%m")

    def usage_key(self, month: str | None = None) -> str:
        return f"r2:usage:{month or self.current_month()}"

    def _lock(self, key: str) -> asyncio.Lock:
        # One writer per month key within this process
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def get_usage(self) -> QuotaUsage:
        key = self.usage_key()
        cached = await self.kv.get(key)
        if cached:
            return QuotaUsage.from_dict(cached)

        usage = QuotaUsage(
            month=self.current_month(),
            last_updated=self._clock().isoformat(),
        )
        await self.kv.put(key, usage.to_dict(), ttl_seconds=USAGE_TTL_SECONDS)
        return usage

    def compute_status(self, usage: QuotaUsage) -> str:
        max_ratio = max(
            usage.storage_gb / self.limits.storage_gb,
            usage.class_a_ops / self.limits.class_a_ops,
            usage.class_b_ops / self.limits.class_b_ops,
        )
        if max_ratio >= self.limits.critical_threshold:
            return "critical"
        if max_ratio >= self.limits.warning_threshold:
            return "warning"
        return "healthy"

    async def update_usage(
        self,
        storage_gb: float = 0.0,
        class_a_ops: int = 0,
        class_b_ops: int = 0,
        articles_archived: int = 0,
    ) -> QuotaUsage:
        """Apply deltas to the whole record and write it back."""
        key = self.usage_key()
        async with self._lock(key):
            usage = await self.get_usage()
            usage.storage_gb = max(0.0, usage.storage_gb + storage_gb)
            usage.class_a_ops += class_a_ops
            usage.class_b_ops += class_b_ops
            usage.articles_archived = max(0, usage.articles_archived + articles_archived)
            usage.last_updated = self._clock().isoformat()
            usage.status = self.compute_status(usage)
            await self.kv.put(key, usage.to_dict(), ttl_seconds=USAGE_TTL_SECONDS)
        return usage

    async def check(self, operation: str, size_gb: float = 0.0) -> QuotaCheck:
        """Can ``operation`` ('write' or 'read') run without crossing a ceiling?

        Writes are checked against storage and class A; lists and deletes
        use 'write' too since they bill as class A.
        """
        if operation not in ("write", "read"):
            raise ValueError(f"Unknown quota operation: {operation}")

        usage = await self.get_usage()
        limits = self.limits

        if operation == "write":
            if size_gb and usage.storage_gb + size_gb >= limits.storage_gb:
                return QuotaCheck(False, usage, (
                    f"Storage quota exceeded: {usage.storage_gb:.2f}GB / "
                    f"{limits.storage_gb:g}GB. Cannot add {size_gb:.3f}GB."
                ))
            if usage.class_a_ops >= limits.class_a_ops:
                return QuotaCheck(False, usage, (
                    f"Class A operations quota exceeded: "
                    f"{usage.class_a_ops} / {limits.class_a_ops}"
                ))
        elif usage.class_b_ops >= limits.class_b_ops:
            return QuotaCheck(False, usage, (
                f"Class B operations quota exceeded: "
                f"{usage.class_b_ops} / {limits.class_b_ops}"
            ))

        return QuotaCheck(True, usage)

    def log_warning(self, usage: QuotaUsage) -> None:
        """Log at warning/critical level when usage is past a threshold."""
        limits = self.limits
        if usage.status == "critical":
            logger.error(
                "Archive quota CRITICAL: storage %.3f/%gGB (%.1f%%), "
                "class A %d/%d (%.1f%%), class B %d/%d (%.1f%%)",
                usage.storage_gb, limits.storage_gb,
                usage.storage_gb / limits.storage_gb * 100,
                usage.class_a_ops, limits.class_a_ops,
                usage.class_a_ops / limits.class_a_ops * 100,
                usage.class_b_ops, limits.class_b_ops,
                usage.class_b_ops / limits.class_b_ops * 100,
            )
        elif usage.status == "warning":
            logger.warning(
                "Archive quota WARNING: storage %.3f/%gGB, class A %d/%d, class B %d/%d",
                usage.storage_gb, limits.storage_gb,
                usage.class_a_ops, limits.class_a_ops,
                usage.class_b_ops, limits.class_b_ops,
            )

    def status(self, usage: QuotaUsage) -> dict:
        """Dashboard view of a usage record."""
        limits = self.limits

        def _entry(current: float, limit: float, free_tier: float) -> dict:
            return {
                "current": current,
                "limit": limit,
                "free_tier": free_tier,
                "percent": round(current / limit * 100, 1),
            }

        return {
            "storage": _entry(usage.storage_gb, limits.storage_gb, FREE_TIER["storage_gb"]),
            "class_a": _entry(usage.class_a_ops, limits.class_a_ops, FREE_TIER["class_a_ops"]),
            "class_b": _entry(usage.class_b_ops, limits.class_b_ops, FREE_TIER["class_b_ops"]),
            "articles_archived": usage.articles_archived,
            "status": usage.status,
            "month": usage.month,
            "last_updated": usage.last_updated,
        }
