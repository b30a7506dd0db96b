"""Quota-enforced archive of analyzed articles in blob storage.

Every operation checks the monthly quota before touching storage and
updates the counters only after storage succeeded.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Callable

from threatintel.models import AnalysisResult, Article, ArchivedArticle
from threatintel.storage.blob import BaseBlobStore, ListResult
from threatintel.storage.quota import ArchiveError, QuotaExceededError, QuotaTracker

logger = logging.getLogger(__name__)

MAX_ARCHIVE_SIZE_BYTES = 200 * 1024
BYTES_PER_GB = 1024 ** 3
CONTENT_TYPE = "application/json"


class ArchiveDisabledError(ArchiveError):
    """Archiving is switched off in configuration."""


class ArchiveSizeError(ArchiveError):
    """The serialized article is larger than the per-article ceiling."""

    def __init__(self, article_id: str, size_bytes: int, max_bytes: int):
        super().__init__(
            f"Article {article_id} exceeds max archive size "
            f"({max_bytes} bytes): {size_bytes} bytes"
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generate_archive_key(article_id: str, published_at: datetime, prefix: str = "threats") -> str:
    """``{prefix}/{year}/{month}/{article_id}.json`` from the publish date."""
    published = _as_utc(published_at)
    return f"{prefix}/{published.year}/{published.month:02d}/{article_id}.json"


class ArchiveStore:
    """Write, read, delete and list archived articles within quota."""

    def __init__(
        self,
        blob: BaseBlobStore,
        quota: QuotaTracker,
        max_size_bytes: int = MAX_ARCHIVE_SIZE_BYTES,
        prefix: str = "threats",
        enabled: bool = True,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.blob = blob
        self.quota = quota
        self.max_size_bytes = max_size_bytes
        self.prefix = prefix
        self.enabled = enabled
        self._clock = clock

    def _serialize(
        self,
        article: Article,
        analysis: AnalysisResult | dict | None,
        iocs: list[dict] | None,
    ) -> tuple[ArchivedArticle, bytes]:
        if isinstance(analysis, AnalysisResult):
            analysis = analysis.to_dict()

        snapshot = ArchivedArticle(
            id=article.id,
            title=article.title,
            content=article.content or "",
            url=article.url,
            published_at=_as_utc(article.published_at).isoformat(),
            source=article.source,
            archived_at=self._clock().isoformat(),
            analysis=analysis,
            iocs=list(iocs or []),
            metadata={
                "source": article.source,
                "original_url": article.url,
                "size_bytes": 0,
                "category": (analysis or {}).get("category"),
                "severity": (analysis or {}).get("severity"),
            },
        )
        data = json.dumps(snapshot.to_dict(), indent=2).encode("utf-8")
        snapshot.metadata["size_bytes"] = len(data)
        return snapshot, data

    async def archive(
        self,
        article: Article,
        analysis: AnalysisResult | dict | None = None,
        iocs: list[dict] | None = None,
    ) -> str:
        """Archive an article and return its key.

        Raises ArchiveDisabledError, ArchiveSizeError (before any quota or
        storage call) or QuotaExceededError.
        """
        if not self.enabled:
            raise ArchiveDisabledError("Archiving is disabled")

        snapshot, data = self._serialize(article, analysis, iocs)
        size_bytes = len(data)
        if size_bytes > self.max_size_bytes:
            logger.warning(
                "Article %s too large to archive: %d bytes", article.id, size_bytes,
            )
            raise ArchiveSizeError(article.id, size_bytes, self.max_size_bytes)

        size_gb = size_bytes / BYTES_PER_GB
        check = await self.quota.check("write", size_gb=size_gb)
        if not check.allowed:
            logger.error("Quota exceeded, cannot archive %s: %s", article.id, check.reason)
            self.quota.log_warning(check.usage)
            raise QuotaExceededError(check.reason, check.usage)

        key = generate_archive_key(article.id, article.published_at, self.prefix)
        await self.blob.put(
            key,
            data,
            content_type=CONTENT_TYPE,
            metadata={
                "threatId": article.id,
                "category": snapshot.metadata["category"] or "unknown",
                "severity": snapshot.metadata["severity"] or "unknown",
                "archivedAt": snapshot.archived_at,
            },
        )
        usage = await self.quota.update_usage(
            storage_gb=size_gb, class_a_ops=1, articles_archived=1,
        )
        self.quota.log_warning(usage)

        logger.info("Archived %s to %s (%d bytes)", article.id, key, size_bytes)
        return key

    async def retrieve(self, key: str) -> ArchivedArticle | None:
        """Read an archived article; None when the key does not exist."""
        check = await self.quota.check("read")
        if not check.allowed:
            logger.error("Quota exceeded, cannot retrieve %s: %s", key, check.reason)
            self.quota.log_warning(check.usage)
            raise QuotaExceededError(check.reason, check.usage)

        data = await self.blob.get(key)
        await self.quota.update_usage(class_b_ops=1)
        if data is None:
            return None
        return ArchivedArticle.from_dict(json.loads(data))

    async def delete(self, key: str) -> None:
        """Delete an archived article. Missing keys are not an error."""
        check = await self.quota.check("write")
        if not check.allowed:
            logger.error("Quota exceeded, cannot delete %s: %s", key, check.reason)
            self.quota.log_warning(check.usage)
            raise QuotaExceededError(check.reason, check.usage)

        data = await self.blob.get(key)
        await self.blob.delete(key)

        if data is None:
            logger.debug("Deleted missing archive key %s", key)
            return

        size_bytes = len(data)
        await self.quota.update_usage(
            storage_gb=-(size_bytes / BYTES_PER_GB),
            class_a_ops=1,
            articles_archived=-1,
        )
        logger.info("Deleted archived article %s (freed %d bytes)", key, size_bytes)

    async def list(self, prefix: str | None = None, limit: int = 1000) -> ListResult:
        """List archive keys; counts as one class A operation."""
        check = await self.quota.check("write")
        if not check.allowed:
            logger.error("Quota exceeded, cannot list archive: %s", check.reason)
            self.quota.log_warning(check.usage)
            raise QuotaExceededError(check.reason, check.usage)

        result = await self.blob.list(prefix=prefix or f"{self.prefix}/", limit=limit)
        await self.quota.update_usage(class_a_ops=1)
        return result

    async def stats(self) -> dict:
        usage = await self.quota.get_usage()
        return self.quota.status(usage)
