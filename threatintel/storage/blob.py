"""Blob storage: abstract interface and a Google Cloud Storage backend."""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from urllib.parse import quote

import httpx

from threatintel.retry import retry_async

logger = logging.getLogger(__name__)

_METADATA_TOKEN_URL = (
    "http://metadata.google.internal/computeMetadata/v1/"
    "instance/service-accounts/default/token"
)
_GCS_API = "https://storage.googleapis.com/storage/v1/b/{bucket}/o"
_GCS_UPLOAD = "https://storage.googleapis.com/upload/storage/v1/b/{bucket}/o"


@dataclass
class ListResult:
    keys: list[str] = field(default_factory=list)
    truncated: bool = False


class BaseBlobStore(ABC):
    """Put/get/delete/list of byte objects by key."""

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Object bytes, or None when the key does not exist."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete ``key``; deleting a missing key is not an error."""
        ...

    @abstractmethod
    async def list(self, prefix: str | None = None, limit: int = 1000) -> ListResult:
        ...


async def _get_access_token() -> str:
    """Access token from the GCE metadata server."""
    async with httpx.AsyncClient(timeout=5) as client:
        resp = await client.get(
            _METADATA_TOKEN_URL,
            headers={"Metadata-Flavor": "Google"},
        )
        resp.raise_for_status()
        return resp.json()["access_token"]


class GCSBlobStore(BaseBlobStore):
    """GCS JSON API backend.

    Uses ``access_token`` when given, otherwise asks the metadata server on
    each call (tokens are short-lived and the server caches them).
    """

    def __init__(
        self,
        bucket: str,
        access_token: str = "",
        timeout: int = 30,
        max_retries: int = 3,
    ):
        if not bucket:
            raise ValueError("GCS bucket is not configured")
        self.bucket = bucket
        self.access_token = access_token
        self.timeout = timeout
        self.max_retries = max_retries

    async def _headers(self) -> dict[str, str]:
        token = self.access_token or await _get_access_token()
        return {"Authorization": f"Bearer {token}"}

    def _object_url(self, key: str) -> str:
        bucket = quote(self.bucket, safe="")
        return f"{_GCS_API.format(bucket=bucket)}/{quote(key, safe='')}"

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> None:
        await retry_async(
            self._do_put, key, data, content_type, metadata or {},
            max_retries=self.max_retries,
        )
        logger.debug("Uploaded %s to gs://%s (%d bytes)", key, self.bucket, len(data))

    async def _do_put(
        self, key: str, data: bytes, content_type: str, metadata: dict[str, str],
    ) -> None:
        # multipart/related upload carries the custom metadata with the bytes
        boundary = f"==={uuid.uuid4().hex}==="
        resource = json.dumps({
            "name": key,
            "contentType": content_type,
            "metadata": metadata,
        })
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{resource}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {content_type}\r\n\r\n"
        ).encode() + data + f"\r\n--{boundary}--\r\n".encode()

        headers = await self._headers()
        headers["Content-Type"] = f"multipart/related; boundary={boundary}"
        upload_url = _GCS_UPLOAD.format(bucket=quote(self.bucket, safe=""))

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                upload_url,
                params={"uploadType": "multipart"},
                content=body,
                headers=headers,
            )
            resp.raise_for_status()

    async def get(self, key: str) -> bytes | None:
        return await retry_async(self._do_get, key, max_retries=self.max_retries)

    async def _do_get(self, key: str) -> bytes | None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(
                self._object_url(key),
                params={"alt": "media"},
                headers=await self._headers(),
            )
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.content

    async def delete(self, key: str) -> None:
        await retry_async(self._do_delete, key, max_retries=self.max_retries)

    async def _do_delete(self, key: str) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.delete(self._object_url(key), headers=await self._headers())
            if resp.status_code == 404:
                return
            resp.raise_for_status()

    async def list(self, prefix: str | None = None, limit: int = 1000) -> ListResult:
        return await retry_async(self._do_list, prefix, limit, max_retries=self.max_retries)

    async def _do_list(self, prefix: str | None, limit: int) -> ListResult:
        params: dict[str, str | int] = {"maxResults": limit, "fields": "items(name),nextPageToken"}
        if prefix:
            params["prefix"] = prefix

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(
                _GCS_API.format(bucket=quote(self.bucket, safe="")),
                params=params,
                headers=await self._headers(),
            )
            resp.raise_for_status()
            data = resp.json()

        return ListResult(
            keys=[item["name"] for item in data.get("items", [])],
            truncated=bool(data.get("nextPageToken")),
        )
