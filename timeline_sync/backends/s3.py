"""
S3 asset store over aiobotocore.

Assets are stored as objects keyed by their asset path. Public references
are either `s3_public_base_url` + key (for buckets served through a CDN or
public endpoint) or presigned GET URLs.

Invariants:
    - connect() must be called before any other operation
    - delete() accepts the public reference or the bare key
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote, unquote, urlparse

from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from ..config import Settings
from .base import AssetHandle, AssetNotFoundError, BackendConnectionError

logger = logging.getLogger(__name__)


class S3AssetStore:
    """AssetStore backed by an S3 bucket.

    Example:
        >>> store = S3AssetStore("timeline-assets", public_base_url="https://cdn.example.com")
        >>> await store.connect()
        >>> handle = await store.upload("images/u1/1700000000000_a.png", data)
        >>> url = await store.public_url(handle)
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        public_base_url: Optional[str] = None,
        url_expires_seconds: int = 7 * 24 * 3600,
        client: Any = None,
    ) -> None:
        """Initialize the store.

        Args:
            bucket: Bucket name
            region: AWS region
            endpoint_url: Custom endpoint URL (for MinIO)
            public_base_url: URL prefix objects are publicly served under
            url_expires_seconds: Lifetime of presigned URLs
            client: Already-open S3 client (skips connect())
        """
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.url_expires_seconds = url_expires_seconds
        self._client = client
        self._client_ctx: Any = None

    @classmethod
    def from_settings(cls, settings: Settings) -> S3AssetStore:
        if not settings.s3_bucket:
            raise ValueError("TIMELINE_S3_BUCKET is required when asset_backend=s3")
        return cls(
            settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            public_base_url=settings.s3_public_base_url,
        )

    async def connect(self) -> None:
        """Open the S3 client."""
        if self._client is not None:
            return

        client_kwargs: Dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url

        self._client_ctx = get_session().create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()
        logger.info("S3 asset store connected", extra={"bucket": self.bucket})

    async def close(self) -> None:
        """Close the S3 client if this store opened it."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client_ctx = None
            self._client = None

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> AssetHandle:
        client = self._require_client()
        await client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type or "application/octet-stream",
        )
        logger.debug("Asset uploaded", extra={"key": path, "size_bytes": len(data)})
        return AssetHandle(path=path, size=len(data), content_type=content_type)

    async def public_url(self, handle: AssetHandle) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(handle.path)}"
        client = self._require_client()
        return await client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": handle.path},
            ExpiresIn=self.url_expires_seconds,
        )

    async def delete(self, ref: str) -> None:
        client = self._require_client()
        key = self.key_for(ref)
        try:
            await client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                raise AssetNotFoundError(f"No asset at {ref}") from e
            raise
        await client.delete_object(Bucket=self.bucket, Key=key)
        logger.debug("Asset deleted", extra={"key": key})

    def key_for(self, ref: str) -> str:
        """Object key for a public reference or bare key."""
        if self.public_base_url and ref.startswith(self.public_base_url + "/"):
            return unquote(ref[len(self.public_base_url) + 1:])

        parsed = urlparse(ref)
        if parsed.scheme not in ("http", "https"):
            return ref

        key = unquote(parsed.path.lstrip("/"))
        # Path-style URLs carry the bucket as the first segment.
        if key.startswith(self.bucket + "/") and not parsed.netloc.startswith(self.bucket + "."):
            key = key[len(self.bucket) + 1:]
        return key

    def _require_client(self) -> Any:
        if self._client is None:
            raise BackendConnectionError("S3 asset store is not connected")
        return self._client
