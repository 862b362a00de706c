"""
Explicit engine context.

EngineContext bundles the shared clients (document store, asset store,
auth provider), the settings and the retry policy. It is built once by
the composition root and handed to every component; nothing is created
at import time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Awaitable, Callable, List, Optional

from .backends.base import AssetStore, AuthProvider, DocumentStore
from .backends.memory import InMemoryAssetStore, InMemoryAuthProvider, InMemoryDocumentStore
from .config import Settings
from .models import Identity, entries_path, notes_path
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    """Shared collaborators for one engine instance.

    Attributes:
        settings: Engine configuration
        documents: Remote document store
        assets: Binary asset store
        auth: Auth provider
        retry: Retry policy applied to every remote write
    """

    settings: Settings
    documents: DocumentStore
    assets: AssetStore
    auth: AuthProvider
    retry: RetryPolicy
    _closers: List[Callable[[], Awaitable[None]]] = field(default_factory=list, repr=False)

    @classmethod
    def in_memory(
        cls,
        settings: Optional[Settings] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> EngineContext:
        """Build a context over in-memory backends.

        Args:
            settings: Configuration (defaults when None)
            sleep: Sleep used by the retry policy
        """
        settings = settings or Settings()
        return cls(
            settings=settings,
            documents=InMemoryDocumentStore(),
            assets=InMemoryAssetStore(),
            auth=InMemoryAuthProvider(),
            retry=RetryPolicy(
                settings.retry_max_attempts,
                settings.retry_initial_delay_ms,
                sleep=sleep,
            ),
        )

    @classmethod
    async def from_settings(cls, settings: Settings) -> EngineContext:
        """Build a context over the backends selected in settings."""
        closers: List[Callable[[], Awaitable[None]]] = []

        documents: DocumentStore
        auth: AuthProvider
        assets: AssetStore
        try:
            if settings.document_backend == "http":
                from .backends.http import HttpAuthProvider, HttpDocumentStore, HttpTransport

                if not settings.http_base_url:
                    raise ValueError(
                        "TIMELINE_HTTP_BASE_URL is required when document_backend=http"
                    )
                transport = HttpTransport(settings.http_base_url, timeout=settings.http_timeout)
                closers.append(transport.close)
                documents = HttpDocumentStore(transport, poll_interval=settings.http_poll_interval)
                closers.append(documents.close)
                auth = HttpAuthProvider(transport)
            else:
                documents = InMemoryDocumentStore()
                auth = InMemoryAuthProvider()

            if settings.asset_backend == "s3":
                from .backends.s3 import S3AssetStore

                s3_store = S3AssetStore.from_settings(settings)
                await s3_store.connect()
                closers.append(s3_store.close)
                assets = s3_store
            else:
                assets = InMemoryAssetStore()
        except BaseException:
            logger.error("Engine context creation failed; releasing opened backends")
            await _close_all(closers)
            raise

        logger.info(
            "Engine context created",
            extra={
                "document_backend": settings.document_backend,
                "asset_backend": settings.asset_backend,
            },
        )
        return cls(
            settings=settings,
            documents=documents,
            assets=assets,
            auth=auth,
            retry=RetryPolicy(settings.retry_max_attempts, settings.retry_initial_delay_ms),
            _closers=closers,
        )

    def entries_path(self, identity: Identity) -> str:
        return entries_path(self.settings.namespace, self.settings.app_scope, identity)

    def notes_path(self, identity: Identity, entry_id: str) -> str:
        return notes_path(self.settings.namespace, self.settings.app_scope, identity, entry_id)

    def asset_path(self, identity: Identity, filename: str, timestamp_ms: int) -> str:
        """Object path for a new asset: {prefix}/{uid}/{timestamp_ms}_{name}."""
        name = PurePosixPath(filename.replace("\\", "/")).name or "asset"
        return f"{self.settings.asset_prefix}/{identity.uid}/{timestamp_ms}_{name}"

    async def aclose(self) -> None:
        """Release backend resources, most recently opened first."""
        await _close_all(self._closers)


async def _close_all(closers: List[Callable[[], Awaitable[None]]]) -> None:
    while closers:
        closer = closers.pop()
        await closer()
