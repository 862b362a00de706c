"""
Backends for the remote collaborators.

This module provides:
- Protocols: DocumentStore, AssetStore, AuthProvider (base.py)
- In-memory implementations for tests and local development (memory.py)
- REST document store and auth over httpx (http.py)
- S3 asset store over aiobotocore (s3.py)

The http and s3 modules import their client libraries at module level and
are loaded on demand by EngineContext.from_settings().
"""

from .base import (
    SERVER_TIMESTAMP,
    AssetHandle,
    AssetNotFoundError,
    AssetStore,
    AuthProvider,
    BackendConnectionError,
    BackendError,
    CollectionSnapshot,
    CredentialsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    DocumentStore,
    ListenerRegistration,
)
from .memory import InMemoryAssetStore, InMemoryAuthProvider, InMemoryDocumentStore

__all__ = [
    # Protocols
    "DocumentStore",
    "AssetStore",
    "AuthProvider",
    "ListenerRegistration",
    # Types
    "SERVER_TIMESTAMP",
    "AssetHandle",
    "CollectionSnapshot",
    "DocumentSnapshot",
    # Errors
    "BackendError",
    "BackendConnectionError",
    "CredentialsError",
    "DocumentNotFoundError",
    "AssetNotFoundError",
    # In-memory
    "InMemoryDocumentStore",
    "InMemoryAssetStore",
    "InMemoryAuthProvider",
]
