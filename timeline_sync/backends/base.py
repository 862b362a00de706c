"""
Base protocols and types for the remote collaborators.

This module defines the interfaces the engine talks to:
- DocumentStore: hierarchical document collections with live listeners
- AssetStore: binary asset upload, public reference and delete
- AuthProvider: token/anonymous sign-in and identity change notifications

Invariants:
    - Snapshots are immutable point-in-time views of one collection
    - Listener callbacks are invoked from the event loop, never re-entrantly
      from inside a write call
    - SERVER_TIMESTAMP is resolved by the store, never by the client

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)
import logging

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Base exception for backend operations."""
    pass


class BackendConnectionError(BackendError):
    """Backend could not be reached."""
    pass


class CredentialsError(BackendError):
    """Backend rejected the supplied credentials."""
    pass


class DocumentNotFoundError(BackendError):
    """Document does not exist."""
    pass


class AssetNotFoundError(BackendError):
    """Asset does not exist."""
    pass


class _ServerTimestamp:
    """Placeholder resolved to the store's clock when a write is applied."""

    _instance: Optional[_ServerTimestamp] = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class DocumentSnapshot:
    """A single document as read from a collection.

    Attributes:
        id: Document identifier, unique within its collection
        data: Field values
    """
    id: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CollectionSnapshot:
    """Point-in-time contents of a collection.

    Attributes:
        path: Collection path
        documents: Documents in store order
    """
    path: str
    documents: Tuple[DocumentSnapshot, ...] = ()

    def __len__(self) -> int:
        return len(self.documents)

    def __str__(self) -> str:
        return f"CollectionSnapshot(path={self.path}, size={len(self.documents)})"


@dataclass(frozen=True)
class AssetHandle:
    """Reference to an uploaded asset.

    Attributes:
        path: Object path within the asset store
        size: Uploaded size in bytes
        content_type: Optional MIME type
    """
    path: str
    size: int
    content_type: Optional[str] = None


SnapshotCallback = Callable[[CollectionSnapshot], None]
ErrorCallback = Callable[[Exception], None]
IdentityCallback = Callable[[Optional[str]], None]


@runtime_checkable
class ListenerRegistration(Protocol):
    """Handle returned by DocumentStore.listen()."""

    def remove(self) -> None:
        """Detach the listener. Safe to call more than once."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for remote document stores.

    Paths are slash-separated and alternate collection/document segments,
    e.g. /artifacts/app/users/u1/entries/e1/notes.

    Delivery contract:
        - listen() delivers the initial snapshot and one snapshot per change
          to the listened collection; changes to sub-collections of its
          documents are NOT changes to the collection itself
        - on_error is invoked at most once; no snapshots follow it
    """

    @abstractmethod
    def listen(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> ListenerRegistration:
        """Attach a live listener to a collection.

        Must be called from a running event loop.
        """
        ...

    @abstractmethod
    async def get_collection(self, path: str) -> CollectionSnapshot:
        """Read the current contents of a collection once.

        Raises:
            BackendError: If the read fails
        """
        ...

    @abstractmethod
    async def add_document(self, path: str, data: Dict[str, Any]) -> str:
        """Create a document with a store-assigned id.

        Returns:
            The new document id
        """
        ...

    @abstractmethod
    async def update_document(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        ...

    @abstractmethod
    async def delete_document(self, path: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        ...


@runtime_checkable
class AssetStore(Protocol):
    """Protocol for binary asset stores."""

    @abstractmethod
    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> AssetHandle:
        """Store bytes at path, replacing any existing object."""
        ...

    @abstractmethod
    async def public_url(self, handle: AssetHandle) -> str:
        """Resolve a URL the presentation layer can load the asset from."""
        ...

    @abstractmethod
    async def delete(self, ref: str) -> None:
        """Delete an asset by public URL or object path.

        Raises:
            AssetNotFoundError: If nothing is stored under ref
        """
        ...


@runtime_checkable
class AuthProvider(Protocol):
    """Protocol for identity providers."""

    @abstractmethod
    async def sign_in_with_token(self, token: str) -> str:
        """Sign in with an externally issued token.

        Returns:
            The stable user id

        Raises:
            CredentialsError: If the token is rejected
        """
        ...

    @abstractmethod
    async def sign_in_anonymously(self) -> str:
        """Create or resume an anonymous identity.

        Returns:
            The stable user id
        """
        ...

    @abstractmethod
    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        """Register for identity changes (uid, or None after sign-out).

        Returns:
            Function that unregisters the callback
        """
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        """Drop the current identity."""
        ...
