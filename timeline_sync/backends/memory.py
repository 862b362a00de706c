"""
In-memory backend implementations for testing.

This module provides in-memory versions of every remote collaborator for:
- Unit tests
- Integration tests
- Local development without external services

Invariants:
    - All data is lost on process exit
    - Listeners only see writes to the exact collection they listen on
    - Server timestamps are strictly increasing
    - Every remote call is recorded in `calls` before it can fail

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interfaces compatible with the protocols in base.py
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import itertools
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote
import logging

from .base import (
    SERVER_TIMESTAMP,
    AssetHandle,
    AssetNotFoundError,
    CollectionSnapshot,
    CredentialsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    ErrorCallback,
    IdentityCallback,
    SnapshotCallback,
)

logger = logging.getLogger(__name__)


def _normalize_path(path: str) -> str:
    return "/" + path.strip("/")


class _FailureInjector:
    """Queue of exceptions to raise from the next calls of an operation."""

    def __init__(self) -> None:
        self._pending: Dict[str, List[Exception]] = defaultdict(list)

    def add(self, operation: str, exc: Exception, times: int) -> None:
        self._pending[operation].extend([exc] * times)

    def check(self, operation: str) -> None:
        pending = self._pending.get(operation)
        if pending:
            raise pending.pop(0)


@dataclass
class _Listener:
    path: str
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback


class _Registration:
    """ListenerRegistration for the in-memory store."""

    def __init__(self, store: InMemoryDocumentStore, listener_id: int) -> None:
        self._store = store
        self._listener_id = listener_id
        self.remove_calls = 0

    def remove(self) -> None:
        self.remove_calls += 1
        self._store._detach(self._listener_id)


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Attributes:
        calls: (operation, path) for every remote call, in call order

    Example:
        >>> store = InMemoryDocumentStore()
        >>> reg = store.listen("/a/entries", print, print)
        >>> await store.add_document("/a/entries", {"title": "x"})
        >>> reg.remove()
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        """Initialize the store.

        Args:
            clock: Returns the current time in epoch milliseconds
        """
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._last_timestamp_ms = 0
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._listeners: Dict[int, _Listener] = {}
        self._listener_ids = itertools.count(1)
        self._failures = _FailureInjector()
        self._lock = asyncio.Lock()
        self.calls: List[Tuple[str, str]] = []

    def listen(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> _Registration:
        """Attach a live listener; the initial snapshot is delivered soon after."""
        path = _normalize_path(path)
        self.calls.append(("listen", path))
        loop = asyncio.get_running_loop()

        listener_id = next(self._listener_ids)
        listener = _Listener(path=path, on_snapshot=on_snapshot, on_error=on_error)
        self._listeners[listener_id] = listener
        registration = _Registration(self, listener_id)

        try:
            self._failures.check("listen")
        except Exception as exc:
            loop.call_soon(self._fail_listener, listener_id, exc)
            return registration

        loop.call_soon(self._deliver, listener_id, self._snapshot(path))
        logger.debug("Listener attached", extra={"path": path, "listener_id": listener_id})
        return registration

    async def get_collection(self, path: str) -> CollectionSnapshot:
        path = _normalize_path(path)
        self.calls.append(("get", path))
        await asyncio.sleep(0)
        self._failures.check("get")
        return self._snapshot(path)

    async def add_document(self, path: str, data: Dict[str, Any]) -> str:
        path = _normalize_path(path)
        self.calls.append(("add", path))
        await asyncio.sleep(0)
        self._failures.check("add")

        async with self._lock:
            doc_id = uuid.uuid4().hex[:20]
            self._collections[path][doc_id] = self._resolve(data)
        self._notify(path)
        return doc_id

    async def update_document(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        path = _normalize_path(path)
        self.calls.append(("update", f"{path}/{doc_id}"))
        await asyncio.sleep(0)
        self._failures.check("update")

        async with self._lock:
            current = self._collections.get(path, {}).get(doc_id)
            if current is None:
                raise DocumentNotFoundError(f"No document {doc_id} in {path}")
            current.update(self._resolve(data))
        self._notify(path)

    async def delete_document(self, path: str, doc_id: str) -> None:
        path = _normalize_path(path)
        self.calls.append(("delete", f"{path}/{doc_id}"))
        await asyncio.sleep(0)
        self._failures.check("delete")

        async with self._lock:
            removed = self._collections.get(path, {}).pop(doc_id, None)
        if removed is not None:
            self._notify(path)

    def _resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        resolved = {}
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                value = self._server_timestamp()
            resolved[key] = value
        return resolved

    def _server_timestamp(self) -> datetime:
        now = max(self._clock(), self._last_timestamp_ms + 1)
        self._last_timestamp_ms = now
        return datetime.fromtimestamp(now / 1000, tz=timezone.utc)

    def _snapshot(self, path: str) -> CollectionSnapshot:
        docs = self._collections.get(path, {})
        return CollectionSnapshot(
            path=path,
            documents=tuple(
                DocumentSnapshot(id=doc_id, data=dict(data)) for doc_id, data in docs.items()
            ),
        )

    def _notify(self, path: str) -> None:
        snapshot = self._snapshot(path)
        loop = asyncio.get_running_loop()
        for listener_id, listener in list(self._listeners.items()):
            if listener.path == path:
                loop.call_soon(self._deliver, listener_id, snapshot)

    def _deliver(self, listener_id: int, snapshot: CollectionSnapshot) -> None:
        listener = self._listeners.get(listener_id)
        if listener is None:
            return
        listener.on_snapshot(snapshot)

    def _fail_listener(self, listener_id: int, exc: Exception) -> None:
        listener = self._listeners.pop(listener_id, None)
        if listener is not None:
            listener.on_error(exc)

    def _detach(self, listener_id: int) -> None:
        if self._listeners.pop(listener_id, None) is not None:
            logger.debug("Listener detached", extra={"listener_id": listener_id})

    # Testing helpers

    def fail_next(self, operation: str, exc: Exception, times: int = 1) -> None:
        """Make the next `times` calls of operation raise exc.

        Operations: listen, get, add, update, delete.
        """
        self._failures.add(operation, exc, times)

    def emit_error(self, path: str, exc: Exception) -> None:
        """Fail every listener on path as if the backend dropped them."""
        path = _normalize_path(path)
        for listener_id, listener in list(self._listeners.items()):
            if listener.path == path:
                self._fail_listener(listener_id, exc)

    def seed(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Insert a document without notifying listeners or recording a call."""
        self._collections[_normalize_path(path)][doc_id] = self._resolve(data)

    def documents(self, path: str) -> List[DocumentSnapshot]:
        """Current documents in a collection."""
        return list(self._snapshot(_normalize_path(path)).documents)

    def listener_count(self, path: Optional[str] = None) -> int:
        """Number of attached listeners, optionally for one path."""
        if path is None:
            return len(self._listeners)
        path = _normalize_path(path)
        return sum(1 for listener in self._listeners.values() if listener.path == path)

    def calls_for(self, operation: str) -> List[str]:
        """Paths of recorded calls for one operation."""
        return [path for op, path in self.calls if op == operation]


class InMemoryAssetStore:
    """In-memory implementation of AssetStore for testing.

    Public URLs are `base_url` followed by the quoted object path, and
    delete() accepts either form.
    """

    def __init__(self, base_url: str = "memory://assets/") -> None:
        self.base_url = base_url
        self._objects: Dict[str, Tuple[bytes, Optional[str]]] = {}
        self._failures = _FailureInjector()
        self.calls: List[Tuple[str, str]] = []

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> AssetHandle:
        self.calls.append(("upload", path))
        await asyncio.sleep(0)
        self._failures.check("upload")
        self._objects[path] = (bytes(data), content_type)
        return AssetHandle(path=path, size=len(data), content_type=content_type)

    async def public_url(self, handle: AssetHandle) -> str:
        self.calls.append(("public_url", handle.path))
        await asyncio.sleep(0)
        self._failures.check("public_url")
        if handle.path not in self._objects:
            raise AssetNotFoundError(f"No asset at {handle.path}")
        return self.base_url + quote(handle.path)

    async def delete(self, ref: str) -> None:
        self.calls.append(("delete", ref))
        await asyncio.sleep(0)
        self._failures.check("delete")
        path = self._path_for(ref)
        if self._objects.pop(path, None) is None:
            raise AssetNotFoundError(f"No asset at {ref}")

    def _path_for(self, ref: str) -> str:
        if ref.startswith(self.base_url):
            return unquote(ref[len(self.base_url):])
        return ref

    # Testing helpers

    def fail_next(self, operation: str, exc: Exception, times: int = 1) -> None:
        """Make the next `times` calls of operation raise exc.

        Operations: upload, public_url, delete.
        """
        self._failures.add(operation, exc, times)

    def get_bytes(self, ref: str) -> Optional[bytes]:
        stored = self._objects.get(self._path_for(ref))
        return stored[0] if stored else None

    def object_count(self) -> int:
        return len(self._objects)


class InMemoryAuthProvider:
    """In-memory implementation of AuthProvider for testing.

    Tokens must be registered up front; unknown tokens are rejected with
    CredentialsError. Identity changes are announced from the event loop.
    """

    def __init__(self, tokens: Optional[Dict[str, str]] = None) -> None:
        self._tokens: Dict[str, str] = dict(tokens or {})
        self._uid: Optional[str] = None
        self._anonymous = False
        self._callbacks: Dict[int, IdentityCallback] = {}
        self._callback_ids = itertools.count(1)
        self._failures = _FailureInjector()
        self.calls: List[str] = []

    @property
    def current_uid(self) -> Optional[str]:
        return self._uid

    async def sign_in_with_token(self, token: str) -> str:
        self.calls.append("sign_in_with_token")
        await asyncio.sleep(0)
        self._failures.check("sign_in_with_token")
        uid = self._tokens.get(token)
        if uid is None:
            raise CredentialsError("Token rejected")
        self._set_identity(uid, anonymous=False)
        return uid

    async def sign_in_anonymously(self) -> str:
        self.calls.append("sign_in_anonymously")
        await asyncio.sleep(0)
        self._failures.check("sign_in_anonymously")
        if self._uid is not None and self._anonymous:
            return self._uid
        uid = f"anon-{uuid.uuid4().hex[:12]}"
        self._set_identity(uid, anonymous=True)
        return uid

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        callback_id = next(self._callback_ids)
        self._callbacks[callback_id] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(callback_id, None)

        return unsubscribe

    async def sign_out(self) -> None:
        self.calls.append("sign_out")
        await asyncio.sleep(0)
        self._set_identity(None, anonymous=False)

    def _set_identity(self, uid: Optional[str], anonymous: bool) -> None:
        changed = uid != self._uid
        self._uid = uid
        self._anonymous = anonymous
        if not changed:
            return
        loop = asyncio.get_running_loop()
        for callback in list(self._callbacks.values()):
            loop.call_soon(callback, uid)

    # Testing helpers

    def register_token(self, token: str, uid: str) -> None:
        self._tokens[token] = uid

    def fail_next(self, operation: str, exc: Exception, times: int = 1) -> None:
        """Make the next `times` calls of operation raise exc.

        Operations: sign_in_with_token, sign_in_anonymously.
        """
        self._failures.add(operation, exc, times)

    async def switch_user(self, uid: Optional[str]) -> None:
        """Change identity from outside the engine (e.g. another session)."""
        self._set_identity(uid, anonymous=False)

    def callback_count(self) -> int:
        return len(self._callbacks)
