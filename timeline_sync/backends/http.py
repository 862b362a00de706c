"""
REST backend implementations over httpx.

This module talks to a JSON document service:
- GET    {base}/documents/{collection path}          -> {"documents": [{"id", "data"}]}
- POST   {base}/documents/{collection path}          -> {"id"}
- PATCH  {base}/documents/{collection path}/{doc id}
- DELETE {base}/documents/{collection path}/{doc id}
- POST   {base}/auth/token      {"token"}            -> {"uid", "idToken"}
- POST   {base}/auth/anonymous                       -> {"uid", "idToken"}

Server timestamps are sent as {".sv": "timestamp"} and come back as epoch
milliseconds. Live listeners poll the collection and deliver a snapshot
whenever its contents change.

Invariants:
    - The id token from the last sign-in is sent as a bearer token
    - Transport failures raise BackendConnectionError, 404 raises
      DocumentNotFoundError, 401/403 raise CredentialsError
    - A listener reports at most one error and then stops polling
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable, Dict, Optional, Set

import httpx

from .base import (
    SERVER_TIMESTAMP,
    BackendConnectionError,
    BackendError,
    CollectionSnapshot,
    CredentialsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    ErrorCallback,
    IdentityCallback,
    SnapshotCallback,
)

logger = logging.getLogger(__name__)

SERVER_TIMESTAMP_WIRE = {".sv": "timestamp"}


class HttpTransport:
    """Shared httpx client plus the current bearer token."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Service root URL
            timeout: Per-request timeout in seconds
            client: Preconfigured client (tests pass one with a MockTransport)
        """
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._id_token: Optional[str] = None

    def set_token(self, id_token: Optional[str]) -> None:
        self._id_token = id_token

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        headers = {}
        if self._id_token:
            headers["Authorization"] = f"Bearer {self._id_token}"

        try:
            response = await self._client.request(method, url, json=json, headers=headers)
        except httpx.TransportError as e:
            raise BackendConnectionError(f"{method} {url} failed: {e}") from e

        if response.status_code == 404:
            raise DocumentNotFoundError(f"{method} {url}: not found")
        if response.status_code in (401, 403):
            raise CredentialsError(f"{method} {url}: HTTP {response.status_code}")
        if response.is_error:
            raise BackendError(
                f"{method} {url}: HTTP {response.status_code} {response.text[:200]}"
            )
        return response

    async def close(self) -> None:
        await self._client.aclose()


class _PollingRegistration:
    def __init__(self, task: asyncio.Task) -> None:
        self._task = task

    def remove(self) -> None:
        self._task.cancel()


class HttpDocumentStore:
    """DocumentStore backed by the REST document service."""

    def __init__(
        self,
        transport: HttpTransport,
        *,
        poll_interval: float = 2.0,
        max_poll_failures: int = 3,
    ) -> None:
        """Initialize the store.

        Args:
            transport: Shared HTTP transport
            poll_interval: Seconds between listener polls
            max_poll_failures: Consecutive connection failures tolerated by a
                listener before it reports an error
        """
        self._transport = transport
        self._poll_interval = poll_interval
        self._max_poll_failures = max_poll_failures
        self._tasks: Set[asyncio.Task] = set()

    def listen(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> _PollingRegistration:
        task = asyncio.get_running_loop().create_task(
            self._poll(path, on_snapshot, on_error)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return _PollingRegistration(task)

    async def get_collection(self, path: str) -> CollectionSnapshot:
        response = await self._transport.request("GET", _documents_url(path))
        payload = response.json()
        return CollectionSnapshot(
            path=path,
            documents=tuple(
                DocumentSnapshot(id=doc["id"], data=dict(doc.get("data") or {}))
                for doc in payload.get("documents", [])
            ),
        )

    async def add_document(self, path: str, data: Dict[str, Any]) -> str:
        response = await self._transport.request(
            "POST", _documents_url(path), json=_encode(data)
        )
        return response.json()["id"]

    async def update_document(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self._transport.request(
            "PATCH", _documents_url(path, doc_id), json=_encode(data)
        )

    async def delete_document(self, path: str, doc_id: str) -> None:
        try:
            await self._transport.request("DELETE", _documents_url(path, doc_id))
        except DocumentNotFoundError:
            logger.debug("Delete of missing document", extra={"path": path, "doc_id": doc_id})

    async def close(self) -> None:
        """Stop all listeners."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _poll(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> None:
        last: Optional[CollectionSnapshot] = None
        failures = 0
        while True:
            try:
                snapshot = await self.get_collection(path)
            except BackendConnectionError as e:
                failures += 1
                if failures >= self._max_poll_failures:
                    on_error(e)
                    return
                logger.warning(
                    f"Listener poll failed ({failures}/{self._max_poll_failures}): {e}",
                    extra={"path": path},
                )
            except Exception as e:
                on_error(e)
                return
            else:
                failures = 0
                if snapshot != last:
                    last = snapshot
                    on_snapshot(snapshot)
            await asyncio.sleep(self._poll_interval)


class HttpAuthProvider:
    """AuthProvider backed by the REST service's auth endpoints."""

    def __init__(self, transport: HttpTransport) -> None:
        self._transport = transport
        self._uid: Optional[str] = None
        self._callbacks: Dict[int, IdentityCallback] = {}
        self._callback_ids = itertools.count(1)

    async def sign_in_with_token(self, token: str) -> str:
        response = await self._transport.request("POST", "/auth/token", json={"token": token})
        return self._signed_in(response.json())

    async def sign_in_anonymously(self) -> str:
        response = await self._transport.request("POST", "/auth/anonymous", json={})
        return self._signed_in(response.json())

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        callback_id = next(self._callback_ids)
        self._callbacks[callback_id] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(callback_id, None)

        return unsubscribe

    async def sign_out(self) -> None:
        self._transport.set_token(None)
        self._set_uid(None)

    def _signed_in(self, payload: Dict[str, Any]) -> str:
        try:
            uid = payload["uid"]
            id_token = payload["idToken"]
        except KeyError as e:
            raise BackendError(f"Malformed sign-in response: missing {e}") from e
        self._transport.set_token(id_token)
        self._set_uid(uid)
        return uid

    def _set_uid(self, uid: Optional[str]) -> None:
        if uid == self._uid:
            return
        self._uid = uid
        loop = asyncio.get_running_loop()
        for callback in list(self._callbacks.values()):
            loop.call_soon(callback, uid)


def _documents_url(path: str, doc_id: Optional[str] = None) -> str:
    url = "/documents/" + path.strip("/")
    if doc_id is not None:
        url += f"/{doc_id}"
    return url


def _encode(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: dict(SERVER_TIMESTAMP_WIRE) if value is SERVER_TIMESTAMP else value
        for key, value in data.items()
    }
