"""
Live subscription with per-snapshot nested reads.

SubscriptionCoordinator owns the single top-level listener on an
identity's Entry collection. Every delivered snapshot starts a batch: the
Entries are parsed and each Entry's Note collection is read once,
concurrently, inside one asyncio.TaskGroup. The batch publishes a new
SyncState only when every nested read succeeded.

Invariants:
    - At most one active Subscription per coordinator; the previous one is
      cancelled before the next listener is attached
    - cancel() detaches the store listener exactly once
    - An Entry is never published before its nested read completed
    - Batch results are published in snapshot order; a batch that finishes
      after a newer one was published, or after cancel(), is discarded

Known limitation:
    Nested reads are point-in-time. A Note written after the latest
    top-level snapshot is not visible until an Entry-level change produces
    the next snapshot, since Note writes do not touch the Entry collection.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Set

from pydantic import ValidationError as RecordValidationError

from .backends.base import CollectionSnapshot, ListenerRegistration
from .context import EngineContext
from .errors import SubscriptionError, ValidationError
from .models import Entry, Identity, Note, SyncState, SyncStatus
from .view import ViewAssembler

logger = logging.getLogger(__name__)

StateCallback = Callable[[SyncState], None]


class Subscription:
    """Handle for one identity's live view.

    Attributes:
        identity: Identity the view is scoped to
        path: Entry collection path
    """

    def __init__(
        self,
        context: EngineContext,
        identity: Identity,
        assembler: ViewAssembler,
        on_state: StateCallback,
    ) -> None:
        self.identity = identity
        self.path = context.entries_path(identity)
        self._context = context
        self._assembler = assembler
        self._on_state = on_state
        self._registration: Optional[ListenerRegistration] = None
        self._cancelled = False
        self._failed = False
        self._batch_seq = 0
        self._published_seq = 0
        self._pending: Set[asyncio.Task] = set()
        self._state = SyncState(status=SyncStatus.LOADING, identity=identity)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def state(self) -> SyncState:
        """The last published state."""
        return self._state

    def cancel(self) -> None:
        """Stop snapshot delivery.

        Nested reads already in flight keep running; their results are
        dropped.
        """
        if self._cancelled:
            return
        self._cancelled = True
        self._detach()
        logger.debug("Subscription cancelled", extra={"path": self.path})

    async def wait_idle(self) -> None:
        """Wait until no batch is in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _start(self) -> None:
        self._registration = self._context.documents.listen(
            self.path, self._on_snapshot, self._on_error
        )

    def _detach(self) -> None:
        registration, self._registration = self._registration, None
        if registration is not None:
            registration.remove()

    def _on_snapshot(self, snapshot: CollectionSnapshot) -> None:
        if self._cancelled or self._failed:
            return
        self._batch_seq += 1
        task = asyncio.get_running_loop().create_task(
            self._run_batch(self._batch_seq, snapshot)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_error(self, exc: Exception) -> None:
        if self._cancelled or self._failed:
            return
        self._failed = True
        self._detach()
        logger.error(
            f"Live subscription failed: {exc}",
            extra={"path": self.path, "uid": self.identity.uid},
        )
        error = SubscriptionError(f"Live subscription failed: {exc}", path=self.path)
        error.__cause__ = exc
        self._publish(
            SyncState(
                status=SyncStatus.ERROR,
                identity=self.identity,
                entries=self._state.entries,
                error=error,
            )
        )

    async def _run_batch(self, seq: int, snapshot: CollectionSnapshot) -> None:
        try:
            batch = await self._read_batch(snapshot)
        except SubscriptionError as e:
            if self._is_stale(seq):
                return
            self._published_seq = seq
            logger.error(
                f"Snapshot batch failed: {e}",
                extra={"path": e.path, "batch": seq},
            )
            self._publish(
                SyncState(
                    status=SyncStatus.ERROR,
                    identity=self.identity,
                    entries=self._state.entries,
                    error=e,
                )
            )
            return

        if self._is_stale(seq):
            logger.debug(
                "Discarding stale batch",
                extra={"path": self.path, "batch": seq, "published": self._published_seq},
            )
            return

        self._published_seq = seq
        entries = tuple(self._assembler.assemble(batch))
        logger.debug(
            "Publishing batch",
            extra={"path": self.path, "batch": seq, "entries": len(entries)},
        )
        self._publish(
            SyncState(status=SyncStatus.READY, identity=self.identity, entries=entries)
        )

    async def _read_batch(self, snapshot: CollectionSnapshot) -> list[tuple[Entry, list[Note]]]:
        try:
            entries = [Entry.from_document(doc) for doc in snapshot.documents]
        except RecordValidationError as e:
            raise SubscriptionError(
                f"Malformed entry in {snapshot.path}: {e}", path=snapshot.path
            ) from e

        try:
            paths = [self._context.notes_path(self.identity, entry.id) for entry in entries]
        except ValidationError as e:
            raise SubscriptionError(
                f"Malformed entry id in {snapshot.path}: {e}", path=snapshot.path
            ) from e

        try:
            async with asyncio.TaskGroup() as group:
                reads = [
                    group.create_task(self._read_notes(entry, path))
                    for entry, path in zip(entries, paths)
                ]
        except ExceptionGroup as group_error:
            raise _first_error(group_error)

        return [read.result() for read in reads]

    async def _read_notes(self, entry: Entry, path: str) -> tuple[Entry, list[Note]]:
        try:
            snapshot = await self._context.documents.get_collection(path)
            notes = [Note.from_document(doc) for doc in snapshot.documents]
        except Exception as e:
            raise SubscriptionError(
                f"Nested read failed for entry {entry.id}: {e}", path=path
            ) from e
        return entry, notes

    def _is_stale(self, seq: int) -> bool:
        return self._cancelled or self._failed or seq <= self._published_seq

    def _publish(self, state: SyncState) -> None:
        self._state = state
        self._on_state(state)


def _first_error(group: BaseExceptionGroup) -> BaseException:
    error = group.exceptions[0]
    while isinstance(error, BaseExceptionGroup):
        error = error.exceptions[0]
    return error


class SubscriptionCoordinator:
    """Installs and supersedes the top-level subscription.

    Example:
        >>> coordinator = SubscriptionCoordinator(context)
        >>> sub = coordinator.subscribe(identity, on_state=render)
        >>> sub.cancel()
    """

    def __init__(
        self,
        context: EngineContext,
        assembler: Optional[ViewAssembler] = None,
    ) -> None:
        self._context = context
        self._assembler = assembler or ViewAssembler()
        self._active: Optional[Subscription] = None

    @property
    def active(self) -> Optional[Subscription]:
        return self._active

    def subscribe(self, identity: Identity, on_state: StateCallback) -> Subscription:
        """Open the live view for identity, cancelling any previous one first.

        on_state receives LOADING immediately, then one state per batch.
        """
        if self._active is not None:
            self._active.cancel()
            self._active = None

        subscription = Subscription(self._context, identity, self._assembler, on_state)
        self._active = subscription
        on_state(subscription.state)
        subscription._start()
        logger.info(
            "Subscribed to entries",
            extra={"path": subscription.path, "uid": identity.uid},
        )
        return subscription

    def close(self) -> None:
        """Cancel the active subscription, if any."""
        if self._active is not None:
            self._active.cancel()
            self._active = None
