"""
Test doubles and helpers shared by the unit and integration tests.
"""

import asyncio
from typing import Callable, Dict, List

from timeline_sync.backends.base import CollectionSnapshot, ErrorCallback, SnapshotCallback
from timeline_sync.backends.memory import InMemoryDocumentStore, _Registration
from timeline_sync.models import SyncState


class RecordingSleep:
    """Sleep replacement that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class StateRecorder:
    """on_state callback that keeps every published SyncState."""

    def __init__(self) -> None:
        self.states: List[SyncState] = []
        self._queue: asyncio.Queue = asyncio.Queue()

    def __call__(self, state: SyncState) -> None:
        self.states.append(state)
        self._queue.put_nowait(state)

    async def until(
        self,
        predicate: Callable[[SyncState], bool],
        timeout: float = 2.0,
    ) -> SyncState:
        """Wait for the next published state matching predicate."""

        async def _wait() -> SyncState:
            while True:
                state = await self._queue.get()
                if predicate(state):
                    return state

        return await asyncio.wait_for(_wait(), timeout)

    @property
    def last(self) -> SyncState:
        return self.states[-1]


class GatedDocumentStore(InMemoryDocumentStore):
    """In-memory store whose next read of a path blocks until released."""

    def __init__(self) -> None:
        super().__init__()
        self._gates: Dict[str, asyncio.Event] = {}
        self.waiting: List[str] = []
        self.registrations: List[_Registration] = []

    def listen(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> _Registration:
        registration = super().listen(path, on_snapshot, on_error)
        self.registrations.append(registration)
        return registration

    def gate(self, path: str) -> asyncio.Event:
        """Block the next get_collection(path); set the event to release it."""
        event = asyncio.Event()
        self._gates[path] = event
        return event

    async def get_collection(self, path: str) -> CollectionSnapshot:
        gate = self._gates.pop(path, None)
        if gate is not None:
            self.waiting.append(path)
            await gate.wait()
        return await super().get_collection(path)


async def settle(rounds: int = 10) -> None:
    """Let scheduled callbacks and short tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
