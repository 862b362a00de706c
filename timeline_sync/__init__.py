"""
Timeline Sync - live, sorted view of a remote two-level record set.

This package mirrors parent Entries and their Notes from a remote document
store into one ordered view, and routes every write through a
retry-protected gateway:
- RetryPolicy for bounded exponential backoff
- IdentitySession for token/anonymous sign-in
- SubscriptionCoordinator + ViewAssembler for the live view
- MutationGateway for create/update/delete and notes
- TimelineEngine as the composition root

Example:
    >>> from timeline_sync import EngineContext, TimelineEngine
    >>>
    >>> async with TimelineEngine(EngineContext.in_memory(), on_state=print) as engine:
    ...     await engine.start()
    ...     await engine.create_entry("Week 1", asset_bytes=b"...", filename="w1.png")

Invariants:
    - Entries are ordered newest first, Notes oldest first
    - One live subscription per identity
    - Writes never update the view directly; snapshots do

Version: 1.0.0
"""

__version__ = "1.0.0"

from .config import Settings
from .context import EngineContext
from .engine import TimelineEngine
from .errors import (
    AuthError,
    MutationError,
    SubscriptionError,
    TimelineError,
    ValidationError,
)
from .identity import IdentitySession
from .models import (
    Entry,
    EntryView,
    Identity,
    MutationResult,
    Note,
    NoteView,
    SyncState,
    SyncStatus,
)
from .mutations import MutationGateway
from .retry import RetryPolicy, RetryState
from .subscription import Subscription, SubscriptionCoordinator
from .view import ViewAssembler

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "EngineContext",
    # Components
    "RetryPolicy",
    "RetryState",
    "IdentitySession",
    "SubscriptionCoordinator",
    "Subscription",
    "ViewAssembler",
    "MutationGateway",
    "TimelineEngine",
    # Models
    "Identity",
    "Entry",
    "Note",
    "EntryView",
    "NoteView",
    "SyncState",
    "SyncStatus",
    "MutationResult",
    # Errors
    "TimelineError",
    "AuthError",
    "SubscriptionError",
    "ValidationError",
    "MutationError",
]
