"""
Data model for the timeline sync engine.

This module defines:
- Identity: the caller's scoping token
- Entry / Note: records as read from the store
- EntryView / NoteView: the assembled, denormalized view
- SyncState / SyncStatus: what the presentation layer observes
- MutationResult: outcome of an engine-level write
- EntryRecord / NoteRecord: persisted wire schema (validated with pydantic)
- Path helpers for the storage layout

Invariants:
    - Timestamps are timezone-aware (naive values are taken as UTC)
    - A None timestamp means the server has not resolved it yet
    - Records are immutable once parsed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .backends.base import SERVER_TIMESTAMP, DocumentSnapshot
from .errors import ValidationError

T = TypeVar("T")

ENTRIES_COLLECTION = "entries"
NOTES_COLLECTION = "notes"


@dataclass(frozen=True)
class Identity:
    """Stable scoping token for all storage paths.

    Attributes:
        uid: User id issued by the auth provider
        anonymous: Whether the identity came from anonymous sign-in
    """

    uid: str
    anonymous: bool = False

    def __post_init__(self) -> None:
        _check_segment(self.uid, "uid")

    def __str__(self) -> str:
        return self.uid


def _check_segment(value: str, field_name: str) -> None:
    if not value or "/" in value:
        raise ValidationError(f"Invalid {field_name}: {value!r}", field_name=field_name)


def entries_path(namespace: str, app_scope: str, identity: Identity) -> str:
    """Collection path of an identity's entries."""
    return f"/{namespace}/{app_scope}/users/{identity.uid}/{ENTRIES_COLLECTION}"


def notes_path(namespace: str, app_scope: str, identity: Identity, entry_id: str) -> str:
    """Collection path of one entry's notes."""
    _check_segment(entry_id, "entry_id")
    return f"{entries_path(namespace, app_scope, identity)}/{entry_id}/{NOTES_COLLECTION}"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EntryRecord(BaseModel):
    """Persisted Entry schema."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    title: str
    body: Optional[str] = None
    asset_url: str = Field(alias="assetUrl")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class NoteRecord(BaseModel):
    """Persisted Note schema."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    text: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


def entry_payload(title: str, body: Optional[str], asset_url: str) -> dict[str, Any]:
    """Wire payload for a new Entry; the timestamp is assigned by the server."""
    return {
        "title": title,
        "body": body,
        "assetUrl": asset_url,
        "createdAt": SERVER_TIMESTAMP,
    }


def note_payload(text: str) -> dict[str, Any]:
    """Wire payload for a new Note; the timestamp is assigned by the server."""
    return {"text": text, "createdAt": SERVER_TIMESTAMP}


@dataclass(frozen=True)
class Entry:
    """A top-level timeline record.

    Attributes:
        id: Document id
        title: Title (never empty when written by this engine)
        body: Optional free text
        asset_ref: Public URL of the associated asset
        created_at: Server-assigned creation time
    """

    id: str
    title: str
    asset_ref: str
    body: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: DocumentSnapshot) -> Entry:
        """Parse a store document.

        Raises:
            pydantic.ValidationError: If the document does not match EntryRecord
        """
        record = EntryRecord.model_validate(doc.data)
        return cls(
            id=doc.id,
            title=record.title,
            body=record.body,
            asset_ref=record.asset_url,
            created_at=record.created_at,
        )


@dataclass(frozen=True)
class Note:
    """A child record attached to exactly one Entry."""

    id: str
    text: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: DocumentSnapshot) -> Note:
        record = NoteRecord.model_validate(doc.data)
        return cls(id=doc.id, text=record.text, created_at=record.created_at)


@dataclass(frozen=True)
class NoteView:
    id: str
    text: str
    created_at: Optional[datetime]


@dataclass(frozen=True)
class EntryView:
    """Denormalized Entry with its Notes in display order."""

    id: str
    title: str
    body: Optional[str]
    asset_ref: str
    created_at: Optional[datetime]
    notes: tuple[NoteView, ...] = ()


class SyncStatus(Enum):
    """Lifecycle of the synchronized view."""

    SIGNED_OUT = "signed_out"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class SyncState:
    """Snapshot of what the presentation layer should show.

    Attributes:
        status: Current lifecycle status
        identity: Identity the view belongs to
        entries: Sorted view (kept from the last good batch on ERROR)
        error: Failure behind an ERROR status
    """

    status: SyncStatus
    identity: Optional[Identity] = None
    entries: tuple[EntryView, ...] = ()
    error: Optional[Exception] = None

    @property
    def loading(self) -> bool:
        return self.status is SyncStatus.LOADING


@dataclass
class MutationResult(Generic[T]):
    """Result of an engine-level write.

    Attributes:
        success: Whether the write succeeded
        value: Returned value (e.g. new entry id)
        error: Failure if not successful
    """

    success: bool
    value: Optional[T] = None
    error: Optional[Exception] = field(default=None)
