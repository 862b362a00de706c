"""
Retry-protected writes against the remote stores.

MutationGateway validates caller input up front and then performs each
remote step (asset upload, URL resolution, document write, asset delete,
document delete) through the RetryPolicy.

Invariants:
    - Invalid input raises ValidationError before any remote call
    - Each remote step is retried independently
    - delete_entry removes the asset first and never deletes the record if
      the asset delete failed (no rollback, no orphan cleanup)
    - Nothing is applied locally; the view updates only through snapshots
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from .context import EngineContext
from .errors import MutationError, ValidationError
from .models import Identity, entry_payload, note_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MutationGateway:
    """Create, update and delete operations for Entries and Notes.

    Example:
        >>> gateway = MutationGateway(context)
        >>> entry_id = await gateway.create_entry(identity, "Week 1", asset_bytes=png)
        >>> await gateway.add_note(identity, entry_id, "Looks good")
    """

    def __init__(
        self,
        context: EngineContext,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the gateway.

        Args:
            context: Engine context
            clock: Wall clock (seconds) used for asset path names
        """
        self._context = context
        self._clock = clock

    async def create_entry(
        self,
        identity: Identity,
        title: str,
        body: Optional[str] = None,
        asset_bytes: Optional[bytes] = None,
        *,
        filename: str = "asset",
        content_type: Optional[str] = None,
    ) -> str:
        """Upload the asset, then write the Entry record.

        Args:
            identity: Owner of the entry
            title: Entry title (must not be blank)
            body: Optional body text
            asset_bytes: Asset content (required)
            filename: Original asset file name, used in the object path
            content_type: Optional MIME type of the asset

        Returns:
            The new entry id

        Raises:
            ValidationError: If title is blank or the asset is missing
            MutationError: If a remote step exhausted its retries
        """
        if not title or not title.strip():
            raise ValidationError("Title is required", field_name="title")
        if not asset_bytes:
            raise ValidationError("Asset is required", field_name="asset_bytes")

        ctx = self._context
        asset_path = ctx.asset_path(identity, filename, int(self._clock() * 1000))

        handle = await self._write(
            "asset.upload",
            lambda: ctx.assets.upload(asset_path, asset_bytes, content_type),
        )
        asset_url = await self._write("asset.public_url", lambda: ctx.assets.public_url(handle))
        entry_id = await self._write(
            "entry.create",
            lambda: ctx.documents.add_document(
                ctx.entries_path(identity), entry_payload(title, body, asset_url)
            ),
        )

        logger.info(
            "Entry created",
            extra={"uid": identity.uid, "entry_id": entry_id, "asset_path": asset_path},
        )
        return entry_id

    async def update_entry(
        self,
        identity: Identity,
        entry_id: str,
        title: str,
        body: Optional[str] = None,
    ) -> None:
        """Replace an Entry's title and body.

        Raises:
            ValidationError: If title is blank or entry_id is empty
            MutationError: If the write exhausted its retries
        """
        if not title or not title.strip():
            raise ValidationError("Title is required", field_name="title")
        if not entry_id:
            raise ValidationError("Entry id is required", field_name="entry_id")

        ctx = self._context
        await self._write(
            "entry.update",
            lambda: ctx.documents.update_document(
                ctx.entries_path(identity), entry_id, {"title": title, "body": body}
            ),
        )
        logger.info("Entry updated", extra={"uid": identity.uid, "entry_id": entry_id})

    async def delete_entry(self, identity: Identity, entry_id: str, asset_ref: str) -> None:
        """Delete the Entry's asset, then the Entry record.

        Raises:
            ValidationError: If entry_id or asset_ref is empty
            MutationError: If a step exhausted its retries; when the asset
                delete fails the record is left in place
        """
        if not entry_id:
            raise ValidationError("Entry id is required", field_name="entry_id")
        if not asset_ref:
            raise ValidationError("Asset reference is required", field_name="asset_ref")

        ctx = self._context
        await self._write("asset.delete", lambda: ctx.assets.delete(asset_ref))
        await self._write(
            "entry.delete",
            lambda: ctx.documents.delete_document(ctx.entries_path(identity), entry_id),
        )
        logger.info("Entry deleted", extra={"uid": identity.uid, "entry_id": entry_id})

    async def add_note(self, identity: Identity, entry_id: str, text: str) -> Optional[str]:
        """Append a Note to an Entry.

        Returns:
            The new note id, or None when text is blank (nothing is written)

        Raises:
            ValidationError: If entry_id is empty
            MutationError: If the write exhausted its retries
        """
        if not entry_id:
            raise ValidationError("Entry id is required", field_name="entry_id")
        if not text or not text.strip():
            return None

        ctx = self._context
        path = ctx.notes_path(identity, entry_id)
        note_id = await self._write(
            "note.create", lambda: ctx.documents.add_document(path, note_payload(text))
        )
        logger.info(
            "Note added",
            extra={"uid": identity.uid, "entry_id": entry_id, "note_id": note_id},
        )
        return note_id

    async def _write(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await self._context.retry.execute(call, description=operation)
        except Exception as e:
            raise MutationError(f"{operation} failed: {e}", operation=operation, cause=e) from e
