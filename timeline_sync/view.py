"""
Assembly of the denormalized, sorted timeline view.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from .models import Entry, EntryView, Note, NoteView

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _time_key(created_at: Optional[datetime]) -> tuple[bool, datetime]:
    # Pending server timestamps sort as the newest records.
    return (created_at is None, created_at or _EPOCH)


class ViewAssembler:
    """Merges Entries and their Notes into the view model.

    Pure: no state, no side effects, same output for the same input
    regardless of the order records were delivered in.
    """

    def assemble(
        self,
        batch: Iterable[tuple[Entry, Sequence[Note]]],
    ) -> list[EntryView]:
        """Build the view: Entries newest first, Notes oldest first.

        Ties on created_at are broken by id.
        """
        pairs = sorted(
            batch,
            key=lambda pair: (*_time_key(pair[0].created_at), pair[0].id),
            reverse=True,
        )
        return [
            EntryView(
                id=entry.id,
                title=entry.title,
                body=entry.body,
                asset_ref=entry.asset_ref,
                created_at=entry.created_at,
                notes=tuple(
                    NoteView(id=note.id, text=note.text, created_at=note.created_at)
                    for note in sorted(
                        notes, key=lambda note: (*_time_key(note.created_at), note.id)
                    )
                ),
            )
            for entry, notes in pairs
        ]
