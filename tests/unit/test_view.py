"""
Unit tests for ViewAssembler.

Tests cover:
- Entries newest first, Notes oldest first
- Pending timestamps and id tie-breaks
- Independence from delivery order
"""

from datetime import datetime, timedelta, timezone

import pytest

from timeline_sync.models import Entry, EntryView, Note, NoteView
from timeline_sync.view import ViewAssembler

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def entry(entry_id, minutes=None, title=None):
    created = T0 + timedelta(minutes=minutes) if minutes is not None else None
    return Entry(
        id=entry_id,
        title=title or f"Entry {entry_id}",
        asset_ref=f"memory://assets/{entry_id}.png",
        created_at=created,
    )


def note(note_id, minutes=None):
    created = T0 + timedelta(minutes=minutes) if minutes is not None else None
    return Note(id=note_id, text=f"note {note_id}", created_at=created)


class TestViewAssembler:
    """Tests for ViewAssembler.assemble."""

    @pytest.fixture
    def assembler(self):
        return ViewAssembler()

    def test_empty_batch(self, assembler):
        """No entries produce an empty view."""
        assert assembler.assemble([]) == []

    def test_entries_newest_first(self, assembler):
        """Entries are ordered by created_at descending."""
        batch = [(entry("a", 1), []), (entry("b", 3), []), (entry("c", 2), [])]

        view = assembler.assemble(batch)

        assert [e.id for e in view] == ["b", "c", "a"]

    def test_notes_oldest_first(self, assembler):
        """Notes within an entry are ordered by created_at ascending."""
        batch = [(entry("a", 1), [note("n3", 30), note("n1", 10), note("n2", 20)])]

        view = assembler.assemble(batch)

        assert [n.id for n in view[0].notes] == ["n1", "n2", "n3"]

    def test_pending_entry_sorts_first(self, assembler):
        """An entry whose server timestamp is unresolved is the newest."""
        batch = [(entry("old", 1), []), (entry("pending"), []), (entry("new", 5), [])]

        view = assembler.assemble(batch)

        assert [e.id for e in view] == ["pending", "new", "old"]

    def test_pending_note_sorts_last(self, assembler):
        """A note whose server timestamp is unresolved is the newest, so last."""
        batch = [(entry("a", 1), [note("pending"), note("n1", 1)])]

        view = assembler.assemble(batch)

        assert [n.id for n in view[0].notes] == ["n1", "pending"]

    def test_equal_timestamps_break_ties_by_id(self, assembler):
        """Ordering is total even with equal timestamps."""
        batch = [(entry("a", 1), [note("y", 2), note("x", 2)]), (entry("b", 1), [])]

        view = assembler.assemble(batch)

        assert [e.id for e in view] == ["b", "a"]
        assert [n.id for n in view[1].notes] == ["x", "y"]

    def test_delivery_order_does_not_matter(self, assembler):
        """Same records in any order give the same view."""
        batch = [
            (entry("a", 1), [note("n2", 5), note("n1", 4)]),
            (entry("b", 2), []),
            (entry("c", 3), [note("n3", 6)]),
        ]

        forward = assembler.assemble(batch)
        backward = assembler.assemble(list(reversed(batch)))

        assert forward == backward

    def test_view_carries_entry_fields(self, assembler):
        """EntryView copies the entry and wraps notes as NoteView."""
        e = Entry(
            id="a",
            title="Week 1",
            body="Progress",
            asset_ref="memory://assets/a.png",
            created_at=T0,
        )

        view = assembler.assemble([(e, [note("n1", 1)])])

        assert view == [
            EntryView(
                id="a",
                title="Week 1",
                body="Progress",
                asset_ref="memory://assets/a.png",
                created_at=T0,
                notes=(NoteView(id="n1", text="note n1", created_at=T0 + timedelta(minutes=1)),),
            )
        ]
        assert isinstance(view[0].notes, tuple)
