"""
Unit tests for the command line entry point helpers.
"""

import logging

import json_log_formatter
import pytest

from timeline_sync.config import Settings
from timeline_sync.main import log_state, setup_logging
from timeline_sync.models import EntryView, Identity, NoteView, SyncState, SyncStatus


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, restore_root_logger):
        setup_logging(Settings(log_format="json", log_level="debug"))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self, restore_root_logger):
        setup_logging(Settings(log_format="text", log_level="WARNING"))

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING


class TestLogState:
    """Tests for log_state."""

    def test_logs_counts(self, caplog):
        state = SyncState(
            status=SyncStatus.READY,
            identity=Identity("user-1"),
            entries=(
                EntryView(
                    id="e1",
                    title="Week 1",
                    body=None,
                    asset_ref="memory://assets/a.png",
                    created_at=None,
                    notes=(NoteView(id="n1", text="hi", created_at=None),),
                ),
            ),
        )

        with caplog.at_level(logging.DEBUG, logger="timeline_sync.main"):
            log_state(state)

        summary = caplog.records[0]
        assert summary.getMessage() == "View ready: 1 entries"
        assert summary.uid == "user-1"
        assert summary.notes == 1
        assert "[pending] Week 1 (1 notes)" in caplog.text
