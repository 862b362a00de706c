"""
Integration tests for TimelineEngine over in-memory backends.

Tests cover:
- Start with anonymous, explicit and configured tokens
- Writes reflected through snapshots
- MutationResult errors (no identity, validation, exhaustion)
- Identity switch and sign-out
- Lifecycle
- EngineContext backend selection and resource release
"""

from unittest.mock import MagicMock

import pytest

from timeline_sync.backends.base import BackendConnectionError
from timeline_sync.backends.http import HttpAuthProvider, HttpDocumentStore, HttpTransport
from timeline_sync.backends.memory import (
    InMemoryAssetStore,
    InMemoryAuthProvider,
    InMemoryDocumentStore,
)
from timeline_sync.backends.s3 import S3AssetStore
from timeline_sync.config import Settings
from timeline_sync.context import EngineContext
from timeline_sync.engine import TimelineEngine
from timeline_sync.errors import AuthError, MutationError, ValidationError
from timeline_sync.models import Identity, SyncStatus

from tests.helpers import StateRecorder, settle


def is_ready(state):
    return state.status is SyncStatus.READY


def has_entries(state):
    return is_ready(state) and len(state.entries) > 0


@pytest.fixture
async def engine(context, recorder):
    engine = TimelineEngine(context, on_state=recorder)
    yield engine
    await engine.close()


class TestEngineStart:
    """Tests for start()."""

    @pytest.mark.asyncio
    async def test_anonymous_start(self, engine, recorder, auth):
        identity = await engine.start()
        state = await recorder.until(is_ready)

        assert identity.anonymous
        assert engine.identity == identity
        assert state.identity == identity
        assert state.entries == ()
        assert recorder.states[0].status is SyncStatus.LOADING
        assert auth.calls == ["sign_in_anonymously"]

    @pytest.mark.asyncio
    async def test_token_start(self, engine, recorder, documents, context):
        identity = await engine.start("good-token")
        await recorder.until(is_ready)

        assert identity == Identity("user-1")
        assert documents.calls_for("listen") == [context.entries_path(identity)]

    @pytest.mark.asyncio
    async def test_configured_token(self, engine, context, auth):
        context.settings = context.settings.model_copy(
            update={"initial_auth_token": "good-token"}
        )

        identity = await engine.start()

        assert identity.uid == "user-1"
        assert auth.calls == ["sign_in_with_token"]

    @pytest.mark.asyncio
    async def test_rejected_token_publishes_error(self, engine, recorder, auth, documents):
        with pytest.raises(AuthError):
            await engine.start("bad-token")

        assert recorder.last.status is SyncStatus.ERROR
        assert isinstance(recorder.last.error, AuthError)
        assert "sign_in_anonymously" not in auth.calls
        assert documents.listener_count() == 0
        assert engine.identity is None


class TestEngineMutations:
    """Tests for writes through the engine."""

    @pytest.mark.asyncio
    async def test_created_entry_appears_in_view(self, engine, recorder):
        await engine.start()
        await recorder.until(is_ready)

        result = await engine.create_entry(
            "Week 1", "Progress", asset_bytes=b"png", filename="w1.png"
        )
        state = await recorder.until(has_entries)

        assert result.success
        assert [e.id for e in state.entries] == [result.value]
        assert state.entries[0].title == "Week 1"
        assert state.entries[0].asset_ref.endswith("_w1.png")

    @pytest.mark.asyncio
    async def test_note_shown_after_next_entry_change(self, engine, recorder):
        await engine.start()
        await recorder.until(is_ready)
        created = await engine.create_entry("Week 1", asset_bytes=b"png")
        await recorder.until(has_entries)

        note = await engine.add_note(created.value, "Nice")
        await settle()
        assert note.success
        assert recorder.last.entries[0].notes == ()

        updated = await engine.update_entry(created.value, "Week 1 (edited)")
        state = await recorder.until(
            lambda s: has_entries(s) and s.entries[0].title == "Week 1 (edited)"
        )

        assert updated.success
        assert [n.text for n in state.entries[0].notes] == ["Nice"]

    @pytest.mark.asyncio
    async def test_delete_removes_entry_from_view(self, engine, recorder, assets):
        await engine.start()
        created = await engine.create_entry("Week 1", asset_bytes=b"png")
        state = await recorder.until(has_entries)

        result = await engine.delete_entry(created.value, state.entries[0].asset_ref)
        state = await recorder.until(lambda s: is_ready(s) and not s.entries)

        assert result.success
        assert assets.object_count() == 0

    @pytest.mark.asyncio
    async def test_mutation_without_identity(self, engine, documents, assets):
        result = await engine.create_entry("Week 1", asset_bytes=b"png")

        assert not result.success
        assert isinstance(result.error, AuthError)
        assert result.error.code == "IDENTITY_REQUIRED"
        assert documents.calls == []
        assert assets.calls == []

    @pytest.mark.asyncio
    async def test_validation_failure_result(self, engine):
        await engine.start()

        result = await engine.create_entry("", asset_bytes=b"png")

        assert not result.success
        assert isinstance(result.error, ValidationError)

    @pytest.mark.asyncio
    async def test_exhausted_write_result(self, engine, assets, recorder):
        await engine.start()
        before = await recorder.until(is_ready)
        assets.fail_next("upload", BackendConnectionError("offline"), times=6)

        result = await engine.create_entry("Week 1", asset_bytes=b"png")
        await settle()

        assert not result.success
        assert isinstance(result.error, MutationError)
        assert result.error.operation == "asset.upload"
        assert recorder.last is before

    @pytest.mark.asyncio
    async def test_blank_note_result(self, engine):
        await engine.start()

        result = await engine.add_note("e1", "  ")

        assert result.success
        assert result.value is None


class TestIdentityTransitions:
    """Tests for identity switch and sign-out."""

    @pytest.mark.asyncio
    async def test_switch_user_resubscribes(self, engine, recorder, auth, documents, context):
        await engine.start()
        await recorder.until(is_ready)
        first = documents.calls_for("listen")[0]

        await auth.switch_user("user-2")
        state = await recorder.until(
            lambda s: is_ready(s) and s.identity == Identity("user-2")
        )

        assert state.entries == ()
        assert documents.listener_count() == 1
        assert documents.listener_count(first) == 0
        assert documents.listener_count(context.entries_path(Identity("user-2"))) == 1
        assert engine.identity == Identity("user-2")

    @pytest.mark.asyncio
    async def test_sign_out(self, engine, recorder, documents):
        await engine.start()
        await recorder.until(is_ready)

        await engine.sign_out()
        result = await engine.add_note("e1", "hello")

        assert recorder.last.status is SyncStatus.SIGNED_OUT
        assert engine.state is recorder.last
        assert engine.subscription is None
        assert documents.listener_count() == 0
        assert result.error.code == "IDENTITY_REQUIRED"


class TestEngineLifecycle:
    """Tests for close() and the async context manager."""

    @pytest.mark.asyncio
    async def test_close_detaches_everything(self, context, documents, auth):
        recorder = StateRecorder()
        async with TimelineEngine(context, on_state=recorder) as engine:
            await engine.start()
            await recorder.until(is_ready)

        assert documents.listener_count() == 0
        assert auth.callback_count() == 0

    @pytest.mark.asyncio
    async def test_in_memory_context(self):
        recorder = StateRecorder()
        async with TimelineEngine(EngineContext.in_memory(), on_state=recorder) as engine:
            identity = await engine.start()
            state = await recorder.until(is_ready)

        assert state.identity == identity


class TestEngineContext:
    """Tests for EngineContext.from_settings and aclose()."""

    @pytest.fixture
    def closed(self, monkeypatch):
        """Record backend close() calls in order, then run the real close."""
        order = []

        def recording(name, original):
            async def close(self):
                order.append(name)
                await original(self)

            return close

        monkeypatch.setattr(HttpTransport, "close", recording("transport", HttpTransport.close))
        monkeypatch.setattr(
            HttpDocumentStore, "close", recording("documents", HttpDocumentStore.close)
        )
        monkeypatch.setattr(S3AssetStore, "close", recording("assets", S3AssetStore.close))
        return order

    @pytest.fixture
    def s3_session(self, monkeypatch):
        """Patched aiobotocore session; create_client yields a mock client."""
        session = MagicMock()
        client_ctx = session.create_client.return_value
        client_ctx.__aenter__.return_value = MagicMock(name="s3-client")
        monkeypatch.setattr("timeline_sync.backends.s3.get_session", lambda: session)
        return session

    @pytest.mark.asyncio
    async def test_memory_backends_by_default(self):
        ctx = await EngineContext.from_settings(Settings())

        assert isinstance(ctx.documents, InMemoryDocumentStore)
        assert isinstance(ctx.assets, InMemoryAssetStore)
        assert isinstance(ctx.auth, InMemoryAuthProvider)
        assert ctx.retry.max_attempts == 5
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_http_backend(self, closed):
        settings = Settings(document_backend="http", http_base_url="http://docs.test")

        ctx = await EngineContext.from_settings(settings)

        assert isinstance(ctx.documents, HttpDocumentStore)
        assert isinstance(ctx.auth, HttpAuthProvider)
        assert isinstance(ctx.assets, InMemoryAssetStore)

        await ctx.aclose()
        assert closed == ["documents", "transport"]

    @pytest.mark.asyncio
    async def test_s3_backend(self, s3_session, closed):
        settings = Settings(
            asset_backend="s3",
            s3_bucket="assets",
            s3_region="eu-west-1",
            s3_endpoint_url="http://localhost:9000",
        )

        ctx = await EngineContext.from_settings(settings)

        assert isinstance(ctx.assets, S3AssetStore)
        assert ctx.assets.bucket == "assets"
        s3_session.create_client.assert_called_once_with(
            "s3", region_name="eu-west-1", endpoint_url="http://localhost:9000"
        )

        await ctx.aclose()
        assert closed == ["assets"]
        s3_session.create_client.return_value.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_releases_newest_first(self, s3_session, closed):
        settings = Settings(
            document_backend="http",
            http_base_url="http://docs.test",
            asset_backend="s3",
            s3_bucket="assets",
        )
        ctx = await EngineContext.from_settings(settings)

        await ctx.aclose()
        await ctx.aclose()

        assert closed == ["assets", "documents", "transport"]

    @pytest.mark.asyncio
    async def test_failed_s3_connect_releases_http_backends(self, s3_session, closed):
        s3_session.create_client.return_value.__aenter__.side_effect = ConnectionError(
            "unreachable"
        )
        settings = Settings(
            document_backend="http",
            http_base_url="http://docs.test",
            asset_backend="s3",
            s3_bucket="assets",
        )

        with pytest.raises(ConnectionError):
            await EngineContext.from_settings(settings)

        assert closed == ["documents", "transport"]
