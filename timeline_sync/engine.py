"""
Timeline engine: the composition root.

TimelineEngine wires identity, subscription and mutations together:
- start() bootstraps an identity and opens its live view
- identity transitions cancel the previous subscription before the next
  one is installed, so views never mix identities
- writes go through MutationGateway and come back as MutationResult

Example:
    >>> async with TimelineEngine(EngineContext.in_memory(), on_state=render) as engine:
    ...     await engine.start()
    ...     result = await engine.create_entry("Week 1", asset_bytes=png)
    ...     if not result.success:
    ...         show_error(result.error)
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .context import EngineContext
from .errors import AuthError, TimelineError
from .identity import IdentitySession
from .models import Identity, MutationResult, SyncState, SyncStatus
from .mutations import MutationGateway
from .subscription import StateCallback, Subscription, SubscriptionCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimelineEngine:
    """Owns the engine components for one session.

    Attributes:
        context: Shared collaborators
        session: Identity session
        coordinator: Subscription coordinator
        gateway: Mutation gateway
    """

    def __init__(
        self,
        context: EngineContext,
        on_state: Optional[StateCallback] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            context: Shared collaborators
            on_state: Receives every published SyncState
        """
        self.context = context
        self.session = IdentitySession(context.auth, context.retry)
        self.coordinator = SubscriptionCoordinator(context)
        self.gateway = MutationGateway(context)
        self._on_state = on_state
        self._state = SyncState(status=SyncStatus.SIGNED_OUT)
        self._unregister: Optional[Callable[[], None]] = None

    async def __aenter__(self) -> TimelineEngine:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.identity

    @property
    def subscription(self) -> Optional[Subscription]:
        return self.coordinator.active

    async def start(self, token: Optional[str] = None) -> Identity:
        """Sign in and open the live view.

        Args:
            token: Sign-in token; falls back to settings.initial_auth_token,
                then to anonymous sign-in

        Raises:
            AuthError: If no identity could be established
        """
        token = token or self.context.settings.initial_auth_token
        self._publish(SyncState(status=SyncStatus.LOADING))
        try:
            identity = await self.session.bootstrap(token)
        except AuthError as e:
            self._publish(SyncState(status=SyncStatus.ERROR, error=e))
            raise

        self._unregister = self.session.on_change(self._on_identity_change)
        self._install(identity)
        return identity

    async def sign_out(self) -> None:
        await self.session.sign_out()

    async def close(self) -> None:
        """Cancel the subscription and release the context."""
        self.coordinator.close()
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
        self.session.close()
        await self.context.aclose()

    async def create_entry(
        self,
        title: str,
        body: Optional[str] = None,
        asset_bytes: Optional[bytes] = None,
        *,
        filename: str = "asset",
        content_type: Optional[str] = None,
    ) -> MutationResult[str]:
        return await self._mutate(
            "create_entry",
            lambda identity: self.gateway.create_entry(
                identity,
                title,
                body,
                asset_bytes,
                filename=filename,
                content_type=content_type,
            ),
        )

    async def update_entry(
        self,
        entry_id: str,
        title: str,
        body: Optional[str] = None,
    ) -> MutationResult[None]:
        return await self._mutate(
            "update_entry",
            lambda identity: self.gateway.update_entry(identity, entry_id, title, body),
        )

    async def delete_entry(self, entry_id: str, asset_ref: str) -> MutationResult[None]:
        return await self._mutate(
            "delete_entry",
            lambda identity: self.gateway.delete_entry(identity, entry_id, asset_ref),
        )

    async def add_note(self, entry_id: str, text: str) -> MutationResult[Optional[str]]:
        return await self._mutate(
            "add_note",
            lambda identity: self.gateway.add_note(identity, entry_id, text),
        )

    async def _mutate(
        self,
        name: str,
        call: Callable[[Identity], Awaitable[T]],
    ) -> MutationResult[T]:
        identity = self.session.identity
        if identity is None:
            return MutationResult(
                success=False,
                error=AuthError(
                    "No active identity", code="IDENTITY_REQUIRED", method=None
                ),
            )
        try:
            value = await call(identity)
        except TimelineError as e:
            logger.warning(
                f"{name} failed: {e}",
                extra={"uid": identity.uid, "code": e.code},
            )
            return MutationResult(success=False, error=e)
        return MutationResult(success=True, value=value)

    def _on_identity_change(self, identity: Optional[Identity]) -> None:
        if identity is None:
            self.coordinator.close()
            self._publish(SyncState(status=SyncStatus.SIGNED_OUT))
            return
        self._install(identity)

    def _install(self, identity: Identity) -> None:
        self.coordinator.subscribe(identity, self._publish)

    def _publish(self, state: SyncState) -> None:
        self._state = state
        if self._on_state is not None:
            self._on_state(state)
