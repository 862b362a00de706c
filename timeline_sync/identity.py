"""
Identity bootstrap and change notifications.

IdentitySession signs the caller in (token-based when a token is supplied,
anonymous otherwise) through the RetryPolicy, and relays identity
transitions from the auth provider to a single registered callback.

Invariants:
    - At most one callback is registered at a time
    - The callback fires once per transition; repeated notifications for
      the current identity are suppressed
    - A failed token sign-in never falls back to anonymous sign-in
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .backends.base import AuthProvider
from .errors import AuthError
from .models import Identity
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

IdentityChangeCallback = Callable[[Optional[Identity]], None]


class IdentitySession:
    """Caller identity lifecycle.

    Example:
        >>> session = IdentitySession(auth, RetryPolicy())
        >>> identity = await session.bootstrap(token=None)
        >>> unregister = session.on_change(lambda ident: print(ident))
    """

    def __init__(self, auth: AuthProvider, retry: RetryPolicy) -> None:
        self._auth = auth
        self._retry = retry
        self._identity: Optional[Identity] = None
        self._callback: Optional[IdentityChangeCallback] = None
        self._unwatch: Optional[Callable[[], None]] = None

    @property
    def identity(self) -> Optional[Identity]:
        """The current identity, or None when signed out."""
        return self._identity

    async def bootstrap(self, token: Optional[str] = None) -> Identity:
        """Establish an identity.

        Args:
            token: Sign-in token; anonymous sign-in is used when None

        Returns:
            The established identity

        Raises:
            AuthError: If sign-in exhausted its retries
        """
        self._watch()

        if token:
            method = "token"
            operation = lambda: self._auth.sign_in_with_token(token)  # noqa: E731
        else:
            method = "anonymous"
            operation = self._auth.sign_in_anonymously

        try:
            uid = await self._retry.execute(operation, description=f"sign-in ({method})")
        except Exception as e:
            logger.error(f"Identity bootstrap failed: {e}", extra={"method": method})
            raise AuthError(f"Sign-in failed: {e}", method=method) from e

        identity = Identity(uid=uid, anonymous=method == "anonymous")
        self._transition(identity)
        logger.info("Identity established", extra={"uid": uid, "method": method})
        return identity

    def on_change(self, callback: IdentityChangeCallback) -> Callable[[], None]:
        """Register the identity-change callback, replacing any previous one.

        Returns:
            Function that unregisters the callback
        """
        self._watch()
        self._callback = callback

        def unregister() -> None:
            if self._callback is callback:
                self._callback = None

        return unregister

    async def sign_out(self) -> None:
        """Sign out; the callback observes a transition to None."""
        await self._auth.sign_out()
        self._transition(None)

    def close(self) -> None:
        """Stop relaying provider notifications."""
        self._callback = None
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None

    def _watch(self) -> None:
        if self._unwatch is None:
            self._unwatch = self._auth.on_identity_change(self._on_provider_change)

    def _on_provider_change(self, uid: Optional[str]) -> None:
        if uid is None:
            self._transition(None)
        elif self._identity is None or self._identity.uid != uid:
            self._transition(Identity(uid=uid))

    def _transition(self, identity: Optional[Identity]) -> None:
        previous_uid = self._identity.uid if self._identity else None
        uid = identity.uid if identity else None
        if previous_uid == uid:
            return
        self._identity = identity
        logger.info("Identity changed", extra={"from_uid": previous_uid, "to_uid": uid})
        if self._callback is not None:
            self._callback(identity)
