"""Identity provider interface and the local single-account implementation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from barta.config import Settings
from barta.models.quota import User

logger = logging.getLogger(__name__)

AuthListener = Callable[[Optional[User]], None]


class IdentityProvider(ABC):
    """Interface for signing users in and observing the auth state."""

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []
        self._resolved = False

    @property
    @abstractmethod
    def current_user(self) -> Optional[User]:
        pass

    @abstractmethod
    async def sign_in(self) -> User:
        """Sign in and return the user; raises on failure."""
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe to auth changes; returns a callable that unsubscribes.

        A listener added after the state resolved is called immediately with
        the current user.
        """
        self._listeners.append(listener)
        if self._resolved:
            listener(self.current_user)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        self._resolved = True
        for listener in list(self._listeners):
            listener(self.current_user)


class LocalIdentityProvider(IdentityProvider):
    """One preconfigured account, for local single-user deployments.

    Signing in activates the configured account; without a configured user id
    ``sign_in`` fails.
    """

    def __init__(self, account: Optional[User] = None, signed_in: bool = False) -> None:
        super().__init__()
        self._account = account
        self._user: Optional[User] = account if signed_in else None
        # Nothing to wait for locally: the initial state is known right away.
        self._resolved = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalIdentityProvider":
        if not settings.local_user_id:
            return cls()
        account = User(
            uid=settings.local_user_id,
            display_name=settings.local_user_name or None,
            photo_url=settings.local_user_photo_url or None,
        )
        return cls(account, signed_in=True)

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    async def sign_in(self) -> User:
        if self._account is None:
            raise RuntimeError("No local account configured (LOCAL_USER_ID)")
        self._user = self._account
        logger.info("Signed in as %s", self._user.uid)
        self._emit()
        return self._user

    async def sign_out(self) -> None:
        if self._user is not None:
            logger.info("Signed out %s", self._user.uid)
        self._user = None
        self._emit()
