"""Global error surface shared by every chat component."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, Field

from barta.chat.exceptions import BartaError
from barta.personality.loader import get_error_messages

logger = logging.getLogger(__name__)


class ErrorReport(BaseModel):
    """The most recent error shown to the user."""

    kind: str
    message: str
    reported_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


ErrorListener = Callable[[Optional[ErrorReport]], None]


class ErrorChannel:
    """Holds the latest reported error and notifies subscribers on change."""

    def __init__(self, messages: dict[str, str] | None = None) -> None:
        self._messages = messages if messages is not None else get_error_messages()
        self._current: ErrorReport | None = None
        self._listeners: list[ErrorListener] = []

    @property
    def current(self) -> ErrorReport | None:
        return self._current

    def message_for(self, error: BartaError) -> str:
        """Return the user-facing text for ``error``."""
        return self._messages.get(error.message_key) or str(error) or error.message_key

    def report(self, error: BartaError) -> ErrorReport:
        report = ErrorReport(kind=type(error).__name__, message=self.message_for(error))
        logger.warning("Reporting %s: %s", report.kind, error)
        self._current = report
        self._notify()
        return report

    def clear(self) -> None:
        if self._current is None:
            return
        self._current = None
        self._notify()

    def subscribe(self, listener: ErrorListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._current)
