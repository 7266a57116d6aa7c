"""Process-wide authenticated flag the UI navigates on."""

from __future__ import annotations

import logging

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("fleetmaster.auth")


class AppSessionState:
    """Whether the user is authenticated for navigation purposes.

    Only the auth orchestrator writes it. Listeners are called with the
    new value when it actually changes.
    """

    def __init__(self, is_logged_in: bool = False) -> None:
        self._is_logged_in = is_logged_in
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_logged_in(self) -> bool:
        return self._is_logged_in

    def set_logged_in(self, value: bool) -> None:
        """Update the flag and notify listeners on change."""
        if value == self._is_logged_in:
            return
        self._is_logged_in = value
        logger.info("Application session %s", "authenticated" if value else "signed out")
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("App session listener failed")

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[bool], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
