"""Resend cooldown for one-time codes.

The countdown runs as one asyncio task owned by the cooldown object, so
cancelling it on sign-out or teardown is deterministic.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("fleetmaster.auth")

DEFAULT_RESEND_COOLDOWN = 30


class ResendCooldown:
    """Seconds remaining before another code may be requested.

    Parameters
    ----------
    interval : float
        Seconds between ticks (default ``1.0``).
    on_tick : callable, optional
        Called with the remaining seconds after every change.
    """

    def __init__(
        self,
        interval: float = 1.0,
        on_tick: Callable[[int], None] | None = None,
    ) -> None:
        """Initialize the cooldown at zero."""
        self.interval = interval
        self.on_tick = on_tick
        self._remaining = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def remaining(self) -> int:
        """Seconds left before a resend is allowed."""
        return self._remaining

    @property
    def ready(self) -> bool:
        """Whether a resend is allowed now."""
        return self._remaining == 0

    @property
    def running(self) -> bool:
        """Whether the countdown task is active."""
        return self._task is not None and not self._task.done()

    def start(self, seconds: int = DEFAULT_RESEND_COOLDOWN) -> None:
        """Restart the countdown at ``seconds``.

        Any previous countdown task is cancelled first. Outside a running
        event loop only the counter is set; ``tick()`` can drive it.
        """
        self.cancel()
        self._set(seconds)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, cooldown set to %ss without a timer", seconds)
            return
        self._task = loop.create_task(self._run())

    def tick(self) -> int:
        """Advance the countdown by one second."""
        if self._remaining > 0:
            self._set(self._remaining - 1)
        return self._remaining

    def cancel(self) -> None:
        """Stop the countdown task, keeping the counter as it is."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None

    def reset(self) -> None:
        """Stop the countdown and clear the counter."""
        self.cancel()
        self._set(0)

    async def _run(self) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            while self._remaining > 0:
                await asyncio.sleep(self.interval)
                self.tick()

    def _set(self, value: int) -> None:
        self._remaining = max(0, value)
        if self.on_tick is not None:
            try:
                self.on_tick(self._remaining)
            except Exception:
                logger.exception("Cooldown listener failed")
