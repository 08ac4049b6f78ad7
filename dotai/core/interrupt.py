"""Operator interrupt handling for generation runs.

The first SIGINT/SIGTERM is recorded and the run stops scheduling new work;
later signals are ignored so the shutdown path (saving completed records)
runs exactly once.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class InterruptGuard:
    """Context manager that converts the first interrupt into a flag.

    Parameters
    ----------
    on_interrupt:
        Called once, from the signal handler, when the first signal arrives.
    raise_interrupt:
        When ``True`` (default) the first signal also raises
        ``KeyboardInterrupt`` in the main thread, so a blocking agent call
        is abandoned. Callers catch it and persist completed work.
    """

    def __init__(
        self,
        on_interrupt: Callable[[], None] | None = None,
        *,
        raise_interrupt: bool = True,
    ) -> None:
        self._on_interrupt = on_interrupt
        self._raise = raise_interrupt
        self._event = threading.Event()
        self._previous: dict[int, Any] = {}

    @property
    def interrupted(self) -> bool:
        return self._event.is_set()

    def trigger(self, signum: int = signal.SIGINT) -> bool:
        """Record an interrupt. Returns ``True`` only for the first one."""
        if self._event.is_set():
            logger.debug("Ignoring repeated signal %s", signum)
            return False
        self._event.set()
        logger.warning("Received %s, stopping after completed work is saved", _name(signum))
        if self._on_interrupt is not None:
            self._on_interrupt()
        return True

    def hold(self) -> None:
        """Stop raising ``KeyboardInterrupt``; later signals only set the flag."""
        self._raise = False

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        if self.trigger(signum) and self._raise:
            raise KeyboardInterrupt

    def __enter__(self) -> InterruptGuard:
        # Signal handlers can only be installed from the main thread.
        if threading.current_thread() is threading.main_thread():
            for sig in _SIGNALS:
                self._previous[sig] = signal.signal(sig, self._handle)
        return self

    def __exit__(self, *exc: object) -> None:
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()


def _name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
