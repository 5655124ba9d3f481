"""
Signal Router
=============

Routes SIGUSR1 (foreground entry) and SIGUSR2 (background entry) received by
the supervisor to exactly the current foreground application. The wiring is
redone on every foreground change.
"""

from __future__ import annotations

import signal
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from oxide_supervisor.loop import MainLoop

if TYPE_CHECKING:
    from oxide_supervisor.application import Application

logger = logging.getLogger(__name__)

ROUTED_SIGNALS = (signal.SIGUSR1, signal.SIGUSR2)


class SignalRouter:
    """Forwards cooperative OS signals to the foreground application."""

    def __init__(self, loop: MainLoop):
        self._loop = loop
        self._target: Optional[Application] = None
        self._connections: Dict[int, Callable[[], None]] = {}
        self._previous_handlers: Dict[int, Any] = {}
        self._dropped = 0

    @property
    def target(self) -> Optional[Application]:
        return self._target

    def route_to(self, app: Application) -> None:
        """Wire both signals to app, disconnecting the previous target."""
        if self._target is app:
            return
        self._disconnect()
        self._target = app
        self._connections = {
            signal.SIGUSR1: app.sig_usr1,
            signal.SIGUSR2: app.sig_usr2,
        }
        logger.debug(f"Signals routed to {app.name}")

    def release(self, app: Application) -> None:
        """Drop the wiring if app is the current target."""
        if self._target is app:
            self._disconnect()

    def _disconnect(self) -> None:
        if self._target is not None:
            logger.debug(f"Signals unrouted from {self._target.name}")
        self._target = None
        self._connections = {}

    def dispatch(self, signum: int) -> bool:
        """Deliver a signal to the wired application. Runs on the main loop."""
        handler = self._connections.get(signum)
        if handler is None:
            self._dropped += 1
            logger.debug(f"No foreground application for signal {signum}")
            return False
        handler()
        return True

    # ─────────────────────────────────────────────────────────────────
    # OS handlers
    # ─────────────────────────────────────────────────────────────────

    def install(self) -> None:
        """Install process signal handlers. Must be called from the main thread."""
        for signum in ROUTED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_os_signal)
        logger.debug("Signal router installed")

    def uninstall(self) -> None:
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()

    def _handle_os_signal(self, signum: int, frame: Any) -> None:
        # Handlers only hand off to the main loop
        self._loop.post(self.dispatch, signum)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "target": self._target.name if self._target else None,
            "dropped": self._dropped,
        }
