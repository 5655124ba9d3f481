"""
Supervisor Daemon
=================

Main entry point for the application supervisor.
Wires the main loop, bus, signal router, settings store and registry.
"""

from __future__ import annotations

import sys
import signal
import time
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from oxide_supervisor.bus import LocalBus
from oxide_supervisor.config import SupervisorConfig
from oxide_supervisor.errors import ConfigurationError
from oxide_supervisor.loop import MainLoop
from oxide_supervisor.registry import ApplicationRegistry
from oxide_supervisor.settings import SettingsStore
from oxide_supervisor.signal_router import SignalRouter

logger = logging.getLogger(__name__)


class SupervisorDaemon:
    """
    Application supervisor daemon.

    Owns the main loop; everything else runs as callbacks on it.
    """

    def __init__(self, config: Optional[SupervisorConfig] = None):
        self.config = config or SupervisorConfig()

        # Initialize subsystems
        self.loop = MainLoop()
        self.bus = LocalBus()
        self.signal_router = SignalRouter(self.loop)
        self.settings = SettingsStore(self.config.settings_path)
        self.registry = ApplicationRegistry(
            config=self.config,
            loop=self.loop,
            bus=self.bus,
            settings=self.settings,
            signal_router=self.signal_router,
        )

        # State
        self._running = False
        self._start_time: Optional[float] = None

    def start(self, install_signals: bool = True) -> None:
        """
        Start the supervisor.

        Raises ConfigurationError if the persisted settings are unusable.
        """
        if self._running:
            logger.warning("Daemon already running")
            return

        logger.info("Starting application supervisor...")

        self.registry.startup()

        if install_signals:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)
            self.signal_router.install()

        self._running = True
        self._start_time = time.time()
        logger.info("Application supervisor started")

    def stop(self) -> None:
        """Stop every application and the supervisor."""
        if not self._running:
            return

        logger.info("Stopping application supervisor...")
        self.registry.shutdown()
        self.signal_router.uninstall()
        self._running = False
        logger.info("Application supervisor stopped")

    def run(self) -> None:
        """Run the daemon until signaled to stop."""
        self.start()
        try:
            self.loop.run()
        finally:
            self.stop()

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.loop.stop()

    # ─────────────────────────────────────────────────────────────────
    # Device power notifications
    # ─────────────────────────────────────────────────────────────────

    def on_device_suspending(self) -> None:
        logger.info("Device suspending, pausing applications")
        self.loop.post(self.registry.pause_all)

    def on_device_resuming(self) -> None:
        logger.info("Device resuming")
        self.loop.post(self.registry.resume_if_none)
        self.loop.post(self.registry.resume_frozen)

    def get_status(self) -> Dict[str, Any]:
        """Get daemon status."""
        return {
            "running": self._running,
            "uptime_sec": time.time() - self._start_time if self._start_time else 0,
            "registry": self.registry.get_stats(),
            "bus": self.bus.get_stats(),
            "signals": self.signal_router.get_stats(),
        }


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Oxide application supervisor")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (TOML)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides the configuration file)",
    )

    args = parser.parse_args()

    config = SupervisorConfig.load(args.config)

    # Setup logging
    level = args.log_level or config.log_level
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    daemon = SupervisorDaemon(config)
    try:
        daemon.run()
    except ConfigurationError as e:
        logger.error(f"Unable to start: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
