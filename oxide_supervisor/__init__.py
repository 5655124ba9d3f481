"""
Oxide Application Supervisor
============================

Launches, pauses and stops the applications of a single-user embedded
device session, arbitrates which one holds the display, and keeps the
application registry in step with persisted settings and system
application descriptors.

Architecture:
    MainLoop            - Single-threaded dispatcher every mutation runs on
    ApplicationRegistry - Owns applications, the foreground slot, reconciliation
    Application         - One managed process and its lifecycle state
    SignalRouter        - Forwards SIGUSR1/SIGUSR2 to the foreground application
    LocalBus            - Exported objects and broadcast events
"""

from oxide_supervisor.models.application import (
    ApplicationConfig, ApplicationState, ApplicationType, SYSTEM_FLAG,
)
from oxide_supervisor.models.events import Event, EventType
from oxide_supervisor.errors import (
    SupervisorError, ConfigurationError, SpawnError, BusError,
)

from oxide_supervisor.loop import MainLoop
from oxide_supervisor.bus import LocalBus
from oxide_supervisor.signal_router import SignalRouter
from oxide_supervisor.settings import SettingsStore, SETTINGS_VERSION
from oxide_supervisor.config import SupervisorConfig
from oxide_supervisor.application import Application
from oxide_supervisor.registry import ApplicationRegistry
from oxide_supervisor.daemon import SupervisorDaemon

__all__ = [
    # Models
    "ApplicationConfig", "ApplicationState", "ApplicationType", "SYSTEM_FLAG",
    "Event", "EventType",
    # Errors
    "SupervisorError", "ConfigurationError", "SpawnError", "BusError",
    # Core
    "MainLoop",
    "LocalBus",
    "SignalRouter",
    "SettingsStore", "SETTINGS_VERSION",
    "SupervisorConfig",
    "Application",
    "ApplicationRegistry",
    "SupervisorDaemon",
]

__version__ = "0.1.0"
