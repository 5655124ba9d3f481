"""
Application Registry
====================

Owns every Application, arbitrates the single foreground slot, selects the
startup application and reconciles in-memory state with the settings store
and the descriptor directory.

Runs entirely on the main loop; no locking.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from oxide_supervisor.application import Application
from oxide_supervisor.bus import LocalBus
from oxide_supervisor.config import SupervisorConfig
from oxide_supervisor.descriptors import scan_descriptors
from oxide_supervisor.errors import SpawnError
from oxide_supervisor.loop import MainLoop
from oxide_supervisor.models.application import (
    ApplicationConfig, ApplicationState, ApplicationType,
)
from oxide_supervisor.models.events import Event, EventType
from oxide_supervisor.settings import SettingsStore
from oxide_supervisor.signal_router import SignalRouter

logger = logging.getLogger(__name__)

# Namespace for deriving application object paths from names
PATH_NAMESPACE = uuid.UUID("d736a9e1-10a9-4258-9634-4b0fa91189d5")

# "No object" sentinel path
NO_PATH = "/"


def application_path(service_path: str, name: str) -> str:
    """Deterministic object path for an application name."""
    return f"{service_path}/apps/{uuid.uuid5(PATH_NAMESPACE, name).hex}"


def validate_properties(properties: Dict[str, Any], check_bin: bool = True) -> Optional[str]:
    """Return why a registration record is invalid, or None if it is usable."""
    name = properties.get("name")
    if not isinstance(name, str) or not name:
        return "missing name"
    bin_path = properties.get("bin")
    if not isinstance(bin_path, str) or not bin_path:
        return "missing bin"
    if ApplicationType.parse(properties.get("type", ApplicationType.FOREGROUND)) is None:
        return f"invalid type {properties.get('type')!r}"
    if check_bin and not Path(bin_path).exists():
        return f"binary {bin_path} does not exist"
    return None


class ApplicationRegistry:
    """
    The in-memory collection of applications, keyed by name.

    At most one application is InForeground at any time; the registry
    enforces this by pausing the current foreground application whenever
    another is launched.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        loop: MainLoop,
        bus: LocalBus,
        settings: Optional[SettingsStore] = None,
        signal_router: Optional[SignalRouter] = None,
    ):
        self.config = config
        self.loop = loop
        self.bus = bus
        self.settings = settings or SettingsStore(config.settings_path)
        self.signal_router = signal_router or SignalRouter(loop)

        self._applications: Dict[str, Application] = {}
        self._startup_name: Optional[str] = None
        self._stopping = False
        self._enabled = True
        # Names of applications frozen by the last pause_all
        self._frozen: List[str] = []

        self._write_depth = 0
        self._write_pending = False

        self._root = None

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    @property
    def stopping(self) -> bool:
        return self._stopping

    def startup(self) -> None:
        """
        Load settings, reconcile, select the startup application and launch
        it if nothing is in the foreground.

        Raises ConfigurationError if the settings cannot be migrated.
        """
        logger.info("Starting application registry...")
        self.settings.load()
        self.read_applications(sync=False)
        self.write_applications()

        for name in (self.settings.startup_application, self.config.default_startup_application):
            if not name:
                continue
            if name in self._applications:
                self._startup_name = name
                break
            logger.warning(f"Startup application {name} is not registered")

        self.set_enabled(True)
        logger.info(f"Application registry started ({len(self._applications)} applications)")
        self.resume_if_none()

    def shutdown(self) -> None:
        """Stop every application and wait for all of them to exit."""
        logger.info("Stopping application registry...")
        self._stopping = True
        self.write_applications()
        apps = list(self._applications.values())
        for app in apps:
            app.stop()
        for app in apps:
            app.wait_for_finished()
        self.set_enabled(False)
        self._applications.clear()
        logger.info("Application registry stopped")

    def set_enabled(self, enabled: bool) -> None:
        """Export or withdraw every object on the bus."""
        logger.debug(f"Apps API {'enabled' if enabled else 'disabled'}")
        self._enabled = enabled
        root = self._root_object()
        if enabled:
            self.bus.export(self.config.apps_path, root)
        else:
            self.bus.unexport(self.config.apps_path)
        for app in self._applications.values():
            if enabled:
                self._export(app)
            else:
                self.bus.unexport(app.path)

    # ─────────────────────────────────────────────────────────────────
    # Registration
    # ─────────────────────────────────────────────────────────────────

    def get_path(self, name: str) -> str:
        return application_path(self.config.service_path, name)

    def register_application(self, properties: Dict[str, Any]) -> str:
        """
        Register an application and return its object path.

        Returns NO_PATH for invalid input. Registering a known name returns
        the existing path without changing anything.
        """
        problem = validate_properties(properties)
        if problem is not None:
            logger.debug(f"Rejected registration of {properties.get('name')!r}: {problem}")
            return NO_PATH

        name = properties["name"]
        existing = self._applications.get(name)
        if existing is not None:
            return existing.path

        path = self.get_path(name)
        app = Application(path, ApplicationConfig.from_dict(properties), self)
        self._applications[name] = app
        self.write_applications()
        if self._enabled:
            self._export(app)
        logger.info(f"Registered {name} at {path}")
        self.bus.emit(Event(EventType.APPLICATION_REGISTERED, path))
        return path

    def unregister_application(self, path: str) -> bool:
        """
        Unregister by path.

        Unknown paths succeed; system applications cannot be unregistered.
        """
        app = self.get_application(path)
        if app is None:
            return True
        if app.is_system:
            logger.debug(f"Refusing to unregister system application {app.name}")
            return False
        self.remove_application(app)
        return True

    def remove_application(self, app: Application) -> None:
        """Stop and remove an application regardless of its flags."""
        if self._applications.get(app.name) is not app:
            return
        app.stop()
        app.wait_for_finished()
        del self._applications[app.name]
        self.bus.unexport(app.path)
        logger.info(f"Unregistered {app.name}")
        self.bus.emit(Event(EventType.APPLICATION_UNREGISTERED, app.path))
        self.write_applications()

    def reload(self) -> None:
        """Reconcile with the settings store and descriptors, then persist."""
        self.read_applications()
        self.write_applications()

    # ─────────────────────────────────────────────────────────────────
    # Reconciliation
    # ─────────────────────────────────────────────────────────────────

    def read_applications(self, sync: bool = True) -> None:
        """
        Three-way merge of the registry, the settings store and the
        descriptor directory. Each step is idempotent.
        """
        if sync:
            self.settings.sync()

        with self._deferred_writes():
            records = self.settings.records()

            # 1. The settings store is authoritative for user applications
            persisted = {r.get("name") for r in records if isinstance(r.get("name"), str)}
            for app in list(self._applications.values()):
                if not app.is_system and app.name not in persisted:
                    logger.info(f"{app.name} no longer in settings, removing")
                    self.remove_application(app)

            # 2. Create or update from persisted records
            for record in records:
                problem = validate_properties(record, check_bin=False)
                if problem is not None:
                    logger.warning(f"Skipping settings record {record.get('name')!r}: {problem}")
                    continue
                self._create_or_update(record)

            # 3. System applications from descriptors
            scan = scan_descriptors(self.config.descriptor_dir, self.config.descriptor_suffix)

            # 4. Retire system applications whose descriptor is gone
            for app in list(self._applications.values()):
                if app.is_system and app.name not in scan.present:
                    logger.info(f"Descriptor for {app.name} removed, retiring it")
                    self.remove_application(app)

            for record in scan.records.values():
                self._create_or_update(record)

    def _create_or_update(self, record: Dict[str, Any]) -> None:
        existing = self._applications.get(record["name"])
        if existing is None:
            self.register_application(record)
            return
        if existing.set_config(ApplicationConfig.from_dict(record)):
            self.write_applications()

    def write_applications(self) -> bool:
        """Persist every application's configuration. Returns True if written."""
        if self._write_depth:
            self._write_pending = True
            return False
        records = [app.get_config() for app in sorted(self._applications.values(), key=lambda a: a.name)]
        return self.settings.write_applications(records)

    @contextmanager
    def _deferred_writes(self) -> Iterator[None]:
        """Coalesce writes issued inside the block into one."""
        self._write_depth += 1
        try:
            yield
        finally:
            self._write_depth -= 1
            if self._write_depth == 0 and self._write_pending:
                self._write_pending = False
                self.write_applications()

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    def get_application(self, path: str) -> Optional[Application]:
        for app in self._applications.values():
            if app.path == path:
                return app
        return None

    def get_application_by_name(self, name: str) -> Optional[Application]:
        return self._applications.get(name)

    def get_application_path(self, name: str) -> str:
        app = self._applications.get(name)
        return app.path if app is not None else NO_PATH

    def list_applications(self) -> List[Application]:
        return list(self._applications.values())

    @property
    def applications(self) -> Dict[str, str]:
        return {app.name: app.path for app in self._applications.values()}

    def foreground_application(self) -> Optional[Application]:
        for app in self._applications.values():
            if app.state == ApplicationState.IN_FOREGROUND:
                return app
        return None

    @property
    def current_application(self) -> str:
        app = self.foreground_application()
        return app.path if app is not None else NO_PATH

    @property
    def running_applications(self) -> Dict[str, str]:
        running = (ApplicationState.IN_FOREGROUND, ApplicationState.IN_BACKGROUND)
        return {a.name: a.path for a in self._applications.values() if a.state in running}

    @property
    def paused_applications(self) -> Dict[str, str]:
        return {a.name: a.path for a in self._applications.values() if a.state == ApplicationState.PAUSED}

    # ─────────────────────────────────────────────────────────────────
    # Startup application
    # ─────────────────────────────────────────────────────────────────

    def startup_app(self) -> Optional[Application]:
        """Resolve the startup application; None once it is unregistered."""
        if self._startup_name is None:
            return None
        return self._applications.get(self._startup_name)

    @property
    def startup_application(self) -> str:
        app = self.startup_app()
        return app.path if app is not None else NO_PATH

    def set_startup_application(self, path: str) -> bool:
        """Point the startup application at path. Unknown paths are ignored."""
        app = self.get_application(path)
        if app is None:
            logger.debug(f"Ignoring unknown startup application {path}")
            return False
        self._startup_name = app.name
        self.settings.set_startup_application(app.name)
        logger.info(f"Startup application set to {app.name}")
        return True

    # ─────────────────────────────────────────────────────────────────
    # Arbitration
    # ─────────────────────────────────────────────────────────────────

    def pause_all(self) -> None:
        """Pause everything for a device suspend."""
        for app in list(self._applications.values()):
            app.pause(stopping=True)
            if app.state == ApplicationState.PAUSED and app.name not in self._frozen:
                self._frozen.append(app.name)

    def resume_frozen(self) -> None:
        """Let applications frozen by pause_all run on in the background."""
        frozen, self._frozen = self._frozen, []
        for name in frozen:
            app = self._applications.get(name)
            if app is not None and app.state == ApplicationState.PAUSED:
                app.thaw()

    def resume_if_none(self) -> None:
        """Launch the startup application if nothing holds the foreground."""
        if self._stopping:
            return
        if self.foreground_application() is not None:
            return
        app = self.startup_app()
        if app is None:
            logger.debug("No startup application to resume")
            return
        self._launch(app)

    def left_held(self) -> None:
        """Jump to the startup application."""
        app = self.startup_app()
        if app is None:
            logger.warning("No startup application configured")
            return
        current = self.foreground_application()
        if current is app:
            logger.debug("Already at startup application")
            return
        self._launch(app)

    def home_held(self) -> None:
        """Bring up the process manager."""
        app = self._applications.get(self.config.process_manager)
        if app is None:
            logger.warning("Unable to find process manager")
            return
        if app.state == ApplicationState.IN_FOREGROUND:
            logger.debug("Process manager already running")
            return
        self._launch(app)

    def _launch(self, app: Application) -> bool:
        try:
            app.launch()
        except SpawnError as e:
            logger.error(f"{e}")
            return False
        return True

    # ─────────────────────────────────────────────────────────────────
    # Bus plumbing
    # ─────────────────────────────────────────────────────────────────

    def _root_object(self):
        if self._root is None:
            from oxide_supervisor.interfaces import AppsObject
            self._root = AppsObject(self)
        return self._root

    def _export(self, app: Application) -> None:
        if self.bus.is_exported(app.path):
            return
        from oxide_supervisor.interfaces import ApplicationObject
        self.bus.export(app.path, ApplicationObject(app, self))

    def get_stats(self) -> Dict[str, Any]:
        states: Dict[str, int] = {}
        for app in self._applications.values():
            states[app.state.value] = states.get(app.state.value, 0) + 1
        return {
            "applications": len(self._applications),
            "states": states,
            "current": self.current_application,
            "startup": self._startup_name,
            "stopping": self._stopping,
            "settings_writes": self.settings.write_count,
        }
