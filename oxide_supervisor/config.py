"""
Supervisor Configuration
========================

Loaded from a TOML file; every key is optional.

    log_level = "INFO"

    [paths]
    settings = "/home/root/.config/Eeems/tarnish.json"
    descriptors = "/opt/usr/share/applications"
    descriptor_suffix = ".oxide"

    [bus]
    service_path = "/codes/eeems/oxide1"

    [applications]
    process_manager = "codes.eeems.erode"
    default_startup = "codes.eeems.oxide"

    [timeouts]
    stop_sec = 5.0
    hook_sec = 10.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from oxide_supervisor.descriptors import DEFAULT_DESCRIPTOR_DIR, DEFAULT_DESCRIPTOR_SUFFIX

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_PATH = "/codes/eeems/oxide1"
DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "Eeems" / "tarnish.json"
DEFAULT_CONFIG_PATH = Path("/etc/oxide/supervisor.toml")
PROCESS_MANAGER = "codes.eeems.erode"


@dataclass
class SupervisorConfig:
    """Paths, names and timeouts used by the supervisor."""
    settings_path: Path = field(default_factory=lambda: DEFAULT_SETTINGS_PATH)
    descriptor_dir: Path = field(default_factory=lambda: DEFAULT_DESCRIPTOR_DIR)
    descriptor_suffix: str = DEFAULT_DESCRIPTOR_SUFFIX
    service_path: str = DEFAULT_SERVICE_PATH
    process_manager: str = PROCESS_MANAGER
    default_startup_application: Optional[str] = None
    stop_timeout_sec: float = 5.0
    hook_timeout_sec: float = 10.0
    log_level: str = "INFO"

    # File path (for reload)
    _config_path: Optional[Path] = field(default=None, repr=False, compare=False)

    @property
    def apps_path(self) -> str:
        """Object path of the applications root object."""
        return f"{self.service_path}/apps"

    @classmethod
    def from_toml(cls, path: Path) -> SupervisorConfig:
        """Load configuration from a TOML file."""
        with open(path, "rb") as f:
            data = tomllib.load(f)

        config = cls()
        config._config_path = Path(path)

        paths = data.get("paths", {})
        if "settings" in paths:
            config.settings_path = Path(paths["settings"])
        if "descriptors" in paths:
            config.descriptor_dir = Path(paths["descriptors"])
        config.descriptor_suffix = paths.get("descriptor_suffix", config.descriptor_suffix)

        bus = data.get("bus", {})
        config.service_path = bus.get("service_path", config.service_path).rstrip("/")

        apps = data.get("applications", {})
        config.process_manager = apps.get("process_manager", config.process_manager)
        config.default_startup_application = apps.get("default_startup")

        timeouts = data.get("timeouts", {})
        config.stop_timeout_sec = float(timeouts.get("stop_sec", config.stop_timeout_sec))
        config.hook_timeout_sec = float(timeouts.get("hook_sec", config.hook_timeout_sec))

        config.log_level = str(data.get("log_level", config.log_level)).upper()

        logger.info(f"Loaded supervisor configuration from {path}")
        return config

    @classmethod
    def load(cls, path: Optional[Path] = None) -> SupervisorConfig:
        """Load from path (or the default location), falling back to defaults."""
        target = Path(path) if path is not None else DEFAULT_CONFIG_PATH
        if target.exists():
            return cls.from_toml(target)
        if path is not None:
            logger.warning(f"Configuration file {target} not found, using defaults")
        else:
            logger.info("Using default configuration (no config file found)")
        return cls()

    def reload(self) -> bool:
        """Reload configuration from disk."""
        if self._config_path is None:
            return False
        try:
            fresh = SupervisorConfig.from_toml(self._config_path)
        except (OSError, tomllib.TOMLDecodeError, ValueError) as e:
            logger.error(f"Failed to reload configuration: {e}")
            return False
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(fresh, name))
        logger.info("Configuration reloaded")
        return True
