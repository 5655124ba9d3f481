"""
IPC Surface
===========

Typed commands for the objects the registry exports on the bus: the
applications root object and one object per application.

Method and property names are enumerations; registration arguments are
validated with pydantic before they reach the registry.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from oxide_supervisor.errors import BusError, SpawnError
from oxide_supervisor.models.application import SYSTEM_FLAG, ApplicationType

if TYPE_CHECKING:
    from oxide_supervisor.application import Application
    from oxide_supervisor.registry import ApplicationRegistry

logger = logging.getLogger(__name__)


class AppsMethod(str, Enum):
    REGISTER_APPLICATION = "registerApplication"
    UNREGISTER_APPLICATION = "unregisterApplication"
    GET_APPLICATION_PATH = "getApplicationPath"
    RELOAD = "reload"


class AppsProperty(str, Enum):
    APPLICATIONS = "applications"
    RUNNING_APPLICATIONS = "runningApplications"
    PAUSED_APPLICATIONS = "pausedApplications"
    CURRENT_APPLICATION = "currentApplication"
    STARTUP_APPLICATION = "startupApplication"


class ApplicationMethod(str, Enum):
    LAUNCH = "launch"
    PAUSE = "pause"
    STOP = "stop"
    UNREGISTER = "unregister"


class ApplicationProperty(str, Enum):
    NAME = "name"
    DISPLAY_NAME = "displayName"
    DESCRIPTION = "description"
    BIN = "bin"
    TYPE = "type"
    STATE = "state"
    FLAGS = "flags"
    ICON = "icon"
    ENVIRONMENT = "environment"
    WORKING_DIRECTORY = "workingDirectory"
    PROCESS_ID = "processId"


def _parse_enum(enum_cls, value: str, kind: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise BusError(f"Unknown {kind}: {value}") from None


def _expect_args(method: Enum, args: Sequence[Any], count: int) -> None:
    if len(args) != count:
        raise BusError(f"{method.value} takes {count} argument(s), got {len(args)}")


class RegistrationRequest(BaseModel):
    """Properties accepted by registerApplication."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    bin: str = Field(min_length=1)
    type: int = int(ApplicationType.FOREGROUND)
    display_name: Optional[str] = Field(default=None, alias="displayName")
    description: Optional[str] = None
    flags: List[str] = Field(default_factory=list)
    icon: Optional[str] = None
    on_pause: Optional[str] = Field(default=None, alias="onPause")
    on_resume: Optional[str] = Field(default=None, alias="onResume")
    on_stop: Optional[str] = Field(default=None, alias="onStop")
    environment: Dict[str, str] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="workingDirectory")
    user: Optional[str] = None
    group: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _check_type(cls, value: Any) -> int:
        parsed = ApplicationType.parse(value)
        if parsed is None:
            raise ValueError(f"type must be one of {[t.name.lower() for t in ApplicationType]}")
        return int(parsed)

    @field_validator("environment", mode="before")
    @classmethod
    def _stringify_environment(cls, value: Any) -> Any:
        # Environment values arrive as whatever the caller serialised
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @field_validator("flags")
    @classmethod
    def _drop_system_flag(cls, flags: List[str]) -> List[str]:
        # Only descriptors may create system applications
        return [f for f in flags if f != SYSTEM_FLAG]

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AppsObject:
    """Root object exported at ``<service_path>/apps``."""

    def __init__(self, registry: ApplicationRegistry):
        self._registry = registry

    def call(self, method: str, *args: Any) -> Any:
        command = _parse_enum(AppsMethod, method, "method")

        if command == AppsMethod.REGISTER_APPLICATION:
            _expect_args(command, args, 1)
            return self.register_application(args[0])
        if command == AppsMethod.UNREGISTER_APPLICATION:
            _expect_args(command, args, 1)
            return self._registry.unregister_application(str(args[0]))
        if command == AppsMethod.GET_APPLICATION_PATH:
            _expect_args(command, args, 1)
            return self._registry.get_application_path(str(args[0]))

        _expect_args(command, args, 0)
        self._registry.reload()
        return None

    def register_application(self, properties: Any) -> str:
        if not isinstance(properties, dict):
            logger.debug(f"registerApplication expects a mapping, got {type(properties).__name__}")
            return "/"
        try:
            request = RegistrationRequest.model_validate(properties)
        except ValidationError as e:
            logger.debug(f"Invalid registration for {properties.get('name')!r}: {e}")
            return "/"
        return self._registry.register_application(request.to_record())

    def get(self, prop: str) -> Any:
        name = _parse_enum(AppsProperty, prop, "property")
        registry = self._registry
        if name == AppsProperty.APPLICATIONS:
            return registry.applications
        if name == AppsProperty.RUNNING_APPLICATIONS:
            return registry.running_applications
        if name == AppsProperty.PAUSED_APPLICATIONS:
            return registry.paused_applications
        if name == AppsProperty.CURRENT_APPLICATION:
            return registry.current_application
        return registry.startup_application

    def set(self, prop: str, value: Any) -> None:
        name = _parse_enum(AppsProperty, prop, "property")
        if name != AppsProperty.STARTUP_APPLICATION:
            raise BusError(f"Property {prop} is read-only")
        if not isinstance(value, str):
            raise BusError(f"{prop} must be an object path")
        self._registry.set_startup_application(value)


class ApplicationObject:
    """Per-application object exported at the application's path."""

    def __init__(self, app: Application, registry: ApplicationRegistry):
        self._app = app
        self._registry = registry

    def call(self, method: str, *args: Any) -> Any:
        command = _parse_enum(ApplicationMethod, method, "method")
        _expect_args(command, args, 0)

        if command == ApplicationMethod.LAUNCH:
            try:
                self._app.launch()
            except SpawnError as e:
                logger.warning(f"{e}")
                return False
            return True
        if command == ApplicationMethod.PAUSE:
            self._app.pause()
            return None
        if command == ApplicationMethod.STOP:
            self._app.stop()
            return None
        return self._registry.unregister_application(self._app.path)

    def get(self, prop: str) -> Any:
        name = _parse_enum(ApplicationProperty, prop, "property")
        app = self._app
        config = app.config
        values = {
            ApplicationProperty.NAME: config.name,
            ApplicationProperty.DISPLAY_NAME: config.display_name,
            ApplicationProperty.DESCRIPTION: config.description,
            ApplicationProperty.BIN: config.bin,
            ApplicationProperty.TYPE: int(config.type),
            ApplicationProperty.STATE: app.state.value,
            ApplicationProperty.FLAGS: list(config.flags),
            ApplicationProperty.ICON: config.icon,
            ApplicationProperty.ENVIRONMENT: dict(config.environment),
            ApplicationProperty.WORKING_DIRECTORY: config.working_directory,
            ApplicationProperty.PROCESS_ID: app.pid if app.is_process_alive() else 0,
        }
        return values[name]

    def set(self, prop: str, value: Any) -> None:
        _parse_enum(ApplicationProperty, prop, "property")
        raise BusError(f"Property {prop} is read-only")
