"""
Application Models
==================

Configuration and state of a managed application.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

SYSTEM_FLAG = "system"


class ApplicationType(IntEnum):
    """Whether an application may run outside the foreground."""
    FOREGROUND = 0
    BACKGROUND = 1
    BACKGROUNDABLE = 2

    @classmethod
    def parse(cls, value: Any) -> Optional[ApplicationType]:
        """Return the type for an int or case-insensitive name, or None."""
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return None
        if isinstance(value, str):
            text = value.strip()
            if text.lstrip("-").isdigit():
                return cls.parse(int(text))
            return cls.__members__.get(text.upper())
        return None


class ApplicationState(str, Enum):
    """Supervisor-side lifecycle states."""
    INACTIVE = "inactive"
    IN_FOREGROUND = "inForeground"
    IN_BACKGROUND = "inBackground"
    PAUSED = "paused"


@dataclass
class ApplicationConfig:
    """Persisted configuration of one application."""
    name: str
    bin: str
    type: ApplicationType = ApplicationType.FOREGROUND
    display_name: str = ""
    description: str = ""
    flags: List[str] = field(default_factory=list)
    icon: str = ""
    on_pause: str = ""
    on_resume: str = ""
    on_stop: str = ""
    environment: Dict[str, str] = field(default_factory=dict)
    working_directory: str = ""
    user: Optional[str] = None
    group: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.name
        if not self.description:
            self.description = self.display_name
        # Flags keep their first-seen order
        self.flags = list(dict.fromkeys(f for f in self.flags if f))

    @property
    def is_system(self) -> bool:
        return SYSTEM_FLAG in self.flags

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "bin": self.bin,
            "type": int(self.type),
            "flags": list(self.flags),
            "icon": self.icon,
            "onPause": self.on_pause,
            "onResume": self.on_resume,
            "onStop": self.on_stop,
            "environment": dict(self.environment),
            "workingDirectory": self.working_directory,
        }
        if self.user is not None:
            data["user"] = self.user
        if self.group is not None:
            data["group"] = self.group
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ApplicationConfig:
        """Build a config from a record. Callers validate name/bin/type first."""
        app_type = ApplicationType.parse(data.get("type", ApplicationType.FOREGROUND))
        environment = data.get("environment")
        if not isinstance(environment, dict):
            environment = {}
        flags = data.get("flags")
        if not isinstance(flags, list):
            flags = []
        return cls(
            name=data["name"],
            bin=data["bin"],
            type=app_type if app_type is not None else ApplicationType.FOREGROUND,
            display_name=data.get("displayName") or "",
            description=data.get("description") or "",
            flags=[str(f) for f in flags],
            icon=data.get("icon") or "",
            on_pause=data.get("onPause") or "",
            on_resume=data.get("onResume") or "",
            on_stop=data.get("onStop") or "",
            environment={str(k): "" if v is None else str(v) for k, v in environment.items()},
            working_directory=data.get("workingDirectory") or "",
            user=data.get("user"),
            group=data.get("group"),
        )

    def copy(self) -> ApplicationConfig:
        return copy.deepcopy(self)
