"""
Event Models
============

Events broadcast by the registry. Each event type carries a fixed schema:
the application object path, plus an exit code for APPLICATION_EXITED.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """Events emitted on the bus."""
    APPLICATION_REGISTERED = "applicationRegistered"
    APPLICATION_UNREGISTERED = "applicationUnregistered"
    APPLICATION_LAUNCHED = "applicationLaunched"
    APPLICATION_PAUSED = "applicationPaused"
    APPLICATION_RESUMED = "applicationResumed"
    APPLICATION_SIGNALED = "applicationSignaled"
    APPLICATION_EXITED = "applicationExited"


@dataclass(frozen=True)
class Event:
    """A single broadcast event."""
    type: EventType
    path: str
    exit_code: Optional[int] = None
    timestamp: float = field(default_factory=time.time, compare=False)

    def __post_init__(self) -> None:
        if self.type == EventType.APPLICATION_EXITED and self.exit_code is None:
            raise ValueError("applicationExited requires an exit code")
        if self.type != EventType.APPLICATION_EXITED and self.exit_code is not None:
            raise ValueError(f"{self.type.value} does not carry an exit code")

    @property
    def args(self) -> tuple:
        """Positional signal arguments as seen by subscribers."""
        if self.type == EventType.APPLICATION_EXITED:
            return (self.path, self.exit_code)
        return (self.path,)

