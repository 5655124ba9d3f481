"""Data models for the Oxide application supervisor."""

from oxide_supervisor.models.application import (
    ApplicationConfig, ApplicationState, ApplicationType, SYSTEM_FLAG,
)
from oxide_supervisor.models.events import Event, EventType

__all__ = [
    "ApplicationConfig", "ApplicationState", "ApplicationType", "SYSTEM_FLAG",
    "Event", "EventType",
]
