"""
Errors
======

Exception hierarchy for the supervisor.

Validation and protection failures are reported through return values
("/" paths, False); only the conditions below raise.
"""


class SupervisorError(Exception):
    """Base class for supervisor errors."""


class ConfigurationError(SupervisorError):
    """Persisted settings cannot be used (unknown or unmigratable version)."""


class SpawnError(SupervisorError):
    """An application process could not be started."""


class BusError(SupervisorError):
    """Unknown object path, method or property on the bus."""
