"""
Supervisor Test Configuration
=============================

Fixtures: fake application executables, a main loop, a bus with an event
recorder, and a registry backed by a temporary settings file.
"""

import logging
from pathlib import Path

import pytest

from oxide_supervisor.bus import LocalBus
from oxide_supervisor.config import SupervisorConfig
from oxide_supervisor.loop import MainLoop
from oxide_supervisor.models.application import ApplicationState, ApplicationType
from oxide_supervisor.registry import ApplicationRegistry

logger = logging.getLogger(__name__)


# Keeps running until SIGTERM; ignores the cooperative signals
LONG_RUNNING = """#!/bin/sh
trap '' USR1 USR2
trap 'exit 0' TERM
while true; do
    sleep 0.1
done
"""

EXITS_IMMEDIATELY = """#!/bin/sh
exit 3
"""


class EventRecorder:
    """Bus subscriber that keeps every event it sees."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if e.type == event_type]

    def clear(self):
        self.events.clear()


@pytest.fixture
def make_executable(tmp_path):
    """Write an executable shell script and return its path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name="app", body=LONG_RUNNING):
        path = bin_dir / name
        path.write_text(body)
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture
def config(tmp_path):
    return SupervisorConfig(
        settings_path=tmp_path / "settings" / "tarnish.json",
        descriptor_dir=tmp_path / "applications",
        stop_timeout_sec=2.0,
        hook_timeout_sec=2.0,
    )


@pytest.fixture
def loop():
    loop = MainLoop()
    yield loop
    loop.process_pending()


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def recorder(bus):
    recorder = EventRecorder()
    bus.subscribe(recorder)
    return recorder


@pytest.fixture
def registry(config, loop, bus, recorder):
    registry = ApplicationRegistry(config=config, loop=loop, bus=bus)
    yield registry
    registry.shutdown()


@pytest.fixture
def register(registry, make_executable):
    """Register an application backed by a fake executable; returns it."""

    def _register(name, app_type=ApplicationType.FOREGROUND, body=LONG_RUNNING, **extra):
        bin_path = make_executable(name, body)
        properties = {"name": name, "bin": str(bin_path), "type": int(app_type)}
        properties.update(extra)
        path = registry.register_application(properties)
        assert path != "/"
        return registry.get_application(path)

    return _register


@pytest.fixture
def wait_inactive(loop):
    """Drain the loop until an application is Inactive and its process is gone."""

    def _wait(app, timeout=5.0):
        return loop.wait_for(
            lambda: app.state == ApplicationState.INACTIVE and not app.is_process_alive(),
            timeout=timeout,
        )

    return _wait
