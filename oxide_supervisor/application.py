"""
Application
===========

One managed application: its configuration, its supervisor-side state and
the OS process it exclusively owns.

All methods except the process watcher run on the main loop.
"""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
import threading
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from oxide_supervisor.errors import SpawnError
from oxide_supervisor.models.application import (
    ApplicationConfig, ApplicationState, ApplicationType,
)
from oxide_supervisor.models.events import Event, EventType
from oxide_supervisor.state_machine import Transition, next_state

if TYPE_CHECKING:
    from oxide_supervisor.registry import ApplicationRegistry

logger = logging.getLogger(__name__)


class Application:
    """
    A launchable application.

    State changes go through the transition table in state_machine.py;
    each one is followed by a settings write.
    """

    def __init__(
        self,
        path: str,
        config: ApplicationConfig,
        registry: ApplicationRegistry,
    ):
        self._path = path
        self._config = config.copy()
        self._registry = registry

        self._state = ApplicationState.INACTIVE
        self._process: Optional[subprocess.Popen] = None
        self._suspending = False
        self.exit_code: Optional[int] = None

    # ─────────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────────

    @property
    def path(self) -> str:
        return self._path

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def state(self) -> ApplicationState:
        return self._state

    @property
    def type(self) -> ApplicationType:
        return self._config.type

    @property
    def config(self) -> ApplicationConfig:
        return self._config.copy()

    @property
    def is_system(self) -> bool:
        return self._config.is_system

    @property
    def pid(self) -> Optional[int]:
        if self._process is None:
            return None
        return self._process.pid

    def is_process_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def get_config(self) -> Dict[str, Any]:
        return self._config.to_dict()

    def set_config(self, config: ApplicationConfig) -> bool:
        """Replace the configuration in place. Returns True if anything changed."""
        if config.name != self.name:
            logger.warning(f"Ignoring rename of {self.name} to {config.name}")
            config = config.copy()
            config.name = self.name
        if config == self._config:
            return False
        self._config = config.copy()
        logger.debug(f"Updated configuration of {self.name}")
        return True

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    def launch(self) -> None:
        """
        Bring this application to the foreground.

        Pauses the current foreground application, then either resumes our
        running process or spawns a new one. Raises SpawnError if the process
        cannot be started.
        """
        current = self._registry.foreground_application()
        if current is self and self.is_process_alive():
            return
        if current is not None and current is not self:
            current.pause()

        if self._state != ApplicationState.INACTIVE and self.is_process_alive():
            self._resume()
            return

        self._spawn()

    def _spawn(self) -> None:
        env = dict(os.environ)
        env.update(self._config.environment)
        kwargs: Dict[str, Any] = {
            "env": env,
            "cwd": self._config.working_directory or None,
            "start_new_session": True,
        }
        if self._config.user:
            kwargs["user"] = self._config.user
        if self._config.group:
            kwargs["group"] = self._config.group

        try:
            proc = subprocess.Popen([self._config.bin], **kwargs)
        except (OSError, ValueError, KeyError, subprocess.SubprocessError) as e:
            logger.error(f"Failed to start {self.name} ({self._config.bin}): {e}")
            self._process = None
            self._set_state(next_state(ApplicationState.INACTIVE, Transition.EXIT, self.type))
            self._emit(EventType.APPLICATION_EXITED, exit_code=-1)
            raise SpawnError(f"Unable to start {self.name}: {e}") from e

        self._process = proc
        self._suspending = False
        self.exit_code = None

        watcher = threading.Thread(
            target=self._watch_process,
            args=(proc,),
            daemon=True,
            name=f"watch-{self.name}",
        )
        watcher.start()

        self._set_state(next_state(self._state, Transition.LAUNCH, self.type))
        self._registry.signal_router.route_to(self)
        logger.info(f"Launched {self.name} (pid {proc.pid})")
        self._emit(EventType.APPLICATION_LAUNCHED)

    def _resume(self) -> None:
        if self._state == ApplicationState.PAUSED:
            self._send_signal(signal.SIGCONT)
        self._run_hook(self._config.on_resume, "resume")
        self._suspending = False
        self._set_state(next_state(self._state, Transition.LAUNCH, self.type))
        self._registry.signal_router.route_to(self)
        logger.info(f"Resumed {self.name}")
        self._emit(EventType.APPLICATION_RESUMED)

    def pause(self, stopping: bool = False) -> None:
        """
        Move this application out of the foreground.

        Backgroundable applications keep their process (frozen when
        stopping, i.e. the device is suspending); any other type is stopped.
        """
        if self._state == ApplicationState.INACTIVE:
            return
        transition = Transition.SUSPEND if stopping else Transition.PAUSE
        target = next_state(self._state, transition, self.type)

        if target == ApplicationState.INACTIVE:
            self._suspending = stopping
            self.stop()
            return
        if target == self._state:
            return

        if self._state == ApplicationState.IN_FOREGROUND:
            self._run_hook(self._config.on_pause, "pause")
        if target == ApplicationState.PAUSED:
            self._suspending = True
            self._send_signal(signal.SIGSTOP)

        self._set_state(target)
        self._registry.signal_router.release(self)
        logger.info(f"Paused {self.name} ({target.value})")
        self._emit(EventType.APPLICATION_PAUSED)

    def thaw(self) -> None:
        """Continue a frozen Backgroundable application off-foreground."""
        target = next_state(self._state, Transition.THAW, self.type)
        if target == self._state:
            return
        self._send_signal(signal.SIGCONT)
        self._suspending = False
        self._set_state(target)
        logger.info(f"Thawed {self.name} ({target.value})")
        self._emit(EventType.APPLICATION_RESUMED)

    def stop(self) -> None:
        """Stop the process and move to Inactive. Does not wait for exit."""
        alive = self.is_process_alive()
        if self._state == ApplicationState.INACTIVE and not alive:
            return

        self._run_hook(self._config.on_stop, "stop")
        if alive:
            if self._state == ApplicationState.PAUSED:
                self._send_signal(signal.SIGCONT)
            self._send_signal(signal.SIGTERM)

        self._set_state(next_state(self._state, Transition.STOP, self.type))
        self._registry.signal_router.release(self)
        logger.info(f"Stopped {self.name}")

    def wait_for_finished(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Block until the owned process has exited and return its exit code.

        Escalates to SIGKILL after timeout seconds.
        """
        proc = self._process
        if proc is None:
            return self.exit_code
        if timeout is None:
            timeout = self._registry.config.stop_timeout_sec
        try:
            return proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"{self.name} did not exit within {timeout}s, killing")
            proc.kill()
            return proc.wait()

    def unregister(self) -> None:
        """Remove this application from its registry, system flag or not."""
        self._registry.remove_application(self)

    # ─────────────────────────────────────────────────────────────────
    # Cooperative signals
    # ─────────────────────────────────────────────────────────────────

    def sig_usr1(self) -> None:
        """About to become foreground."""
        self._forward_signal(signal.SIGUSR1)

    def sig_usr2(self) -> None:
        """About to become background."""
        self._forward_signal(signal.SIGUSR2)

    def _forward_signal(self, signum: int) -> None:
        if not self.is_process_alive():
            return
        self._send_signal(signum)
        self._emit(EventType.APPLICATION_SIGNALED)

    # ─────────────────────────────────────────────────────────────────
    # Process plumbing
    # ─────────────────────────────────────────────────────────────────

    def _watch_process(self, proc: subprocess.Popen) -> None:
        """Runs on a watcher thread; hands the exit back to the main loop."""
        code = proc.wait()
        self._registry.loop.post(self._on_process_exit, proc, code)

    def _on_process_exit(self, proc: subprocess.Popen, code: int) -> None:
        self._emit(EventType.APPLICATION_EXITED, exit_code=code)
        if proc is not self._process:
            return

        self._process = None
        self.exit_code = code
        previous = self._state
        suspending = self._suspending
        self._suspending = False

        if previous == ApplicationState.INACTIVE:
            logger.debug(f"{self.name} exited with {code}")
            return

        logger.warning(f"{self.name} exited unexpectedly with {code}")
        self._set_state(next_state(previous, Transition.EXIT, self.type))
        self._registry.signal_router.release(self)
        if previous == ApplicationState.IN_FOREGROUND and not suspending:
            self._registry.resume_if_none()

    def _send_signal(self, signum: int) -> None:
        if self._process is None:
            return
        try:
            self._process.send_signal(signum)
        except ProcessLookupError:
            pass  # Already dead

    def _run_hook(self, command: str, event: str) -> None:
        if not command:
            return
        env = dict(os.environ)
        env.update(self._config.environment)
        try:
            result = subprocess.run(
                shlex.split(command),
                env=env,
                cwd=self._config.working_directory or None,
                timeout=self._registry.config.hook_timeout_sec,
                check=False,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.warning(f"{event} hook of {self.name} failed: {e}")
            return
        if result.returncode != 0:
            logger.warning(f"{event} hook of {self.name} exited with {result.returncode}")

    def _set_state(self, state: ApplicationState) -> None:
        if state == self._state:
            return
        logger.debug(f"{self.name}: {self._state.value} -> {state.value}")
        self._state = state
        self._registry.write_applications()

    def _emit(self, event_type: EventType, exit_code: Optional[int] = None) -> None:
        self._registry.bus.emit(Event(type=event_type, path=self._path, exit_code=exit_code))

    def __repr__(self) -> str:
        return f"Application({self.name!r}, {self._state.value})"
