"""
Application State Machine
=========================

Transition table for supervisor-side application state.

    current state x (event, backgroundable) -> next state

PAUSE is a regular pause (another app took the foreground), SUSPEND is a
pause issued while the whole device is suspending, THAW lets an application
frozen by SUSPEND run on in the background once the device wakes.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from oxide_supervisor.models.application import ApplicationState, ApplicationType


class Transition(str, Enum):
    """Events that drive the application state machine."""
    LAUNCH = "launch"
    PAUSE = "pause"
    SUSPEND = "suspend"
    STOP = "stop"
    EXIT = "exit"
    THAW = "thaw"


_I = ApplicationState.INACTIVE
_F = ApplicationState.IN_FOREGROUND
_B = ApplicationState.IN_BACKGROUND
_P = ApplicationState.PAUSED

# (state, transition, backgroundable) -> next state
TRANSITIONS: Dict[Tuple[ApplicationState, Transition, bool], ApplicationState] = {}

for _state in ApplicationState:
    for _bg in (True, False):
        TRANSITIONS[(_state, Transition.LAUNCH, _bg)] = _F
        TRANSITIONS[(_state, Transition.STOP, _bg)] = _I
        TRANSITIONS[(_state, Transition.EXIT, _bg)] = _I
        TRANSITIONS[(_state, Transition.THAW, _bg)] = _state
        # Non-backgroundable apps lose the foreground entirely
        TRANSITIONS[(_state, Transition.PAUSE, False)] = _I
        TRANSITIONS[(_state, Transition.SUSPEND, False)] = _I

TRANSITIONS.update({
    (_I, Transition.PAUSE, True): _I,
    (_F, Transition.PAUSE, True): _B,
    (_B, Transition.PAUSE, True): _B,
    (_P, Transition.PAUSE, True): _P,
    (_I, Transition.SUSPEND, True): _I,
    (_F, Transition.SUSPEND, True): _P,
    (_B, Transition.SUSPEND, True): _P,
    (_P, Transition.SUSPEND, True): _P,
    (_P, Transition.THAW, True): _B,
})


def next_state(
    current: ApplicationState,
    transition: Transition,
    app_type: ApplicationType,
) -> ApplicationState:
    """Look up the state an application moves to."""
    backgroundable = app_type == ApplicationType.BACKGROUNDABLE
    return TRANSITIONS[(current, transition, backgroundable)]

