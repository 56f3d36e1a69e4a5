"""Build events and the build state machine.

The orchestrator's worker thread talks to its caller only through an
ordered stream of these immutable events.  The caller's view of the
build state is derived from the events it has consumed::

    IDLE -> VALIDATING -> GENERATING -> COMPILING -> SUCCESS | FAILED
                 \\             \\            \\
                  +-------------+------------+--> CANCELLED

Exactly one terminal event (``Success``, ``Failed`` or ``Cancelled``)
ends every stream.
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Union

from keyforge.codegen.validator import ValidationIssue


class BuildState(Enum):
    """Build lifecycle state."""

    IDLE = auto()
    VALIDATING = auto()
    GENERATING = auto()
    COMPILING = auto()
    SUCCESS = auto()
    FAILED = auto()
    CANCELLED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (BuildState.SUCCESS, BuildState.FAILED, BuildState.CANCELLED)


PHASE_VALIDATING = "validating"
PHASE_GENERATING = "generating"
PHASE_COMPILING = "compiling"


@dataclass(frozen=True, slots=True)
class BuildEvent(ABC):
    """Base class for all build events."""

    @property
    def is_terminal(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class Progress(BuildEvent):
    """Phase change or compiler milestone; ``percent`` is best effort."""

    phase: str
    percent: int | None = None


@dataclass(frozen=True, slots=True)
class LogOutput(BuildEvent):
    """One line of compiler output (stdout and stderr merged, in order)."""

    line: str


@dataclass(frozen=True, slots=True)
class Success(BuildEvent):
    artifact_path: Path
    size_bytes: int

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Failed(BuildEvent):
    """Build failure.

    ``exit_code`` is ``None`` when the compiler never ran (validation
    failure, process could not start).  ``errors`` holds validation issues
    or plain messages; ``captured_log`` the compiler output seen so far.
    """

    exit_code: int | None = None
    errors: tuple[Union[ValidationIssue, str], ...] = ()
    captured_log: tuple[str, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Cancelled(BuildEvent):
    """Build was cancelled; emitted only after the compiler has exited."""

    @property
    def is_terminal(self) -> bool:
        return True


def next_state(state: BuildState, event: BuildEvent) -> BuildState:
    """State after consuming ``event``; terminal states never change."""
    if state.is_terminal:
        return state
    if isinstance(event, Success):
        return BuildState.SUCCESS
    if isinstance(event, Failed):
        return BuildState.FAILED
    if isinstance(event, Cancelled):
        return BuildState.CANCELLED
    if isinstance(event, Progress):
        if event.phase == PHASE_VALIDATING:
            return BuildState.VALIDATING
        if event.phase == PHASE_GENERATING:
            return BuildState.GENERATING
        return BuildState.COMPILING
    if isinstance(event, LogOutput):
        return BuildState.COMPILING
    return state
