"""
Background firmware builds: orchestrator, event stream, progress parsing.
"""

from keyforge.build.events import (
    BuildEvent,
    BuildState,
    Cancelled,
    Failed,
    LogOutput,
    Progress,
    Success,
    next_state,
)
from keyforge.build.orchestrator import BuildHandle, BuildOrchestrator, BuildProcessError
from keyforge.build.progress import ProgressParser, default_markers

__all__ = [
    "BuildEvent",
    "BuildState",
    "Cancelled",
    "Failed",
    "LogOutput",
    "Progress",
    "Success",
    "next_state",
    "BuildHandle",
    "BuildOrchestrator",
    "BuildProcessError",
    "ProgressParser",
    "default_markers",
]
