"""Heuristic progress parser for compiler output.

Each configured marker is a regex searched in every output line.  The
first marker that matches reports its phase; the percentage never goes
backwards.  Lines that match nothing are ignored.
"""

from __future__ import annotations

import re

from keyforge.build.events import Progress
from keyforge.configs.loader import ProgressMarker


class ProgressParser:
    """Turn compiler output lines into ``Progress`` events.

    Parameters
    ----------
    markers : sequence of ProgressMarker
        Milestones in priority order.
    start_percent : int
        Floor for reported percentages.
    """

    def __init__(self, markers, start_percent: int = 0) -> None:
        self._markers = [(re.compile(m.pattern), m) for m in markers]
        self._percent = start_percent
        self._last: tuple[str, int | None] | None = None

    @property
    def percent(self) -> int:
        return self._percent

    def feed(self, line: str) -> Progress | None:
        """Return a ``Progress`` for a milestone line, else ``None``.

        Repeats of the same phase at the same percentage are suppressed.
        """
        for regex, marker in self._markers:
            if regex.search(line) is None:
                continue
            percent = None
            if marker.percent is not None:
                self._percent = max(self._percent, marker.percent)
                percent = self._percent
            key = (marker.phase, percent)
            if key == self._last:
                return None
            self._last = key
            return Progress(marker.phase, percent)
        return None


def default_markers() -> list[ProgressMarker]:
    """Milestones printed by ``qmk compile``."""
    return [
        ProgressMarker(r"^Compiling:", "compiling", 40),
        ProgressMarker(r"^Linking:", "linking", 80),
        ProgressMarker(r"^Creating (load file|UF2|hex|binary)", "packaging", 90),
        ProgressMarker(r"^Copying ", "copying", 95),
    ]
