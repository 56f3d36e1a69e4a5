"""Build orchestrator -- generate sources, run the compiler, stream events.

``BuildOrchestrator.start`` returns a ``BuildHandle`` immediately.  A
dedicated worker thread then:

1. snapshots the layout and validates it (``VALIDATING``)
2. generates the sources and writes them into the configured sources
   directory, ``output_dir`` by default (``GENERATING``); any failure here ends the build without spawning
3. spawns the configured compiler command (``COMPILING``), forwarding
   every stdout/stderr line as ``LogOutput`` and milestones as
   ``Progress``
4. on exit 0 locates the artifact in ``output_dir`` -> ``Success``;
   otherwise ``Failed`` with the exit code and captured log

Cancellation is cooperative at the process boundary: ``cancel()`` sends
SIGTERM to the compiler and ``Cancelled`` is emitted once it has exited.
Cancelling before the spawn means the process never starts.

The event queue is the only channel from worker to caller.  There is no
retry and no internal timeout; a caller that stops reading leaves the
worker running until the compiler exits.
"""

from __future__ import annotations

import logging
import os
import queue
import signal
import subprocess
import threading
import uuid
from pathlib import Path
from typing import Iterator

from keyforge.build.events import (
    PHASE_COMPILING,
    PHASE_GENERATING,
    PHASE_VALIDATING,
    BuildEvent,
    BuildState,
    Cancelled,
    Failed,
    LogOutput,
    Progress,
    Success,
    next_state,
)
from keyforge.build.progress import ProgressParser, default_markers
from keyforge.codegen.generator import FirmwareGenerator, GenerationError
from keyforge.codegen.validator import validate
from keyforge.configs.loader import PipelineConfig
from keyforge.mapping.visual_layout import VisualLayoutMapping
from keyforge.models.geometry import KeyboardGeometry
from keyforge.models.layout import Layout
from keyforge.registry.database import KeycodeRegistry
from keyforge.utils import fs
from keyforge.utils.logging_config import pop_context, push_context

logger = logging.getLogger(__name__)


class BuildProcessError(Exception):
    """The external compiler could not be started, failed, or was terminated."""

    def __init__(self, message: str, command: list[str] | None = None, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


class BuildHandle:
    """Caller-side view of one build.

    Events are delivered in the order the worker produced them.  ``state``
    and ``log_lines`` reflect the events consumed so far through
    :meth:`poll`, :meth:`next_event` or :meth:`events`.
    """

    def __init__(self, build_id: str, output_dir: Path) -> None:
        self.id = build_id
        self.output_dir = output_dir
        self._queue: queue.Queue[BuildEvent] = queue.Queue()
        self._cancel_flag = threading.Event()
        self._proc_lock = threading.Lock()
        self._proc: subprocess.Popen | None = None
        self._thread: threading.Thread | None = None
        self._state = BuildState.IDLE
        self._log_lines: list[str] = []
        self._terminal_seen = False

    # ------------------------------------------------------------------
    # Caller API
    # ------------------------------------------------------------------

    @property
    def state(self) -> BuildState:
        return self._state

    @property
    def log_lines(self) -> list[str]:
        return list(self._log_lines)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_flag.is_set()

    def cancel(self) -> None:
        """Request cancellation.

        Sends SIGTERM to the compiler if it is running.  Safe to call more
        than once and after the build has finished.
        """
        self._cancel_flag.set()
        with self._proc_lock:
            proc = self._proc
            if proc is not None and proc.poll() is None:
                logger.info("Cancelling build %s (pid %d)", self.id, proc.pid)
                _terminate(proc)

    def poll(self) -> list[BuildEvent]:
        """Return all pending events without blocking."""
        events = []
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return events
            events.append(self._consume(event))

    def next_event(self, timeout: float | None = None) -> BuildEvent | None:
        """Return the next event, or ``None`` on timeout / after the terminal event."""
        if self._terminal_seen and self._queue.empty():
            return None
        try:
            event = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return self._consume(event)

    def events(self) -> Iterator[BuildEvent]:
        """Blocking iterator; ends after the terminal event."""
        while not self._terminal_seen:
            event = self._queue.get()
            yield self._consume(event)

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the worker to finish; True if it has."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _consume(self, event: BuildEvent) -> BuildEvent:
        self._state = next_state(self._state, event)
        if isinstance(event, LogOutput):
            self._log_lines.append(event.line)
        if event.is_terminal:
            self._terminal_seen = True
        return event

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _emit(self, event: BuildEvent) -> None:
        self._queue.put(event)


def _terminate(proc: subprocess.Popen) -> None:
    """SIGTERM the compiler and its children (own session on POSIX)."""
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except ProcessLookupError:
        pass


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class BuildOrchestrator:
    """Starts builds; one worker thread per build.

    Parameters
    ----------
    config : PipelineConfig
        Pipeline configuration (build command, artifacts, file names).
    registry : KeycodeRegistry
        Keycode database used for validation.
    """

    def __init__(self, config: PipelineConfig, registry: KeycodeRegistry) -> None:
        self._cfg = config
        self._registry = registry
        self._gen = FirmwareGenerator(registry, config.generation)

    def start(
        self,
        layout: Layout,
        geometry: KeyboardGeometry,
        mapping: VisualLayoutMapping,
        output_dir: str | Path,
    ) -> BuildHandle:
        """Start a build in the background and return its handle.

        The layout snapshot is taken here, so edits made after ``start``
        returns do not affect this build.  The snapshot carries the
        configured keymap name, so the generated header names the keymap
        that is actually compiled.
        """
        snapshot = layout.snapshot()
        snapshot.metadata.keymap_name = self._cfg.qmk.keymap_name
        handle = BuildHandle(uuid.uuid4().hex[:8], Path(output_dir).resolve())
        thread = threading.Thread(
            target=self._worker,
            args=(handle, snapshot, geometry, mapping),
            name=f"keyforge-build-{handle.id}",
            daemon=True,
        )
        handle._thread = thread
        logger.info(
            "Starting build %s for %s/%s into %s",
            handle.id, snapshot.metadata.keyboard, geometry.layout_name, handle.output_dir,
        )
        thread.start()
        return handle

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _worker(
        self,
        handle: BuildHandle,
        layout: Layout,
        geometry: KeyboardGeometry,
        mapping: VisualLayoutMapping,
    ) -> None:
        push_context(build=handle.id)
        try:
            self._run(handle, layout, geometry, mapping)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Build %s crashed", handle.id)
            handle._emit(Failed(errors=(f"Internal error: {exc}",)))
        finally:
            pop_context(["build"])

    def _run(
        self,
        handle: BuildHandle,
        layout: Layout,
        geometry: KeyboardGeometry,
        mapping: VisualLayoutMapping,
    ) -> None:
        emit = handle._emit
        build_cfg = self._cfg.build
        qmk_path = self._cfg.qmk.firmware_path
        keyboard = layout.metadata.keyboard
        keymap = layout.metadata.keymap_name
        values = {
            "keyboard": keyboard,
            "keymap": keymap,
            "keymap_dir": str(qmk_path / "keyboards" / keyboard / "keymaps" / keymap),
            "output_dir": str(handle.output_dir),
            "qmk_path": str(qmk_path),
        }
        sources_dir = build_cfg.render_sources_dir(**values) or handle.output_dir

        # -- validate ---------------------------------------------------------
        if handle.cancel_requested:
            emit(Cancelled())
            return
        emit(Progress(PHASE_VALIDATING, 0))
        report = validate(layout, geometry, mapping, self._registry)
        if not report.is_valid:
            logger.warning("Build %s: validation failed (%s)", handle.id, report.summary())
            emit(Failed(errors=tuple(report.errors)))
            return

        # -- generate ---------------------------------------------------------
        if handle.cancel_requested:
            emit(Cancelled())
            return
        emit(Progress(PHASE_GENERATING, 5))
        try:
            files = self._gen.generate(layout, geometry, mapping)
            files.write_to(sources_dir)
            fs.ensure_dir(handle.output_dir)
        except GenerationError as exc:
            emit(Failed(errors=tuple(exc.issues)))
            return
        except (OSError, RuntimeError) as exc:
            logger.error("Build %s: could not write sources: %s", handle.id, exc)
            emit(Failed(errors=(f"Could not write generated files: {exc}",)))
            return

        # -- compile ----------------------------------------------------------
        command = build_cfg.render_command(**values)
        cwd = build_cfg.render_working_dir(**values)
        env = {**os.environ, **build_cfg.env}
        before = _artifact_stamps(handle.output_dir, build_cfg.artifact_patterns)

        with handle._proc_lock:
            if handle.cancel_requested:
                emit(Cancelled())
                return
            emit(Progress(PHASE_COMPILING, 10))
            logger.info("Build %s: running %s", handle.id, " ".join(command))
            try:
                proc = subprocess.Popen(
                    command,
                    cwd=cwd,
                    env=env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                    start_new_session=(os.name == "posix"),
                )
            except OSError as exc:
                err = BuildProcessError(
                    f"Could not start compiler {command[0]!r}: {exc}", command
                )
                logger.error("Build %s: %s", handle.id, err)
                emit(Failed(errors=(str(err),)))
                return
            handle._proc = proc

        parser = ProgressParser(build_cfg.progress_markers or default_markers(), start_percent=10)
        captured: list[str] = []
        assert proc.stdout is not None
        with proc.stdout:
            for raw in proc.stdout:
                line = raw.rstrip("\r\n")
                captured.append(line)
                emit(LogOutput(line))
                progress = parser.feed(line)
                if progress is not None:
                    emit(progress)
        exit_code = proc.wait()

        if handle.cancel_requested:
            logger.info("Build %s cancelled (exit code %s)", handle.id, exit_code)
            emit(Cancelled())
            return

        if exit_code != 0:
            err = BuildProcessError(f"Compiler exited with code {exit_code}", command, exit_code)
            logger.warning("Build %s failed: %s", handle.id, err)
            emit(Failed(exit_code=exit_code, errors=(str(err),), captured_log=tuple(captured)))
            return

        artifact = _find_artifact(handle.output_dir, build_cfg.artifact_patterns, before)
        if artifact is None:
            patterns = ", ".join(build_cfg.artifact_patterns)
            logger.warning("Build %s: no artifact matching %s", handle.id, patterns)
            emit(Failed(
                exit_code=0,
                errors=(f"Compiler succeeded but no artifact matching {patterns} in {handle.output_dir}",),
                captured_log=tuple(captured),
            ))
            return

        size = artifact.stat().st_size
        logger.info("Build %s succeeded: %s (%d bytes)", handle.id, artifact, size)
        emit(Success(artifact, size))


def _artifact_stamps(directory: Path, patterns) -> dict[Path, int]:
    """mtime (ns) of every existing artifact, to ignore stale ones later."""
    stamps = {}
    for pattern in patterns:
        for path in directory.glob(pattern):
            if path.is_file():
                stamps[path] = path.stat().st_mtime_ns
    return stamps


def _find_artifact(directory: Path, patterns, before: dict[Path, int]) -> Path | None:
    """First new or rewritten file matching the patterns, in pattern order."""
    for pattern in patterns:
        for path in sorted(directory.glob(pattern)):
            if not path.is_file():
                continue
            if before.get(path) != path.stat().st_mtime_ns:
                return path
    return None
