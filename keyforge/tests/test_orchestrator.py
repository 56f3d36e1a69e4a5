"""Tests for the background build orchestrator (keyforge.build).

The compiler is replaced by small Python scripts run with the current
interpreter, so no QMK checkout is needed.

Verifies:
    - Event order: validating -> generating -> compiling -> log lines -> Success
    - Non-zero exit and missing artifact -> Failed with exit code and log
    - Validation failure never spawns the compiler
    - Cancellation terminates the compiler and ends with Cancelled
    - The layout is snapshotted at start
    - Compiler arguments carry the QMK keyboard path and the keymap name
    - State machine transitions and progress parsing

Run: pytest keyforge/tests/test_orchestrator.py -v
"""

import sys

import pytest

from keyforge.build import (
    BuildOrchestrator,
    BuildState,
    Cancelled,
    Failed,
    LogOutput,
    Progress,
    ProgressParser,
    Success,
    default_markers,
)
from keyforge.build.events import next_state
from keyforge.codegen.validator import ValidationIssue
from keyforge.configs.loader import (
    BuildConfig,
    GenerationConfig,
    LoggingConfig,
    PipelineConfig,
    ProgressMarker,
    QmkConfig,
)
from keyforge.mapping.visual_layout import build_mapping
from keyforge.tests import factories

EVENT_TIMEOUT = 30.0

# Scripts are passed through str.format as command templates: no braces.
COMPILE_OK = (
    "import pathlib, sys\n"
    "print('Compiling: keymap.c', flush=True)\n"
    "print('Linking: firmware.elf', flush=True)\n"
    "pathlib.Path(sys.argv[1], 'firmware.uf2').write_bytes(b'UF2' * 10)\n"
)
COMPILE_FAIL = (
    "import sys\n"
    "print('keymap.c:12: error: boom', flush=True)\n"
    "sys.exit(2)\n"
)
COMPILE_NO_ARTIFACT = "print('Compiling: keymap.c', flush=True)\n"
COMPILE_SLOW = (
    "import time\n"
    "print('Compiling: keymap.c', flush=True)\n"
    "time.sleep(30)\n"
)
COMPILE_MARK = (
    "import pathlib, sys\n"
    "pathlib.Path(sys.argv[1], 'spawned').write_text('yes')\n"
)
COMPILE_ECHO_ARGS = (
    "import pathlib, sys\n"
    "pathlib.Path(sys.argv[1], 'firmware.uf2').write_text(' '.join(sys.argv[2:]))\n"
)


def _config(tmp_path, script=None, command=None, keymap="test_keymap", sources_dir=None) -> PipelineConfig:
    if command is None:
        command = (sys.executable, "-c", script, "{output_dir}")
    return PipelineConfig(
        qmk=QmkConfig(tmp_path, keymap),
        generation=GenerationConfig(deterministic=True),
        build=BuildConfig(
            command=tuple(command),
            working_dir=None,
            sources_dir=sources_dir,
            artifact_patterns=("*.uf2",),
            progress_markers=(
                ProgressMarker("^Compiling:", "compiling", 40),
                ProgressMarker("^Linking:", "linking", 80),
            ),
        ),
        logging=LoggingConfig(),
    )


def _drain(handle):
    """All events up to and including the terminal one."""
    events = []
    while True:
        event = handle.next_event(timeout=EVENT_TIMEOUT)
        if event is None:
            pytest.fail(f"No terminal event after {events}")
        events.append(event)
        if event.is_terminal:
            return events


class TestSuccessfulBuild:

    @pytest.fixture()
    def result(self, tmp_path, registry, layout, geometry, mapping):
        orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_OK), registry)
        out = tmp_path / "out"
        handle = orchestrator.start(layout, geometry, mapping, out)
        events = _drain(handle)
        assert handle.wait(EVENT_TIMEOUT)
        return handle, events, out

    def test_event_sequence(self, result) -> None:
        handle, events, out = result
        assert events[0] == Progress("validating", 0)
        assert events[1] == Progress("generating", 5)
        assert events[2] == Progress("compiling", 10)
        assert [e.line for e in events if isinstance(e, LogOutput)] == [
            "Compiling: keymap.c",
            "Linking: firmware.elf",
        ]
        progress = [e for e in events if isinstance(e, Progress)]
        assert progress[-2:] == [Progress("compiling", 40), Progress("linking", 80)]
        assert events[-1] == Success(out / "firmware.uf2", 30)

    def test_exactly_one_terminal_event(self, result) -> None:
        handle, events, _ = result
        assert sum(1 for e in events if e.is_terminal) == 1
        assert handle.next_event(timeout=0.1) is None

    def test_handle_state(self, result) -> None:
        handle, _, _ = result
        assert handle.state is BuildState.SUCCESS
        assert handle.log_lines == ["Compiling: keymap.c", "Linking: firmware.elf"]

    def test_sources_written(self, result) -> None:
        _, _, out = result
        assert (out / "keymap.c").read_text().startswith("// Generated by keyforge\n")
        assert (out / "config.h").exists()


class TestFailures:

    def test_compiler_exit_code(self, tmp_path, registry, layout, geometry, mapping) -> None:
        orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_FAIL), registry)
        handle = orchestrator.start(layout, geometry, mapping, tmp_path / "out")
        terminal = _drain(handle)[-1]
        assert isinstance(terminal, Failed)
        assert terminal.exit_code == 2
        assert terminal.captured_log == ("keymap.c:12: error: boom",)
        assert "code 2" in terminal.errors[0]
        assert handle.state is BuildState.FAILED

    def test_missing_artifact(self, tmp_path, registry, layout, geometry, mapping) -> None:
        orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_NO_ARTIFACT), registry)
        handle = orchestrator.start(layout, geometry, mapping, tmp_path / "out")
        terminal = _drain(handle)[-1]
        assert isinstance(terminal, Failed)
        assert terminal.exit_code == 0
        assert "no artifact" in terminal.errors[0]

    def test_stale_artifact_ignored(self, tmp_path, registry, layout, geometry, mapping) -> None:
        out = tmp_path / "out"
        out.mkdir()
        (out / "old.uf2").write_bytes(b"old")
        orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_NO_ARTIFACT), registry)
        terminal = _drain(orchestrator.start(layout, geometry, mapping, out))[-1]
        assert isinstance(terminal, Failed)

    def test_invalid_layout_never_spawns(self, tmp_path, registry, layout, geometry, mapping) -> None:
        layout.layers[0].keys[0].keycode = "KC_NOPE"
        out = tmp_path / "out"
        orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_MARK), registry)
        handle = orchestrator.start(layout, geometry, mapping, out)
        events = _drain(handle)
        terminal = events[-1]
        assert isinstance(terminal, Failed)
        assert terminal.exit_code is None
        assert all(isinstance(e, ValidationIssue) for e in terminal.errors)
        assert not any(isinstance(e, Progress) and e.phase == "compiling" for e in events)
        assert handle.wait(EVENT_TIMEOUT)
        assert not (out / "spawned").exists()
        assert not (out / "keymap.c").exists()

    def test_compiler_not_found(self, tmp_path, registry, layout, geometry, mapping) -> None:
        config = _config(tmp_path, command=(str(tmp_path / "no-such-compiler"), "{keyboard}"))
        orchestrator = BuildOrchestrator(config, registry)
        terminal = _drain(orchestrator.start(layout, geometry, mapping, tmp_path / "out"))[-1]
        assert isinstance(terminal, Failed)
        assert terminal.exit_code is None
        assert "Could not start compiler" in terminal.errors[0]


class TestCancellation:

    def test_cancel_running_compiler(self, tmp_path, registry, layout, geometry, mapping) -> None:
        orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_SLOW), registry)
        handle = orchestrator.start(layout, geometry, mapping, tmp_path / "out")
        events = []
        for event in handle.events():
            events.append(event)
            if isinstance(event, LogOutput):
                handle.cancel()
        assert isinstance(events[-1], Cancelled)
        assert not any(isinstance(e, (Success, Failed)) for e in events)
        assert handle.state is BuildState.CANCELLED
        assert handle.wait(EVENT_TIMEOUT)

    def test_cancel_twice_is_harmless(self, tmp_path, registry, layout, geometry, mapping) -> None:
        orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_SLOW), registry)
        handle = orchestrator.start(layout, geometry, mapping, tmp_path / "out")
        handle.cancel()
        handle.cancel()
        events = _drain(handle)
        assert isinstance(events[-1], Cancelled)
        handle.cancel()


def test_layout_snapshot_taken_at_start(tmp_path, registry, layout, geometry, mapping) -> None:
    orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_OK), registry)
    handle = orchestrator.start(layout, geometry, mapping, tmp_path / "out")
    layout.layers[0].keys[0].keycode = "KC_NOPE"
    assert isinstance(_drain(handle)[-1], Success)


def test_concurrent_builds_are_independent(tmp_path, registry, layout, geometry, mapping) -> None:
    orchestrator = BuildOrchestrator(_config(tmp_path, COMPILE_OK), registry)
    handles = [
        orchestrator.start(layout, geometry, mapping, tmp_path / f"out{i}") for i in range(2)
    ]
    assert handles[0].id != handles[1].id
    for i, handle in enumerate(handles):
        assert _drain(handle)[-1] == Success(tmp_path / f"out{i}" / "firmware.uf2", 30)


class TestCompilerArguments:

    @pytest.fixture()
    def corne(self):
        geometry = factories.grid_geometry(keyboard="Corne")
        mapping = build_mapping(geometry)
        layout = factories.golden_layout(mapping)
        layout.metadata.keyboard = "crkbd/rev1"
        return layout, geometry, mapping

    def test_keyboard_is_qmk_path_not_display_name(self, tmp_path, registry, corne) -> None:
        command = (sys.executable, "-c", COMPILE_ECHO_ARGS, "{output_dir}", "{keyboard}")
        orchestrator = BuildOrchestrator(_config(tmp_path, command=command), registry)
        out = tmp_path / "out"
        terminal = _drain(orchestrator.start(*corne, out))[-1]
        assert isinstance(terminal, Success)
        assert (out / "firmware.uf2").read_text() == "crkbd/rev1"

    def test_header_names_the_compiled_keymap(self, tmp_path, registry, corne) -> None:
        command = (sys.executable, "-c", COMPILE_ECHO_ARGS, "{output_dir}", "{keymap}")
        config = _config(tmp_path, command=command, keymap="mine")
        out = tmp_path / "out"
        layout = corne[0]
        terminal = _drain(BuildOrchestrator(config, registry).start(*corne, out))[-1]
        assert isinstance(terminal, Success)
        assert (out / "firmware.uf2").read_text() == "mine"
        assert "// Keymap: mine\n" in (out / "keymap.c").read_text()
        assert layout.metadata.keymap_name == "test_keymap"

    def test_sources_written_to_keymap_dir(self, tmp_path, registry, corne) -> None:
        command = (sys.executable, "-c", COMPILE_ECHO_ARGS, "{output_dir}", "{keymap_dir}")
        config = _config(tmp_path, command=command, sources_dir="{keymap_dir}")
        out = tmp_path / "out"
        terminal = _drain(BuildOrchestrator(config, registry).start(*corne, out))[-1]
        keymap_dir = tmp_path / "keyboards" / "crkbd" / "rev1" / "keymaps" / "test_keymap"
        assert isinstance(terminal, Success)
        assert (out / "firmware.uf2").read_text() == str(keymap_dir)
        assert (keymap_dir / "keymap.c").exists()
        assert (keymap_dir / "config.h").exists()
        assert not (out / "keymap.c").exists()


class TestStateMachine:

    def test_transitions(self) -> None:
        state = BuildState.IDLE
        for event, expected in [
            (Progress("validating", 0), BuildState.VALIDATING),
            (Progress("generating", 5), BuildState.GENERATING),
            (Progress("compiling", 10), BuildState.COMPILING),
            (LogOutput("x"), BuildState.COMPILING),
            (Progress("linking", 80), BuildState.COMPILING),
            (Failed(exit_code=1), BuildState.FAILED),
        ]:
            state = next_state(state, event)
            assert state is expected

    def test_terminal_states_are_final(self) -> None:
        for state in (BuildState.SUCCESS, BuildState.FAILED, BuildState.CANCELLED):
            assert next_state(state, Progress("compiling", 50)) is state
            assert state.is_terminal
        assert not BuildState.COMPILING.is_terminal


class TestProgressParser:

    def test_default_markers(self) -> None:
        parser = ProgressParser(default_markers(), start_percent=10)
        assert parser.feed("make: entering directory") is None
        assert parser.feed("Compiling: keyboards/crkbd/keymap.c") == Progress("compiling", 40)
        assert parser.feed("Compiling: quantum/quantum.c") is None
        assert parser.feed("Linking: .build/crkbd.elf") == Progress("linking", 80)
        assert parser.feed("Creating UF2 file") == Progress("packaging", 90)
        assert parser.percent == 90

    def test_percent_never_decreases(self) -> None:
        markers = [
            ProgressMarker("^late", "late", 80),
            ProgressMarker("^early", "early", 20),
            ProgressMarker("^note", "note"),
        ]
        parser = ProgressParser(markers)
        assert parser.feed("late stage") == Progress("late", 80)
        assert parser.feed("early stage") == Progress("early", 80)
        assert parser.feed("note: hi") == Progress("note", None)
