"""Tests for keyforge.utils (fs, logging_config).

Verifies:
    - Atomic writes replace files whole and leave no temporary files
    - YAML round trip keeps key order; malformed YAML raises ValueError
    - Context fields appear in human and JSON log lines

Run: pytest keyforge/tests/test_utils.py -v
"""

import json
import logging

import pytest

from keyforge.utils import fs
from keyforge.utils.logging_config import (
    ContextFormatter,
    get_context,
    get_logger,
    pop_context,
    push_context,
)


class TestAtomicWrites:

    def test_write_creates_parents(self, tmp_path) -> None:
        target = tmp_path / "a" / "b" / "keymap.c"
        fs.atomic_write_text(target, "line one\nline two\n")
        assert target.read_text() == "line one\nline two\n"

    def test_overwrite_leaves_no_temp_files(self, tmp_path) -> None:
        target = tmp_path / "config.h"
        fs.atomic_write_text(target, "old")
        fs.atomic_write_text(target, "new")
        assert target.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["config.h"]

    def test_write_into_file_path_fails(self, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        with pytest.raises((RuntimeError, OSError)):
            fs.atomic_write_text(blocker / "keymap.c", "x")

    def test_ensure_dir_idempotent(self, tmp_path) -> None:
        path = fs.ensure_dir(tmp_path / "out")
        assert fs.ensure_dir(path) == path
        assert path.is_dir()


class TestYaml:

    def test_roundtrip_keeps_order(self, tmp_path) -> None:
        path = tmp_path / "doc.yaml"
        fs.atomic_yaml_dump({"schema": "layout.v1", "name": "Ä", "layers": [1, 2]}, path)
        assert list(fs.load_yaml(path)) == ["schema", "name", "layers"]
        assert path.read_text(encoding="utf-8").startswith("schema: layout.v1\nname: Ä\n")

    def test_missing(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            fs.load_yaml(tmp_path / "nope.yaml")

    def test_malformed(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("layers: [1, 2\n")
        with pytest.raises(ValueError, match="not valid YAML"):
            fs.load_yaml(path)

    def test_empty_file_is_none(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert fs.load_yaml(path) is None


class TestLoggingContext:

    @pytest.fixture(autouse=True)
    def clean_context(self):
        pop_context()
        yield
        pop_context()

    @staticmethod
    def _record(message: str) -> logging.LogRecord:
        return logging.LogRecord("keyforge.test", logging.INFO, __file__, 1, message, None, None)

    def test_get_logger(self) -> None:
        assert get_logger("keyforge.build") is logging.getLogger("keyforge.build")

    def test_push_and_pop(self) -> None:
        push_context(build="abc", keyboard="crkbd")
        assert get_context() == {"build": "abc", "keyboard": "crkbd"}
        pop_context(["build"])
        assert get_context() == {"keyboard": "crkbd"}

    def test_human_line(self) -> None:
        push_context(build="abc")
        line = ContextFormatter().format(self._record("Compiling"))
        assert line.endswith(" keyforge.test [build=abc] Compiling")
        assert "INFO" in line

    def test_json_line(self) -> None:
        push_context(build="abc")
        entry = json.loads(ContextFormatter(json_lines=True).format(self._record("Linking")))
        assert entry["build"] == "abc"
        assert entry["message"] == "Linking"
        assert entry["level"] == "INFO"
        assert entry["time"].endswith("Z")
