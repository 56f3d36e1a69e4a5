"""Filesystem helpers: atomic writes and YAML documents.

Generated sources land in a QMK keymap directory that a compiler may be
reading at the same time, so every write goes to a temporary file in the
target directory and is moved into place with ``os.replace``.  A reader
sees either the old file or the new one, never a truncated ``keymap.c``.

Usage:
    from keyforge.utils import fs
    fs.atomic_write_text(out_dir / "keymap.c", text)
    fs.atomic_yaml_dump(document, "layouts/corne.yaml")
    raw = fs.load_yaml("keyforge/configs/pipeline.yaml")
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Union

import yaml

PathLike = Union[str, Path]


def ensure_dir(directory: PathLike) -> Path:
    """Create ``directory`` (and parents) if missing; return it as a Path."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def atomic_write_bytes(path: PathLike, data: bytes) -> None:
    """Replace ``path`` with ``data`` in one rename.

    The temporary file is created next to the target so the rename never
    crosses a filesystem.  Concurrent writers to the same directory each
    get their own temporary name.

    Raises
    ------
    RuntimeError
        If the file could not be written; the temporary file is removed.
    """
    path = Path(path)
    ensure_dir(path.parent)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise RuntimeError(f"Could not write {path}: {e}") from e


def atomic_write_text(path: PathLike, text: str, encoding: str = "utf-8") -> None:
    """Text variant of :func:`atomic_write_bytes`; newlines are written as-is."""
    atomic_write_bytes(path, text.encode(encoding))


def atomic_yaml_dump(document: Any, path: PathLike) -> None:
    """Write ``document`` as block-style YAML, keeping key order."""
    text = yaml.safe_dump(
        document,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )
    atomic_write_text(path, text)


def load_yaml(path: PathLike) -> Any:
    """Parse a YAML file with ``safe_load``.

    Returns ``None`` for an empty file; callers decide whether that is an
    error.

    Raises
    ------
    FileNotFoundError
        If ``path`` doesn't exist.
    ValueError
        If the file is not valid YAML.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"YAML file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"{path} is not valid YAML: {e}") from e
