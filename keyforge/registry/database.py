"""Keycode registry -- which keycode names exist and what they take.

The code generator validates layouts against a ``KeycodeRegistry``.  Any
object with the four methods below works; ``KeycodeDatabase`` is the
default implementation backed by ``keycodes.yaml`` shipped next to this
module.

Usage::

    from keyforge.registry import KeycodeDatabase
    registry = KeycodeDatabase.load()          # shipped database
    registry.is_keycode("KC_A")                # True
    registry.function_spec("LT").args          # ("layer", "keycode")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from keyforge.utils.validators import load_keycode_database

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = Path(__file__).parent / "keycodes.yaml"


@dataclass(frozen=True, slots=True)
class FunctionSpec:
    """Signature of a parametrised keycode.

    ``args`` lists argument kinds: ``keycode``, ``mod``, ``layer``, ``int``
    or ``tap_dance``.
    """

    name: str
    args: tuple[str, ...]
    description: str = ""

    @property
    def arity(self) -> int:
        return len(self.args)


class KeycodeRegistry(Protocol):
    """Interface the validator needs from a keycode database."""

    def is_keycode(self, name: str) -> bool: ...

    def function_spec(self, name: str) -> FunctionSpec | None: ...

    def is_modifier(self, name: str) -> bool: ...

    def describe(self, name: str) -> str | None: ...


class KeycodeDatabase:
    """In-memory keycode database.

    Parameters
    ----------
    groups : dict[str, list[str]]
        Display group -> keycodes.
    aliases : dict[str, str]
        Alternative spelling -> canonical keycode.
    modifiers : list[str]
        Modifier mask names (``MOD_LCTL`` ...).
    functions : dict[str, FunctionSpec]
        Parametrised keycodes.
    """

    def __init__(
        self,
        groups: dict[str, list[str]],
        aliases: dict[str, str] | None = None,
        modifiers: list[str] | None = None,
        functions: dict[str, FunctionSpec] | None = None,
    ) -> None:
        self._groups = {g: list(codes) for g, codes in groups.items()}
        self._group_of = {code: g for g, codes in groups.items() for code in codes}
        self._aliases = dict(aliases or {})
        self._modifiers = frozenset(modifiers or ())
        self._functions = dict(functions or {})

    @classmethod
    def load(cls, path: str | Path | None = None) -> KeycodeDatabase:
        """Load a database from YAML (default: the shipped ``keycodes.yaml``).

        Raises
        ------
        FileNotFoundError
            If the file doesn't exist.
        ValueError
            If the document fails schema validation.
        """
        path = Path(path) if path is not None else DEFAULT_DATABASE
        doc = load_keycode_database(path)
        functions = {
            name: FunctionSpec(name, tuple(f.args), f.description)
            for name, f in doc.functions.items()
        }
        db = cls(doc.groups, doc.aliases, doc.modifiers, functions)
        logger.debug(
            "Loaded keycode database %s: %d keycodes, %d aliases, %d functions",
            path, len(db._group_of), len(db._aliases), len(functions),
        )
        return db

    # ------------------------------------------------------------------
    # KeycodeRegistry
    # ------------------------------------------------------------------

    def is_keycode(self, name: str) -> bool:
        return name in self._group_of or name in self._aliases

    def function_spec(self, name: str) -> FunctionSpec | None:
        return self._functions.get(name)

    def is_modifier(self, name: str) -> bool:
        return name in self._modifiers

    def describe(self, name: str) -> str | None:
        """Short description: function help text or the keycode's group."""
        spec = self._functions.get(name)
        if spec is not None:
            return spec.description or name
        canonical = self.canonical(name)
        group = self._group_of.get(canonical)
        if group is None:
            return None
        if canonical != name:
            return f"{group} ({canonical})"
        return group

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    def canonical(self, name: str) -> str:
        """Resolve an alias to its canonical keycode; other names unchanged."""
        return self._aliases.get(name, name)

    def groups(self) -> list[str]:
        return list(self._groups)

    def keycodes_in(self, group: str) -> list[str]:
        return list(self._groups.get(group, ()))

    def __len__(self) -> int:
        return len(self._group_of)
