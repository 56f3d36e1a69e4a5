"""Keycode variants -- the closed set of key kinds a layout can bind.

A key's keycode is stored in the layout as text (``"KC_A"``,
``"LT(@nav, KC_SPC)"``, ``"TD(esc_caps)"``).  ``parse_keycode`` turns that
text into one of a small number of immutable variants so that the
validator and the code generator dispatch on the kind instead of
re-inspecting strings.

Variants
--------
``BasicKeycode``     plain keycode or alias (``KC_A``, ``_______``)
``LayerKeycode``     layer switch (``MO``, ``TG``, ``TO``, ``TT``, ``OSL``,
                     ``DF``, ``PDF``, ``LT``, ``LM``)
``TapDanceKeycode``  ``TD(name)`` reference to a layout tap dance
``FunctionKeycode``  any other parametrised keycode (``MT``, ``LCTL``,
                     ``SH_T``, ``OSM`` ...)

Argument variants
-----------------
``LayerRef``  integer layer index or ``@<layer-id>`` symbolic reference
``ModMask``   ``MOD_LCTL | MOD_LSFT`` style modifier mask

Whether a name exists at all is the registry's business; this module only
checks the syntax.
"""

from __future__ import annotations

import re
from abc import ABC
from dataclasses import dataclass
from typing import Iterator, Union


class KeycodeSyntaxError(ValueError):
    """Raised when keycode text cannot be parsed."""

    def __init__(self, text: str, reason: str) -> None:
        super().__init__(f"Invalid keycode {text!r}: {reason}")
        self.text = text
        self.reason = reason


LAYER_FUNCTIONS: frozenset[str] = frozenset(
    {"MO", "TG", "TO", "TT", "OSL", "DF", "PDF", "LT", "LM"}
)
"""Keycode functions whose first argument is a layer."""

TAP_DANCE_FUNCTION = "TD"

_TOKEN = re.compile(
    r"\s*(?:(?P<layer_id>@[a-z0-9][a-z0-9_-]*)"
    r"|(?P<int>\d+)"
    r"|(?P<ident>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<punct>[(),|]))"
)
_TAP_DANCE_NAME = re.compile(r"^[a-z][a-z0-9_]*$")


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Keycode(ABC):
    """Base class for all keycode variants."""

    pass


@dataclass(frozen=True, slots=True)
class BasicKeycode(Keycode):
    """A plain keycode with no arguments."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class LayerRef:
    """Layer argument: either a numeric index or a layer id.

    Exactly one of ``index`` and ``layer_id`` is set.
    """

    index: int | None = None
    layer_id: str | None = None

    def __post_init__(self) -> None:
        if (self.index is None) == (self.layer_id is None):
            raise ValueError("LayerRef needs exactly one of index or layer_id")

    @property
    def is_symbolic(self) -> bool:
        return self.layer_id is not None

    def __str__(self) -> str:
        return f"@{self.layer_id}" if self.layer_id is not None else str(self.index)


@dataclass(frozen=True, slots=True)
class ModMask:
    """Modifier mask argument (``MOD_LCTL | MOD_LSFT``)."""

    names: tuple[str, ...]

    def __str__(self) -> str:
        return " | ".join(self.names)


Argument = Union[Keycode, LayerRef, ModMask, int]


@dataclass(frozen=True, slots=True)
class LayerKeycode(Keycode):
    """Layer-switch keycode.

    ``argument`` is the tap keycode of ``LT`` or the modifier mask of
    ``LM``; ``None`` for the single-argument functions.
    """

    function: str
    layer: LayerRef
    argument: Keycode | ModMask | None = None

    def __str__(self) -> str:
        if self.argument is None:
            return f"{self.function}({self.layer})"
        return f"{self.function}({self.layer}, {self.argument})"


@dataclass(frozen=True, slots=True)
class TapDanceKeycode(Keycode):
    """``TD(name)``: reference to a tap dance defined on the layout."""

    name: str

    def __str__(self) -> str:
        return f"TD({self.name})"


@dataclass(frozen=True, slots=True)
class FunctionKeycode(Keycode):
    """Any other parametrised keycode (``MT(MOD_LCTL, KC_A)``, ``LCTL(KC_C)``)."""

    name: str
    args: tuple[Argument, ...]

    def __str__(self) -> str:
        return f"{self.name}({', '.join(str(a) for a in self.args)})"


Reference = Union[LayerRef, TapDanceKeycode]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class _Parser:
    """Recursive-descent parser over the token stream of one keycode."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = self._tokenize(text)
        self._pos = 0

    def _tokenize(self, text: str) -> list[tuple[str, str]]:
        tokens: list[tuple[str, str]] = []
        pos = 0
        stripped = text.rstrip()
        while pos < len(stripped):
            m = _TOKEN.match(stripped, pos)
            if m is None:
                raise KeycodeSyntaxError(text, f"unexpected character at offset {pos}")
            kind = m.lastgroup
            tokens.append((kind, m.group(kind)))
            pos = m.end()
        return tokens

    def _peek(self) -> tuple[str, str] | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self, kind: str, value: str | None = None) -> str:
        tok = self._peek()
        if tok is None or tok[0] != kind or (value is not None and tok[1] != value):
            expected = value if value is not None else kind
            found = "end of input" if tok is None else repr(tok[1])
            raise KeycodeSyntaxError(self._text, f"expected {expected}, found {found}")
        self._pos += 1
        return tok[1]

    def parse(self) -> Keycode:
        if not self._tokens:
            raise KeycodeSyntaxError(self._text, "empty keycode")
        kc = self._keycode()
        if self._peek() is not None:
            raise KeycodeSyntaxError(self._text, f"trailing input {self._peek()[1]!r}")
        return kc

    def _keycode(self) -> Keycode:
        name = self._take("ident")
        tok = self._peek()
        if tok != ("punct", "("):
            return BasicKeycode(name)
        self._take("punct", "(")
        args = [self._argument()]
        while self._peek() == ("punct", ","):
            self._take("punct", ",")
            args.append(self._argument())
        self._take("punct", ")")
        return self._build(name, args)

    def _argument(self) -> Argument:
        tok = self._peek()
        if tok is None:
            raise KeycodeSyntaxError(self._text, "missing argument")
        kind, value = tok
        if kind == "layer_id":
            self._pos += 1
            return LayerRef(layer_id=value[1:])
        if kind == "int":
            self._pos += 1
            return int(value)
        if kind == "ident" and value.startswith("MOD_"):
            names = [self._take("ident")]
            while self._peek() == ("punct", "|"):
                self._take("punct", "|")
                names.append(self._take("ident"))
            return ModMask(tuple(names))
        return self._keycode()

    def _build(self, name: str, args: list[Argument]) -> Keycode:
        if name == TAP_DANCE_FUNCTION:
            if len(args) != 1 or not isinstance(args[0], BasicKeycode):
                raise KeycodeSyntaxError(self._text, "TD() takes a single tap dance name")
            td_name = args[0].name
            if not _TAP_DANCE_NAME.match(td_name):
                raise KeycodeSyntaxError(
                    self._text, f"tap dance name {td_name!r} must match [a-z][a-z0-9_]*"
                )
            return TapDanceKeycode(td_name)

        if name in LAYER_FUNCTIONS:
            layer = args[0]
            if isinstance(layer, int) and not isinstance(layer, bool):
                layer = LayerRef(index=layer)
            if not isinstance(layer, LayerRef):
                raise KeycodeSyntaxError(
                    self._text, f"{name}() needs a layer index or @layer-id first"
                )
            if name in ("LT", "LM"):
                if len(args) != 2:
                    raise KeycodeSyntaxError(self._text, f"{name}() takes 2 arguments")
                second = args[1]
                if name == "LT" and not isinstance(second, Keycode):
                    raise KeycodeSyntaxError(self._text, "LT() needs a keycode second")
                if name == "LM" and not isinstance(second, ModMask):
                    raise KeycodeSyntaxError(self._text, "LM() needs a modifier mask second")
                return LayerKeycode(name, layer, second)
            if len(args) != 1:
                raise KeycodeSyntaxError(self._text, f"{name}() takes 1 argument")
            return LayerKeycode(name, layer)

        return FunctionKeycode(name, tuple(args))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_keycode(text: str) -> Keycode:
    """Parse keycode text into its variant.

    Parameters
    ----------
    text : str
        Keycode as written in a layout (``"KC_A"``, ``"MO(1)"``,
        ``"LT(@nav, KC_SPC)"``, ``"TD(esc_caps)"``).

    Returns
    -------
    Keycode
        One of ``BasicKeycode``, ``LayerKeycode``, ``TapDanceKeycode``,
        ``FunctionKeycode``.

    Raises
    ------
    KeycodeSyntaxError
        If the text is not a well-formed keycode expression.
    """
    if not isinstance(text, str):
        raise KeycodeSyntaxError(repr(text), "keycode must be a string")
    return _Parser(text).parse()


def iter_references(kc: Keycode) -> Iterator[Reference]:
    """Yield every symbolic reference embedded in ``kc``, depth first.

    Layer arguments (numeric and ``@id``) and tap dance names are
    references: they must resolve against the layout, not the registry.
    """
    if isinstance(kc, TapDanceKeycode):
        yield kc
    elif isinstance(kc, LayerKeycode):
        yield kc.layer
        if isinstance(kc.argument, Keycode):
            yield from iter_references(kc.argument)
    elif isinstance(kc, FunctionKeycode):
        for arg in kc.args:
            if isinstance(arg, LayerRef):
                yield arg
            elif isinstance(arg, Keycode):
                yield from iter_references(arg)
