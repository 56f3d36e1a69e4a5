"""Physical keyboard geometry -- the hardware side of the pipeline.

Three addressing schemes exist for every key:

* **Matrix position** -- electrical scan row/column, fixed by the PCB.
* **LED index** -- position in the per-key lighting chain; optional.
* **Visual position** -- the logical grid cell a user edits.

``KeyboardGeometry`` carries the first two (plus physical coordinates in
keyboard units).  Visual positions are derived from it by
:mod:`keyforge.mapping`; nothing here knows about them beyond the type.

A geometry is immutable.  Switching keyboard or layout variant builds a
new ``KeyboardGeometry`` and a new mapping from it.
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, order=True)
class MatrixPosition:
    """Electrical scan-matrix address ``(row, col)``."""

    row: int
    col: int

    def __post_init__(self) -> None:
        if self.row < 0 or self.col < 0:
            raise ValueError(f"Matrix position must be non-negative, got {self}")

    def __str__(self) -> str:
        return f"matrix({self.row}, {self.col})"


@dataclass(frozen=True, slots=True, order=True)
class VisualPosition:
    """Logical grid cell ``(row, col)`` as edited by the user."""

    row: int
    col: int

    def __post_init__(self) -> None:
        if self.row < 0 or self.col < 0:
            raise ValueError(f"Visual position must be non-negative, got {self}")

    def __str__(self) -> str:
        return f"visual({self.row}, {self.col})"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class KeyGeometry:
    """One physical key.

    Parameters
    ----------
    matrix : MatrixPosition
        Scan address.
    led_index : int | None
        Lighting chain index, ``None`` for keys without an LED.
    x, y : float
        Top-left corner in keyboard units (1u = one standard key).
    width, height : float
        Key size in keyboard units.
    rotation : float
        Rotation in degrees (informational only).
    extra : bool
        Thumb-cluster / off-grid key.  Extras are placed after the regular
        grid columns by the mapping engine.
    """

    matrix: MatrixPosition
    led_index: int | None = None
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0
    rotation: float = 0.0
    extra: bool = False

    def __post_init__(self) -> None:
        if self.led_index is not None and self.led_index < 0:
            raise ValueError(f"led_index must be >= 0, got {self.led_index}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Key size must be positive, got {self.width}x{self.height} "
                f"at {self.matrix}"
            )


# ---------------------------------------------------------------------------
# Keyboard
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SplitConfig:
    """Row blocks of a split keyboard.

    Each block is a half-open ``(start, stop)`` range of matrix rows.  The
    right block is wired mirrored: its physical column 0 is the outer edge.
    """

    left_rows: tuple[int, int]
    right_rows: tuple[int, int]

    def __post_init__(self) -> None:
        for label, (start, stop) in (("left", self.left_rows), ("right", self.right_rows)):
            if start < 0 or stop <= start:
                raise ValueError(f"Invalid {label} row block [{start}, {stop})")
        if self.rows_per_half != self.right_rows[1] - self.right_rows[0]:
            raise ValueError(
                f"Split halves differ in height: left {self.left_rows}, "
                f"right {self.right_rows}"
            )
        ls, le = self.left_rows
        rs, re_ = self.right_rows
        if ls < re_ and rs < le:
            raise ValueError(
                f"Split row blocks overlap: left {self.left_rows}, right {self.right_rows}"
            )

    @property
    def rows_per_half(self) -> int:
        return self.left_rows[1] - self.left_rows[0]

    def side_of(self, row: int) -> str | None:
        """Return ``"left"``, ``"right"`` or ``None`` for a matrix row."""
        if self.left_rows[0] <= row < self.left_rows[1]:
            return "left"
        if self.right_rows[0] <= row < self.right_rows[1]:
            return "right"
        return None


@dataclass(frozen=True, slots=True)
class KeyboardGeometry:
    """Keyboard identity, matrix size and its keys in declaration order.

    ``keys`` order is the order of the keyboard description's layout
    array, which is also the argument order of the firmware ``LAYOUT``
    macro.  The generator emits keymaps in this order.
    """

    keyboard_name: str
    layout_name: str
    matrix_rows: int
    matrix_cols: int
    keys: tuple[KeyGeometry, ...]
    split: SplitConfig | None = None

    def __post_init__(self) -> None:
        if self.matrix_rows <= 0 or self.matrix_cols <= 0:
            raise ValueError(
                f"Matrix must be non-empty, got {self.matrix_rows}x{self.matrix_cols}"
            )
        if not isinstance(self.keys, tuple):
            object.__setattr__(self, "keys", tuple(self.keys))

    @property
    def is_split(self) -> bool:
        return self.split is not None

    @property
    def key_count(self) -> int:
        return len(self.keys)

    @property
    def led_count(self) -> int:
        return sum(1 for k in self.keys if k.led_index is not None)

    def matrix_positions(self) -> list[MatrixPosition]:
        """Matrix positions in declaration order."""
        return [k.matrix for k in self.keys]
