"""Coordinate mapping engine -- Matrix <-> LED <-> Visual.

Built once per keyboard / layout-variant selection from an immutable
``KeyboardGeometry`` and never patched: a variant switch builds a new
mapping.  All queries are dict lookups and either return a value or raise
``NotFound``; nothing here guesses a default.

Visual assignment
-----------------
Non-split keyboards use the matrix address unchanged.

Split keyboards declare a left and a right block of matrix rows.  With
``N = matrix_cols``:

* left block  ``(r, c)`` -> ``(r - left_start, c)``
* right block ``(r, c)`` -> ``(r - right_start, 2N - 1 - c)``

The right half is wired mirrored, so its physical column 0 (outer edge)
lands on the last visual column and column ``N - 1`` on column ``N``.

Extra keys (thumb clusters and other off-grid keys) keep the visual row
their matrix row maps to and get columns starting at the regular grid
width (``N``, or ``2N`` when split).  Within one visual row extras are
ordered by physical ``x`` and then matrix position, so the result does not
depend on the order the keyboard description lists them in.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from keyforge.models.geometry import (
    KeyboardGeometry,
    KeyGeometry,
    MatrixPosition,
    VisualPosition,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class GeometryError(Exception):
    """Raised when a keyboard geometry cannot be mapped.

    Attributes
    ----------
    position : MatrixPosition | VisualPosition | None
        Offending position, when the problem is tied to one.
    """

    def __init__(self, message: str, position: MatrixPosition | VisualPosition | None = None) -> None:
        super().__init__(message)
        self.position = position


class NotFound(LookupError):
    """Raised by mapping queries for an address the mapping doesn't contain."""

    def __init__(self, kind: str, key: object) -> None:
        super().__init__(f"No {kind} mapping for {key}")
        self.kind = kind
        self.key = key


class MappingInconsistency(Exception):
    """A layout position has no counterpart in the active mapping.

    Raised (or collected) per position by the code generator.
    """

    def __init__(self, position: VisualPosition | MatrixPosition, layer: int | None = None) -> None:
        where = f" on layer {layer}" if layer is not None else ""
        super().__init__(f"{position}{where} has no counterpart in the mapping")
        self.position = position
        self.layer = layer


# ---------------------------------------------------------------------------
# Matrix <-> LED
# ---------------------------------------------------------------------------


class MatrixMapping:
    """Injective Matrix <-> LED association.

    Keys without an LED are simply absent from both directions.
    """

    def __init__(self, geometry: KeyboardGeometry) -> None:
        self._m2l: dict[MatrixPosition, int] = {}
        self._l2m: dict[int, MatrixPosition] = {}
        for key in geometry.keys:
            if key.led_index is None:
                continue
            other = self._l2m.get(key.led_index)
            if other is not None:
                raise GeometryError(
                    f"LED index {key.led_index} shared by {other} and {key.matrix}",
                    key.matrix,
                )
            self._m2l[key.matrix] = key.led_index
            self._l2m[key.led_index] = key.matrix

    def matrix_to_led(self, matrix: MatrixPosition) -> int:
        try:
            return self._m2l[matrix]
        except KeyError:
            raise NotFound("LED", matrix) from None

    def led_to_matrix(self, led: int) -> MatrixPosition:
        try:
            return self._l2m[led]
        except KeyError:
            raise NotFound("matrix", f"LED {led}") from None

    def has_led(self, matrix: MatrixPosition) -> bool:
        return matrix in self._m2l

    def led_indices(self) -> list[int]:
        """LED indices in ascending order."""
        return sorted(self._l2m)

    def __len__(self) -> int:
        return len(self._l2m)


# ---------------------------------------------------------------------------
# Matrix <-> Visual (+ LED)
# ---------------------------------------------------------------------------


class VisualLayoutMapping:
    """Bidirectional Matrix <-> Visual mapping with derived LED lookups.

    Use :meth:`build`; the constructor takes already-computed tables.
    """

    def __init__(
        self,
        geometry: KeyboardGeometry,
        matrix_to_visual: dict[MatrixPosition, VisualPosition],
        leds: MatrixMapping,
    ) -> None:
        self._geometry = geometry
        self._m2v = matrix_to_visual
        self._v2m = {v: m for m, v in matrix_to_visual.items()}
        self._leds = leds
        self._order = tuple(k.matrix for k in geometry.keys)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, geometry: KeyboardGeometry) -> VisualLayoutMapping:
        """Build the mapping for one keyboard geometry.

        Parameters
        ----------
        geometry : KeyboardGeometry
            Immutable geometry of the selected layout variant.

        Returns
        -------
        VisualLayoutMapping

        Raises
        ------
        GeometryError
            If a key lies outside the matrix or outside both split blocks,
            two keys share a matrix position, two keys share an LED index,
            or two keys land on the same visual position.
        """
        seen: set[MatrixPosition] = set()
        for key in geometry.keys:
            m = key.matrix
            if m.row >= geometry.matrix_rows or m.col >= geometry.matrix_cols:
                raise GeometryError(
                    f"{m} outside the {geometry.matrix_rows}x{geometry.matrix_cols} "
                    f"matrix of {geometry.keyboard_name}",
                    m,
                )
            if m in seen:
                raise GeometryError(f"Duplicate key at {m}", m)
            seen.add(m)

        leds = MatrixMapping(geometry)

        m2v: dict[MatrixPosition, VisualPosition] = {}
        extras: dict[int, list[KeyGeometry]] = defaultdict(list)
        for key in geometry.keys:
            row, col = _grid_cell(geometry, key.matrix)
            if key.extra:
                extras[row].append(key)
            else:
                m2v[key.matrix] = VisualPosition(row, col)

        width = geometry.matrix_cols * (2 if geometry.is_split else 1)
        for row, keys in extras.items():
            keys.sort(key=lambda k: (k.x, k.matrix))
            for offset, key in enumerate(keys):
                m2v[key.matrix] = VisualPosition(row, width + offset)

        owner: dict[VisualPosition, MatrixPosition] = {}
        for key in geometry.keys:
            v = m2v[key.matrix]
            if v in owner:
                raise GeometryError(
                    f"{owner[v]} and {key.matrix} both map to {v}", v
                )
            owner[v] = key.matrix

        logger.debug(
            "Built mapping for %s/%s: %d keys, %d LEDs, %d extras",
            geometry.keyboard_name, geometry.layout_name,
            len(m2v), len(leds), sum(len(k) for k in extras.values()),
        )
        return cls(geometry, m2v, leds)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def matrix_to_visual(self, matrix: MatrixPosition) -> VisualPosition:
        try:
            return self._m2v[matrix]
        except KeyError:
            raise NotFound("visual", matrix) from None

    def visual_to_matrix(self, visual: VisualPosition) -> MatrixPosition:
        try:
            return self._v2m[visual]
        except KeyError:
            raise NotFound("matrix", visual) from None

    def matrix_to_led(self, matrix: MatrixPosition) -> int:
        if matrix not in self._m2v:
            raise NotFound("LED", matrix)
        return self._leds.matrix_to_led(matrix)

    def led_to_matrix(self, led: int) -> MatrixPosition:
        return self._leds.led_to_matrix(led)

    def led_to_visual(self, led: int) -> VisualPosition:
        return self._m2v[self._leds.led_to_matrix(led)]

    def visual_to_led(self, visual: VisualPosition) -> int:
        return self._leds.matrix_to_led(self.visual_to_matrix(visual))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def geometry(self) -> KeyboardGeometry:
        return self._geometry

    @property
    def key_count(self) -> int:
        return len(self._m2v)

    @property
    def leds(self) -> MatrixMapping:
        return self._leds

    def has_visual(self, visual: VisualPosition) -> bool:
        return visual in self._v2m

    def visual_positions(self) -> list[VisualPosition]:
        """All visual positions, row-major."""
        return sorted(self._v2m)

    def matrix_order(self) -> tuple[MatrixPosition, ...]:
        """Matrix positions in geometry declaration order (LAYOUT macro order)."""
        return self._order

    def led_order(self) -> list[tuple[int, MatrixPosition]]:
        """``(led_index, matrix)`` pairs in ascending LED order."""
        return [(led, self._leds.led_to_matrix(led)) for led in self._leds.led_indices()]

    def bounds(self) -> tuple[int, int]:
        """``(rows, cols)`` of the visual grid, extras included."""
        if not self._v2m:
            return (0, 0)
        return (
            max(v.row for v in self._v2m) + 1,
            max(v.col for v in self._v2m) + 1,
        )


def _grid_cell(geometry: KeyboardGeometry, m: MatrixPosition) -> tuple[int, int]:
    """Visual (row, col) of a matrix position before extra-key placement."""
    split = geometry.split
    if split is None:
        return (m.row, m.col)

    side = split.side_of(m.row)
    if side == "left":
        return (m.row - split.left_rows[0], m.col)
    if side == "right":
        n = geometry.matrix_cols
        return (m.row - split.right_rows[0], 2 * n - 1 - m.col)
    raise GeometryError(
        f"{m} is in neither split block (left rows {split.left_rows}, "
        f"right rows {split.right_rows})",
        m,
    )


def build_mapping(geometry: KeyboardGeometry) -> VisualLayoutMapping:
    """Module-level alias for :meth:`VisualLayoutMapping.build`."""
    return VisualLayoutMapping.build(geometry)
