"""Keyboard description -> ``KeyboardGeometry``.

Reads the QMK-style description (``info.json`` / ``keyboard.json``) that
vendors ship per keyboard and builds the immutable geometry of one layout
variant.

* Matrix size comes from ``matrix_size`` when present, otherwise from the
  largest matrix position of the variant.
* LED indices follow the order of ``rgb_matrix.layout`` (matched by matrix
  position).  Without an ``rgb_matrix`` section the layout array order is
  used, which is how most per-key RGB boards are wired.
* ``split.enabled`` halves the matrix rows: the top half is the left
  block, the bottom half the right block.
"""

from __future__ import annotations

import logging
from pathlib import Path

from keyforge.mapping.visual_layout import GeometryError
from keyforge.models.geometry import (
    KeyboardGeometry,
    KeyGeometry,
    MatrixPosition,
    SplitConfig,
)
from keyforge.utils.validators import KeyboardInfoV1, load_keyboard_info

logger = logging.getLogger(__name__)


def list_layout_variants(info: KeyboardInfoV1) -> list[tuple[str, int]]:
    """``(variant name, key count)`` pairs, sorted by name."""
    return sorted((name, len(v.layout)) for name, v in info.layouts.items())


def geometry_from_info(info: KeyboardInfoV1, variant: str) -> KeyboardGeometry:
    """Build the geometry of ``variant``.

    Parameters
    ----------
    info : KeyboardInfoV1
        Validated keyboard description.
    variant : str
        Layout variant name (``"LAYOUT_split_3x6_3"``).

    Returns
    -------
    KeyboardGeometry

    Raises
    ------
    GeometryError
        If the variant doesn't exist, or a split matrix has an odd row count.
    """
    layout_def = info.layouts.get(variant)
    if layout_def is None:
        available = ", ".join(name for name, _ in list_layout_variants(info))
        raise GeometryError(
            f"Layout variant {variant!r} not found for {info.keyboard_name} "
            f"(available: {available})"
        )

    if info.matrix_size is not None:
        rows, cols = info.matrix_size.rows, info.matrix_size.cols
    else:
        rows = max(k.matrix[0] for k in layout_def.layout) + 1
        cols = max(k.matrix[1] for k in layout_def.layout) + 1

    led_of = _led_indices(info, layout_def)

    keys = tuple(
        KeyGeometry(
            matrix=MatrixPosition(*entry.matrix),
            led_index=led_of.get(tuple(entry.matrix)),
            x=entry.x,
            y=entry.y,
            width=entry.w,
            height=entry.h,
            rotation=entry.r,
            extra=entry.extra,
        )
        for entry in layout_def.layout
    )

    split = None
    if info.is_split:
        if rows % 2:
            raise GeometryError(
                f"Split keyboard {info.keyboard_name} has an odd matrix row count ({rows})"
            )
        half = rows // 2
        split = SplitConfig(left_rows=(0, half), right_rows=(half, rows))

    logger.info(
        "Loaded geometry %s/%s: %dx%d matrix, %d keys%s",
        info.keyboard_name, variant, rows, cols, len(keys),
        " (split)" if split else "",
    )
    return KeyboardGeometry(
        keyboard_name=info.keyboard_name,
        layout_name=variant,
        matrix_rows=rows,
        matrix_cols=cols,
        keys=keys,
        split=split,
    )


def load_geometry(path: str | Path, variant: str) -> KeyboardGeometry:
    """Load a description file and build the geometry of ``variant``."""
    return geometry_from_info(load_keyboard_info(path), variant)


def _led_indices(info: KeyboardInfoV1, layout_def) -> dict[tuple[int, int], int]:
    if info.rgb_matrix is None or not info.rgb_matrix.layout:
        return {tuple(entry.matrix): idx for idx, entry in enumerate(layout_def.layout)}
    return {
        tuple(led.matrix): idx
        for idx, led in enumerate(info.rgb_matrix.layout)
        if led.matrix is not None
    }
