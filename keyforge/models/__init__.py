"""
Data model shared by every pipeline stage.

Geometry values (hardware side) are immutable; layout values (user side)
are mutable between generation cycles and snapshotted for each run.
"""

from keyforge.models.geometry import (
    KeyboardGeometry,
    KeyGeometry,
    MatrixPosition,
    SplitConfig,
    VisualPosition,
)
from keyforge.models.keycodes import (
    BasicKeycode,
    FunctionKeycode,
    Keycode,
    KeycodeSyntaxError,
    LayerKeycode,
    LayerRef,
    ModMask,
    TapDanceKeycode,
    iter_references,
    parse_keycode,
)
from keyforge.models.layout import (
    Category,
    Combo,
    IdleEffectSettings,
    KeyDefinition,
    Layer,
    Layout,
    LayoutMetadata,
    TapDance,
    TapHoldSettings,
)
from keyforge.models.loader import (
    layout_from_document,
    layout_to_document,
    load_layout,
    save_layout,
)
from keyforge.models.rgb import RgbColor

__all__ = [
    "KeyboardGeometry",
    "KeyGeometry",
    "MatrixPosition",
    "SplitConfig",
    "VisualPosition",
    "BasicKeycode",
    "FunctionKeycode",
    "Keycode",
    "KeycodeSyntaxError",
    "LayerKeycode",
    "LayerRef",
    "ModMask",
    "TapDanceKeycode",
    "iter_references",
    "parse_keycode",
    "Category",
    "Combo",
    "IdleEffectSettings",
    "KeyDefinition",
    "Layer",
    "Layout",
    "LayoutMetadata",
    "TapDance",
    "TapHoldSettings",
    "layout_from_document",
    "layout_to_document",
    "load_layout",
    "save_layout",
    "RgbColor",
]
