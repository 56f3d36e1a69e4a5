"""YAML/JSON schema validation for external inputs.

Provides centralized validation using pydantic for every document the
pipeline reads from outside:
    - Keyboard description (QMK info.json / keyboard.json): matrix size,
      layout variants, RGB matrix LED order, split flag
    - Layout file (layout.v1.yaml): layers, categories, tap dances, combos,
      idle effect, tap-hold, RGB and ripple settings
    - Keycode database (keycodes.v1.yaml): keycode groups, aliases,
      modifiers, parametrised functions

All loaders fail fast with actionable messages (offending key, expected
range) and raise ``ValueError`` on schema violations.

Usage:
    from keyforge.utils import validators

    info = validators.load_keyboard_info("crkbd/info.json")
    layout_doc = validators.load_layout_file("layouts/corne.yaml")
    db_doc = validators.load_keycode_database("keyforge/registry/keycodes.yaml")
"""

import json
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_HEX_COLOR = re.compile(r"^#?[0-9A-Fa-f]{6}$")
_KEBAB = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

ARG_KINDS = ("keycode", "mod", "layer", "int", "tap_dance")


def _check_hex(v: Optional[str]) -> Optional[str]:
    if v is not None and not _HEX_COLOR.match(v):
        raise ValueError(f"Colour must be #RRGGBB, got {v!r}")
    return v


# ============================================================================
# KEYBOARD DESCRIPTION (QMK info.json)
# ============================================================================

class MatrixSize(BaseModel):
    """Scan matrix dimensions."""
    rows: int = Field(..., ge=1, le=64, description="Matrix rows")
    cols: int = Field(..., ge=1, le=64, description="Matrix columns")


class LayoutKey(BaseModel):
    """One entry of ``layouts.<variant>.layout``."""
    matrix: Tuple[int, int] = Field(..., description="Matrix position [row, col]")
    x: float = Field(..., description="Physical X in keyboard units")
    y: float = Field(..., description="Physical Y in keyboard units")
    w: float = Field(1.0, gt=0.0, description="Width in keyboard units")
    h: float = Field(1.0, gt=0.0, description="Height in keyboard units")
    r: float = Field(0.0, description="Rotation in degrees")
    extra: bool = Field(False, description="Off-grid thumb/extra key")

    @field_validator('matrix')
    @classmethod
    def validate_matrix(cls, v: Tuple[int, int]) -> Tuple[int, int]:
        if v[0] < 0 or v[1] < 0:
            raise ValueError(f"Matrix position must be non-negative, got {list(v)}")
        return v


class LayoutVariantDef(BaseModel):
    """Layout variant: ordered key list (the LAYOUT macro argument order)."""
    layout: List[LayoutKey] = Field(..., min_length=1)


class RgbLed(BaseModel):
    """One entry of ``rgb_matrix.layout``; underglow LEDs have no matrix."""
    matrix: Optional[Tuple[int, int]] = None
    x: float = 0.0
    y: float = 0.0
    flags: int = 0


class RgbMatrixDef(BaseModel):
    layout: List[RgbLed] = Field(default_factory=list)
    split_count: Optional[Tuple[int, int]] = None


class SplitDef(BaseModel):
    enabled: bool = False


class KeyboardInfoV1(BaseModel):
    """QMK keyboard description (subset used for geometry).

    ``matrix_size`` is optional; when absent the loader derives it from
    the largest matrix position of the selected variant.
    """
    model_config = ConfigDict(extra='ignore')

    keyboard_name: str = Field(..., min_length=1)
    manufacturer: Optional[str] = None
    matrix_size: Optional[MatrixSize] = None
    layouts: Dict[str, LayoutVariantDef] = Field(..., min_length=1)
    rgb_matrix: Optional[RgbMatrixDef] = None
    split: Optional[SplitDef] = None

    @model_validator(mode='after')
    def validate_matrix_bounds(self) -> 'KeyboardInfoV1':
        """Every matrix position must fit ``matrix_size`` when it is given."""
        if self.matrix_size is None:
            return self
        rows, cols = self.matrix_size.rows, self.matrix_size.cols
        for name, variant in self.layouts.items():
            for idx, key in enumerate(variant.layout):
                r, c = key.matrix
                if r >= rows or c >= cols:
                    raise ValueError(
                        f"Layout {name} key {idx} matrix {list(key.matrix)} outside "
                        f"matrix_size {rows}x{cols}"
                    )
        return self

    @property
    def is_split(self) -> bool:
        return self.split is not None and self.split.enabled


# ============================================================================
# LAYOUT FILE (layout.v1.yaml)
# ============================================================================

class CategoryDoc(BaseModel):
    id: str = Field(..., description="Kebab-case identifier")
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(..., description="#RRGGBB")

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not _KEBAB.match(v):
            raise ValueError(f"Category id must be kebab-case, got {v!r}")
        return v

    @field_validator('color')
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_hex(v)


class KeyDoc(BaseModel):
    """One key of a layer, addressed by visual position."""
    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)
    keycode: str = Field(..., min_length=1)
    color: Optional[str] = Field(None, description="Per-key override #RRGGBB")
    category: Optional[str] = None
    combo: bool = Field(False, description="Key participates in a combo")
    label: Optional[str] = None
    description: Optional[str] = None

    @field_validator('color')
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_hex(v)


class LayerDoc(BaseModel):
    name: str = Field(..., min_length=1)
    id: Optional[str] = None
    color: str = Field("#FFFFFF", description="Layer default colour")
    category: Optional[str] = None
    layer_colors: bool = Field(True, description="Light keys with the layer category / default colour")
    keys: List[KeyDoc] = Field(default_factory=list)

    @field_validator('color')
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_hex(v)


class TapDanceDoc(BaseModel):
    name: str = Field(..., pattern=r"^[a-z][a-z0-9_]*$")
    single_tap: str
    double_tap: Optional[str] = None
    hold: Optional[str] = None

    @model_validator(mode='after')
    def validate_actions(self) -> 'TapDanceDoc':
        if self.double_tap is None and self.hold is None:
            raise ValueError(f"Tap dance {self.name!r} needs double_tap or hold")
        return self


class ComboDoc(BaseModel):
    name: str = Field(..., pattern=r"^[a-z][a-z0-9_]*$")
    keys: List[Tuple[int, int]] = Field(..., min_length=2, description="Visual [row, col] triggers")
    output: str


class IdleEffectDoc(BaseModel):
    enabled: bool = False
    idle_timeout_ms: int = Field(60_000, ge=0)
    idle_effect_duration_ms: int = Field(300_000, ge=0)
    idle_effect_mode: str = "breathing"


class TapHoldDoc(BaseModel):
    tapping_term: int = Field(200, gt=0, le=5000)
    quick_tap_term: Optional[int] = Field(None, ge=0, le=5000)
    permissive_hold: bool = False
    hold_on_other_key_press: bool = False
    retro_tapping: bool = False


class RippleDoc(BaseModel):
    """Keypress ripple overlay (rgb.ripple)."""
    enabled: bool = False
    max_ripples: int = Field(4, ge=1, le=16)
    duration_ms: int = Field(500, ge=1, le=10_000)
    speed: int = Field(128, ge=1, le=255, description="LED position units per second")
    band_width: int = Field(16, ge=1, le=255, description="LED position units")
    amplitude_pct: int = Field(50, ge=0, le=100)
    color_mode: str = Field("fixed", pattern=r"^(fixed|key_based|hue_shift)$")
    fixed_color: str = "#00FFFF"
    hue_shift_deg: int = Field(60, ge=0, le=359)
    trigger_on_press: bool = True
    trigger_on_release: bool = False
    ignore_transparent: bool = True
    ignore_modifiers: bool = False
    ignore_layer_switch: bool = False

    @field_validator('fixed_color')
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _check_hex(v)

    @model_validator(mode='after')
    def validate_triggers(self) -> 'RippleDoc':
        if self.enabled and not (self.trigger_on_press or self.trigger_on_release):
            raise ValueError("Ripple needs trigger_on_press or trigger_on_release")
        return self


class RgbDoc(BaseModel):
    enabled: bool = True
    brightness: Optional[int] = Field(None, ge=0, le=100, description="Percent")
    saturation: int = Field(100, ge=0, le=100, description="Percent")
    uncolored_key_brightness: int = Field(
        100, ge=0, le=100, description="Percent for keys lit only by their layer"
    )
    timeout_ms: int = Field(0, ge=0)
    ripple: RippleDoc = Field(default_factory=RippleDoc)


class LayoutFileV1(BaseModel):
    """Layout document (layout.v1.yaml)."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: str = Field("layout.v1", alias="schema")
    name: str = Field(..., min_length=1)
    keyboard: str = Field(..., min_length=1)
    layout_variant: str = Field(..., min_length=1)
    keymap_name: str = "default"
    author: str = ""
    description: str = ""
    categories: List[CategoryDoc] = Field(default_factory=list)
    layers: List[LayerDoc] = Field(..., min_length=1)
    tap_dances: List[TapDanceDoc] = Field(default_factory=list)
    combos: List[ComboDoc] = Field(default_factory=list)
    idle_effect: IdleEffectDoc = Field(default_factory=IdleEffectDoc)
    tap_hold: TapHoldDoc = Field(default_factory=TapHoldDoc)
    rgb: RgbDoc = Field(default_factory=RgbDoc)

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "layout.v1":
            raise ValueError(f"Expected schema 'layout.v1', got '{v}'")
        return v

    @model_validator(mode='after')
    def validate_unique_ids(self) -> 'LayoutFileV1':
        """Category ids and layer ids must be unique."""
        cat_ids = [c.id for c in self.categories]
        dupes = sorted({c for c in cat_ids if cat_ids.count(c) > 1})
        if dupes:
            raise ValueError(f"Duplicate category ids: {dupes}")
        layer_ids = [layer.id for layer in self.layers if layer.id]
        dupes = sorted({i for i in layer_ids if layer_ids.count(i) > 1})
        if dupes:
            raise ValueError(f"Duplicate layer ids: {dupes}")
        return self


# ============================================================================
# KEYCODE DATABASE (keycodes.v1.yaml)
# ============================================================================

class FunctionDoc(BaseModel):
    args: List[str] = Field(..., min_length=1)
    description: str = ""

    @field_validator('args')
    @classmethod
    def validate_kinds(cls, v: List[str]) -> List[str]:
        unknown = [k for k in v if k not in ARG_KINDS]
        if unknown:
            raise ValueError(f"Unknown argument kinds {unknown}; expected {list(ARG_KINDS)}")
        return v


class KeycodeDatabaseV1(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_version: str = Field("keycodes.v1", alias="schema")
    groups: Dict[str, List[str]] = Field(..., min_length=1)
    aliases: Dict[str, str] = Field(default_factory=dict)
    modifiers: List[str] = Field(default_factory=list)
    functions: Dict[str, FunctionDoc] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_aliases(self) -> 'KeycodeDatabaseV1':
        """Aliases must point at a keycode that exists in some group."""
        known = {code for codes in self.groups.values() for code in codes}
        dangling = sorted(a for a, target in self.aliases.items() if target not in known)
        if dangling:
            raise ValueError(f"Aliases with unknown targets: {dangling}")
        return self


# ============================================================================
# LOADERS
# ============================================================================

def load_keyboard_info(path: Union[str, Path]) -> KeyboardInfoV1:
    """Load and validate a QMK keyboard description (JSON).

    Parameters
    ----------
    path : Union[str, Path]
        Path to ``info.json`` / ``keyboard.json``

    Returns
    -------
    KeyboardInfoV1
        Validated description

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If the JSON is malformed or fails validation
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Keyboard description not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Keyboard description is not valid JSON at {path}: {e}") from e
    try:
        return KeyboardInfoV1(**data)
    except Exception as e:
        raise ValueError(f"Keyboard description validation failed at {path}: {e}") from e


def load_layout_file(path: Union[str, Path]) -> LayoutFileV1:
    """Load and validate a layout document (layout.v1.yaml).

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails
    """
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Layout file not found: {path}")

    data = fs.load_yaml(path)
    try:
        return LayoutFileV1(**data)
    except Exception as e:
        raise ValueError(f"Layout file validation failed at {path}: {e}") from e


def load_keycode_database(path: Union[str, Path]) -> KeycodeDatabaseV1:
    """Load and validate the keycode database (keycodes.v1.yaml)."""
    from . import fs

    data = fs.load_yaml(path)
    try:
        return KeycodeDatabaseV1(**data)
    except Exception as e:
        raise ValueError(f"Keycode database validation failed at {path}: {e}") from e
