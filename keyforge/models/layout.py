"""Layout data model -- what the user edits.

A ``Layout`` is owned by the editing session and mutated between
generation cycles.  The firmware pipeline never works on the live object:
``Layout.snapshot()`` is taken when generation or a build is invoked and
the pipeline only reads that copy.

Categories are referenced by id (weak references).  Colour resolution
tolerates ids that no longer resolve; ``Layout.remove_category`` still
clears or reassigns every reference so saved layouts carry no dangling ids.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field

from keyforge.models.geometry import VisualPosition
from keyforge.models.rgb import RgbColor

logger = logging.getLogger(__name__)

_KEBAB = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_IDENT = re.compile(r"^[a-z][a-z0-9_]*$")

MAX_CATEGORY_NAME = 50

IDLE_EFFECT_MODES: dict[str, str] = {
    "solid_color": "RGB_MATRIX_SOLID_COLOR",
    "breathing": "RGB_MATRIX_BREATHING",
    "cycle_all": "RGB_MATRIX_CYCLE_ALL",
    "cycle_left_right": "RGB_MATRIX_CYCLE_LEFT_RIGHT",
    "rainbow_moving_chevron": "RGB_MATRIX_RAINBOW_MOVING_CHEVRON",
    "rainbow_beacon": "RGB_MATRIX_RAINBOW_BEACON",
    "jellybean_raindrops": "RGB_MATRIX_JELLYBEAN_RAINDROPS",
    "pixel_rain": "RGB_MATRIX_PIXEL_RAIN",
}
"""Idle effect mode name -> QMK RGB matrix mode constant."""

RIPPLE_COLOR_MODES = ("fixed", "key_based", "hue_shift")
"""Ripple colour sources: one fixed colour, the pressed key's table colour,
or the current RGB matrix hue shifted by ``hue_shift_deg``."""


# ---------------------------------------------------------------------------
# Categories and keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Category:
    """Named colour group referenced by keys and layers.

    Parameters
    ----------
    id : str
        Kebab-case identifier (``"navigation"``, ``"media-keys"``).
    name : str
        Display name, 1-50 characters.
    color : RgbColor
        Colour applied to members.
    """

    id: str
    name: str
    color: RgbColor

    def __post_init__(self) -> None:
        if not _KEBAB.match(self.id):
            raise ValueError(f"Category id must be kebab-case, got {self.id!r}")
        if not self.name.strip() or len(self.name) > MAX_CATEGORY_NAME:
            raise ValueError(
                f"Category name must be 1-{MAX_CATEGORY_NAME} chars, got {self.name!r}"
            )


@dataclass(slots=True)
class KeyDefinition:
    """Binding of one visual position on one layer."""

    position: VisualPosition
    keycode: str
    color_override: RgbColor | None = None
    category_id: str | None = None
    combo_participant: bool = False
    label: str | None = None
    description: str | None = None


@dataclass(slots=True)
class Layer:
    """One keymap layer.

    ``keys`` holds one ``KeyDefinition`` per visual position of the active
    layout variant.  ``id`` is the stable identifier used by ``@id`` layer
    references; ``number`` is the firmware index.
    With ``layer_colors_enabled`` off, the layer category and layer default
    colour are ignored; only key overrides and key categories light keys.
    """

    number: int
    name: str
    default_color: RgbColor
    id: str = ""
    category_id: str | None = None
    keys: list[KeyDefinition] = field(default_factory=list)
    layer_colors_enabled: bool = True

    def __post_init__(self) -> None:
        if not self.id:
            self.id = f"layer-{self.number}"

    def get_key(self, position: VisualPosition) -> KeyDefinition | None:
        for key in self.keys:
            if key.position == position:
                return key
        return None


# ---------------------------------------------------------------------------
# Features
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TapDance:
    """Tap dance: tap once / twice, optionally hold.

    Two-way when ``hold`` is ``None``; three-way otherwise.
    """

    name: str
    single_tap: str
    double_tap: str | None = None
    hold: str | None = None

    def __post_init__(self) -> None:
        if not _IDENT.match(self.name):
            raise ValueError(
                f"Tap dance name must match [a-z][a-z0-9_]*, got {self.name!r}"
            )
        if self.double_tap is None and self.hold is None:
            raise ValueError(f"Tap dance {self.name!r} needs double_tap or hold")

    @property
    def is_three_way(self) -> bool:
        return self.hold is not None

    def actions(self) -> list[tuple[str, str]]:
        """``(role, keycode)`` pairs for every configured action."""
        out = [("single_tap", self.single_tap)]
        if self.double_tap is not None:
            out.append(("double_tap", self.double_tap))
        if self.hold is not None:
            out.append(("hold", self.hold))
        return out


@dataclass(frozen=True, slots=True)
class Combo:
    """Chord of two or more keys producing ``output``.

    Triggers are visual positions; the generator resolves them through the
    mapping and emits the base-layer keycodes at those positions.
    """

    name: str
    trigger: tuple[VisualPosition, ...]
    output: str

    def __post_init__(self) -> None:
        if not _IDENT.match(self.name):
            raise ValueError(f"Combo name must match [a-z][a-z0-9_]*, got {self.name!r}")
        if not isinstance(self.trigger, tuple):
            object.__setattr__(self, "trigger", tuple(self.trigger))
        if len(self.trigger) < 2:
            raise ValueError(f"Combo {self.name!r} needs at least 2 trigger keys")
        if len(set(self.trigger)) != len(self.trigger):
            raise ValueError(f"Combo {self.name!r} repeats a trigger key")


@dataclass(frozen=True, slots=True)
class IdleEffectSettings:
    """RGB idle effect: after ``idle_timeout_ms`` play an effect, then turn off."""

    enabled: bool = False
    idle_timeout_ms: int = 60_000
    idle_effect_duration_ms: int = 300_000
    idle_effect_mode: str = "breathing"

    def __post_init__(self) -> None:
        if self.idle_effect_mode not in IDLE_EFFECT_MODES:
            raise ValueError(
                f"Unknown idle effect mode {self.idle_effect_mode!r}; "
                f"expected one of {sorted(IDLE_EFFECT_MODES)}"
            )
        if self.idle_timeout_ms < 0 or self.idle_effect_duration_ms < 0:
            raise ValueError("Idle timings must be non-negative")

    @property
    def rgb_mode(self) -> str:
        return IDLE_EFFECT_MODES[self.idle_effect_mode]


@dataclass(frozen=True, slots=True)
class TapHoldSettings:
    """Global tap-hold tuning written to ``config.h``."""

    tapping_term: int = 200
    quick_tap_term: int | None = None
    permissive_hold: bool = False
    hold_on_other_key_press: bool = False
    retro_tapping: bool = False

    def __post_init__(self) -> None:
        if self.tapping_term <= 0:
            raise ValueError(f"tapping_term must be positive, got {self.tapping_term}")
        if self.quick_tap_term is not None and self.quick_tap_term < 0:
            raise ValueError(f"quick_tap_term must be >= 0, got {self.quick_tap_term}")

    def is_default(self) -> bool:
        return self == TapHoldSettings()


@dataclass(frozen=True, slots=True)
class RippleSettings:
    """Keypress ripple drawn over the layer colours.

    Each press (and/or release) starts a ring at the key's LED that grows
    at ``speed`` LED position units per second (QMK's 0-224 LED grid) and
    fades out over ``duration_ms``.  LEDs within ``band_width`` units of
    the ring are blended towards the ripple colour by at most
    ``amplitude_pct`` percent.  At most ``max_ripples`` rings are live; a
    new press recycles the oldest.
    """

    enabled: bool = False
    max_ripples: int = 4
    duration_ms: int = 500
    speed: int = 128
    band_width: int = 16
    amplitude_pct: int = 50
    color_mode: str = "fixed"
    fixed_color: RgbColor = RgbColor(0, 255, 255)
    hue_shift_deg: int = 60
    trigger_on_press: bool = True
    trigger_on_release: bool = False
    ignore_transparent: bool = True
    ignore_modifiers: bool = False
    ignore_layer_switch: bool = False

    def __post_init__(self) -> None:
        if self.color_mode not in RIPPLE_COLOR_MODES:
            raise ValueError(
                f"Unknown ripple colour mode {self.color_mode!r}; "
                f"expected one of {list(RIPPLE_COLOR_MODES)}"
            )
        for name, low, high in (
            ("max_ripples", 1, 16),
            ("duration_ms", 1, 10_000),
            ("speed", 1, 255),
            ("band_width", 1, 255),
            ("amplitude_pct", 0, 100),
            ("hue_shift_deg", 0, 359),
        ):
            value = getattr(self, name)
            if not low <= value <= high:
                raise ValueError(f"Ripple {name} must be in [{low}, {high}], got {value}")
        if self.enabled and not (self.trigger_on_press or self.trigger_on_release):
            raise ValueError("Ripple needs trigger_on_press or trigger_on_release")

    def has_custom_settings(self) -> bool:
        return self != RippleSettings()


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class LayoutMetadata:
    name: str
    keyboard: str
    layout_variant: str
    keymap_name: str = "default"
    author: str = ""
    description: str = ""


@dataclass(slots=True)
class Layout:
    """Complete user layout: layers, categories and feature settings.

    ``rgb_brightness``, ``rgb_saturation`` and ``uncolored_key_brightness``
    are percentages.  ``uncolored_key_brightness`` dims keys whose colour
    comes from their layer (no override, no key category); 0 turns them off.
    """

    metadata: LayoutMetadata
    layers: list[Layer] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    tap_dances: list[TapDance] = field(default_factory=list)
    combos: list[Combo] = field(default_factory=list)
    idle_effect: IdleEffectSettings = field(default_factory=IdleEffectSettings)
    tap_hold: TapHoldSettings = field(default_factory=TapHoldSettings)
    rgb_enabled: bool = True
    rgb_brightness: int | None = None
    rgb_saturation: int = 100
    uncolored_key_brightness: int = 100
    rgb_timeout_ms: int = 0
    ripple: RippleSettings = field(default_factory=RippleSettings)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_layer(self, index: int) -> Layer:
        """Return layer ``index``; raises ``IndexError`` when out of range."""
        if not 0 <= index < len(self.layers):
            raise IndexError(f"Layer {index} out of range (layout has {len(self.layers)})")
        return self.layers[index]

    def get_category(self, category_id: str) -> Category | None:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def get_tap_dance(self, name: str) -> TapDance | None:
        for td in self.tap_dances:
            if td.name == name:
                return td
        return None

    def layer_index_for_id(self, layer_id: str) -> int | None:
        for index, layer in enumerate(self.layers):
            if layer.id == layer_id:
                return index
        return None

    # ------------------------------------------------------------------
    # Category management
    # ------------------------------------------------------------------

    def add_category(self, category: Category) -> None:
        if self.get_category(category.id) is not None:
            raise ValueError(f"Category {category.id!r} already exists")
        self.categories.append(category)

    def remove_category(self, category_id: str, reassign_to: str | None = None) -> int:
        """Delete a category and rewrite every reference to it.

        Parameters
        ----------
        category_id : str
            Category to delete.
        reassign_to : str | None
            Existing category that inherits the references; ``None``
            clears them.

        Returns
        -------
        int
            Number of layer and key references rewritten.

        Raises
        ------
        KeyError
            If ``category_id`` does not exist.
        ValueError
            If ``reassign_to`` does not exist or equals ``category_id``.
        """
        if self.get_category(category_id) is None:
            raise KeyError(f"Category {category_id!r} not found")
        if reassign_to is not None:
            if reassign_to == category_id or self.get_category(reassign_to) is None:
                raise ValueError(f"Cannot reassign to category {reassign_to!r}")

        self.categories = [c for c in self.categories if c.id != category_id]

        rewritten = 0
        for layer in self.layers:
            if layer.category_id == category_id:
                layer.category_id = reassign_to
                rewritten += 1
            for key in layer.keys:
                if key.category_id == category_id:
                    key.category_id = reassign_to
                    rewritten += 1

        logger.debug(
            "Removed category %s (%d references -> %s)",
            category_id, rewritten, reassign_to,
        )
        return rewritten

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> Layout:
        """Deep copy used by generation and builds; later edits don't leak in."""
        return copy.deepcopy(self)
