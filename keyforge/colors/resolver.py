"""Colour resolution -- effective colour of a key and where it came from.

Precedence, first match wins:

1. key colour override                         -> ``INDIVIDUAL``
2. key category (if the id resolves)           -> ``KEY_CATEGORY``
3. layer category (if the id resolves)         -> ``LAYER_CATEGORY``
4. layer default colour                        -> ``LAYER_DEFAULT``

A category id that no longer resolves counts as absent, so resolution
never fails for a well-formed layout.  A layer with
``layer_colors_enabled`` off skips levels 3 and 4; its keys without a
key-level colour resolve to ``UNCOLORED`` (off).

``led_color`` applies the layout-wide lighting settings on top of the
resolved colour; it is what the generator writes to the LED table.
Everything here is pure.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from keyforge.models.layout import KeyDefinition, Layout
from keyforge.models.rgb import RgbColor


class PrioritySource(Enum):
    """Precedence level that produced a key's colour."""

    INDIVIDUAL = "individual"
    KEY_CATEGORY = "key_category"
    LAYER_CATEGORY = "layer_category"
    LAYER_DEFAULT = "layer_default"
    UNCOLORED = "uncolored"


KEY_LEVEL_SOURCES = frozenset({PrioritySource.INDIVIDUAL, PrioritySource.KEY_CATEGORY})

OFF = RgbColor(0, 0, 0)


@dataclass(frozen=True, slots=True)
class ResolvedColor:
    color: RgbColor
    source: PrioritySource


def resolve(layout: Layout, layer_index: int, key: KeyDefinition) -> ResolvedColor:
    """Resolve the colour of ``key`` on layer ``layer_index``.

    Parameters
    ----------
    layout : Layout
        Layout owning the layer and the categories.
    layer_index : int
        Index into ``layout.layers``.
    key : KeyDefinition
        Key to resolve (normally a member of that layer).

    Returns
    -------
    ResolvedColor

    Raises
    ------
    IndexError
        If ``layer_index`` is out of range.
    """
    layer = layout.get_layer(layer_index)

    if key.color_override is not None:
        return ResolvedColor(key.color_override, PrioritySource.INDIVIDUAL)

    if key.category_id is not None:
        category = layout.get_category(key.category_id)
        if category is not None:
            return ResolvedColor(category.color, PrioritySource.KEY_CATEGORY)

    if not layer.layer_colors_enabled:
        return ResolvedColor(OFF, PrioritySource.UNCOLORED)

    if layer.category_id is not None:
        category = layout.get_category(layer.category_id)
        if category is not None:
            return ResolvedColor(category.color, PrioritySource.LAYER_CATEGORY)

    return ResolvedColor(layer.default_color, PrioritySource.LAYER_DEFAULT)


def led_color(layout: Layout, layer_index: int, key: KeyDefinition) -> RgbColor:
    """Colour for the LED table: dims keys without a key-level colour.

    Keys resolved from their layer are scaled to
    ``layout.uncolored_key_brightness`` percent.
    """
    resolved = resolve(layout, layer_index, key)
    if resolved.source in KEY_LEVEL_SOURCES:
        return resolved.color
    return resolved.color.dim(layout.uncolored_key_brightness)


def resolve_layer(layout: Layout, layer_index: int) -> dict:
    """Resolve every key of a layer, keyed by visual position."""
    layer = layout.get_layer(layer_index)
    return {key.position: resolve(layout, layer_index, key) for key in layer.keys}
