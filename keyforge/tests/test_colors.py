"""Tests for colour resolution (keyforge.colors.resolver).

Walks the full precedence table: every combination of key override, key
category and layer category, with the category ids either resolving or
dangling.  Also covers layers with layer colours switched off and the
uncoloured-key brightness applied by ``led_color``.

Run: pytest keyforge/tests/test_colors.py -v
"""

import itertools

import pytest

from keyforge.colors.resolver import OFF, PrioritySource, led_color, resolve, resolve_layer
from keyforge.models.geometry import VisualPosition
from keyforge.models.layout import Category, KeyDefinition, Layer, Layout, LayoutMetadata
from keyforge.models.rgb import RgbColor

OVERRIDE = RgbColor(1, 1, 1)
KEY_CAT = RgbColor(2, 2, 2)
LAYER_CAT = RgbColor(3, 3, 3)
DEFAULT = RgbColor(4, 4, 4)

# None: unset, "ok": resolves, "dangling": id with no category
STATES = (None, "ok", "dangling")


def _build(override: bool, key_cat, layer_cat, layer_colors: bool = True):
    key = KeyDefinition(
        VisualPosition(0, 0),
        "KC_A",
        color_override=OVERRIDE if override else None,
        category_id={None: None, "ok": "key-cat", "dangling": "gone"}[key_cat],
    )
    layer = Layer(
        0, "Base", DEFAULT,
        category_id={None: None, "ok": "layer-cat", "dangling": "gone"}[layer_cat],
        keys=[key],
        layer_colors_enabled=layer_colors,
    )
    layout = Layout(
        metadata=LayoutMetadata("t", "kb", "LAYOUT"),
        layers=[layer],
        categories=[
            Category("key-cat", "Key", KEY_CAT),
            Category("layer-cat", "Layer", LAYER_CAT),
        ],
    )
    return layout, key


def _expected(override: bool, key_cat, layer_cat):
    if override:
        return OVERRIDE, PrioritySource.INDIVIDUAL
    if key_cat == "ok":
        return KEY_CAT, PrioritySource.KEY_CATEGORY
    if layer_cat == "ok":
        return LAYER_CAT, PrioritySource.LAYER_CATEGORY
    return DEFAULT, PrioritySource.LAYER_DEFAULT


@pytest.mark.parametrize(
    "override, key_cat, layer_cat",
    list(itertools.product((False, True), STATES, STATES)),
)
def test_precedence_table(override, key_cat, layer_cat) -> None:
    layout, key = _build(override, key_cat, layer_cat)
    resolved = resolve(layout, 0, key)
    assert (resolved.color, resolved.source) == _expected(override, key_cat, layer_cat)


def test_removed_category_falls_through(layout) -> None:
    key = layout.layers[0].keys[1]
    assert resolve(layout, 0, key).source is PrioritySource.KEY_CATEGORY
    layout.categories.clear()
    resolved = resolve(layout, 0, key)
    assert resolved.source is PrioritySource.LAYER_DEFAULT
    assert resolved.color == RgbColor(255, 255, 255)


def test_resolve_is_pure(layout) -> None:
    key = layout.layers[0].keys[5]
    assert resolve(layout, 0, key) == resolve(layout, 0, key)


def test_layer_index_out_of_range(layout) -> None:
    with pytest.raises(IndexError):
        resolve(layout, 7, layout.layers[0].keys[0])


def test_resolve_layer(layout) -> None:
    colors = resolve_layer(layout, 0)
    assert len(colors) == 6
    assert colors[VisualPosition(0, 1)].color == RgbColor(0, 255, 0)
    assert colors[VisualPosition(1, 2)].source is PrioritySource.INDIVIDUAL
    assert colors[VisualPosition(0, 0)].source is PrioritySource.LAYER_DEFAULT


class TestLayerColorsDisabled:

    @pytest.mark.parametrize(
        "override, key_cat, layer_cat",
        list(itertools.product((False, True), STATES, STATES)),
    )
    def test_only_key_level_colours_apply(self, override, key_cat, layer_cat) -> None:
        layout, key = _build(override, key_cat, layer_cat, layer_colors=False)
        resolved = resolve(layout, 0, key)
        expected = _expected(override, key_cat, layer_cat)
        if expected[1] in (PrioritySource.LAYER_CATEGORY, PrioritySource.LAYER_DEFAULT):
            expected = (OFF, PrioritySource.UNCOLORED)
        assert (resolved.color, resolved.source) == expected

    def test_other_layers_unaffected(self, layout) -> None:
        layout.layers[0].layer_colors_enabled = False
        assert resolve(layout, 0, layout.layers[0].keys[0]).source is PrioritySource.UNCOLORED
        assert resolve(layout, 1, layout.layers[1].keys[0]).source is PrioritySource.LAYER_DEFAULT


class TestLedColor:

    def test_full_brightness_is_resolved_colour(self, layout) -> None:
        for key in layout.layers[0].keys:
            assert led_color(layout, 0, key) == resolve(layout, 0, key).color

    def test_dims_only_layer_coloured_keys(self, layout) -> None:
        layout.uncolored_key_brightness = 50
        keys = layout.layers[0].keys
        assert led_color(layout, 0, keys[0]) == RgbColor(127, 127, 127)
        assert led_color(layout, 0, keys[1]) == RgbColor(0, 255, 0)
        assert led_color(layout, 0, keys[5]) == RgbColor(255, 0, 0)
        assert led_color(layout, 1, layout.layers[1].keys[0]) == RgbColor(50, 50, 127)

    def test_zero_turns_layer_coloured_keys_off(self, layout) -> None:
        layout.uncolored_key_brightness = 0
        assert led_color(layout, 0, layout.layers[0].keys[0]) == OFF
        assert led_color(layout, 0, layout.layers[0].keys[1]) == RgbColor(0, 255, 0)

    def test_layer_category_is_dimmed(self) -> None:
        layout, key = _build(False, None, "ok")
        layout.uncolored_key_brightness = 0
        assert led_color(layout, 0, key) == OFF
