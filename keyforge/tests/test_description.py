"""Tests for keyboard description loading (keyforge.mapping.description).

Verifies:
    - Geometry built from an info.json-style document
    - Matrix size derived from positions when not declared
    - LED indices follow rgb_matrix order
    - Split halves and the odd-row check
    - Unknown variants and malformed files are rejected

Run: pytest keyforge/tests/test_description.py -v
"""

import json

import pytest

from keyforge.mapping.description import (
    geometry_from_info,
    list_layout_variants,
    load_geometry,
)
from keyforge.mapping.visual_layout import GeometryError, build_mapping
from keyforge.models.geometry import MatrixPosition, VisualPosition
from keyforge.utils.validators import KeyboardInfoV1


def _info(**overrides) -> dict:
    data = {
        "keyboard_name": "tiny",
        "manufacturer": "Test",
        "matrix_size": {"rows": 2, "cols": 2},
        "layouts": {
            "LAYOUT": {
                "layout": [
                    {"matrix": [0, 0], "x": 0, "y": 0},
                    {"matrix": [0, 1], "x": 1, "y": 0},
                    {"matrix": [1, 0], "x": 0, "y": 1},
                    {"matrix": [1, 1], "x": 1, "y": 1, "w": 2},
                ]
            },
            "LAYOUT_small": {
                "layout": [
                    {"matrix": [0, 0], "x": 0, "y": 0},
                    {"matrix": [1, 1], "x": 1, "y": 1},
                ]
            },
        },
        "usb": {"vid": "0xFEED"},
    }
    data.update(overrides)
    return data


class TestGeometryFromInfo:

    def test_basic(self) -> None:
        geometry = geometry_from_info(KeyboardInfoV1(**_info()), "LAYOUT")
        assert geometry.keyboard_name == "tiny"
        assert geometry.layout_name == "LAYOUT"
        assert (geometry.matrix_rows, geometry.matrix_cols) == (2, 2)
        assert [k.matrix for k in geometry.keys] == [
            MatrixPosition(0, 0), MatrixPosition(0, 1),
            MatrixPosition(1, 0), MatrixPosition(1, 1),
        ]
        assert geometry.keys[3].width == 2
        assert not geometry.is_split

    def test_leds_follow_layout_order_without_rgb_matrix(self) -> None:
        geometry = geometry_from_info(KeyboardInfoV1(**_info()), "LAYOUT")
        assert [k.led_index for k in geometry.keys] == [0, 1, 2, 3]

    def test_leds_follow_rgb_matrix(self) -> None:
        info = KeyboardInfoV1(**_info(rgb_matrix={"layout": [
            {"matrix": [1, 1], "x": 0, "y": 0, "flags": 4},
            {"x": 100, "y": 0, "flags": 2},
            {"matrix": [0, 0], "x": 0, "y": 0, "flags": 4},
        ]}))
        geometry = geometry_from_info(info, "LAYOUT")
        leds = {k.matrix: k.led_index for k in geometry.keys}
        assert leds[MatrixPosition(1, 1)] == 0
        assert leds[MatrixPosition(0, 0)] == 2
        assert leds[MatrixPosition(0, 1)] is None
        assert geometry.led_count == 2

    def test_matrix_size_derived(self) -> None:
        data = _info()
        del data["matrix_size"]
        geometry = geometry_from_info(KeyboardInfoV1(**data), "LAYOUT_small")
        assert (geometry.matrix_rows, geometry.matrix_cols) == (2, 2)

    def test_unknown_variant(self) -> None:
        with pytest.raises(GeometryError, match="LAYOUT_small"):
            geometry_from_info(KeyboardInfoV1(**_info()), "LAYOUT_missing")

    def test_list_variants(self) -> None:
        assert list_layout_variants(KeyboardInfoV1(**_info())) == [
            ("LAYOUT", 4),
            ("LAYOUT_small", 2),
        ]

    def test_position_outside_declared_matrix(self) -> None:
        data = _info()
        data["layouts"]["LAYOUT"]["layout"].append({"matrix": [2, 0], "x": 0, "y": 2})
        with pytest.raises(ValueError, match="outside"):
            KeyboardInfoV1(**data)


class TestSplit:

    def test_split_halves(self) -> None:
        info = KeyboardInfoV1(**_info(split={"enabled": True}))
        geometry = geometry_from_info(info, "LAYOUT")
        assert geometry.split.left_rows == (0, 1)
        assert geometry.split.right_rows == (1, 2)
        mapping = build_mapping(geometry)
        assert mapping.matrix_to_visual(MatrixPosition(1, 0)) == VisualPosition(0, 3)
        assert mapping.matrix_to_visual(MatrixPosition(1, 1)) == VisualPosition(0, 2)

    def test_odd_row_count(self) -> None:
        data = _info(split={"enabled": True}, matrix_size={"rows": 3, "cols": 2})
        with pytest.raises(GeometryError, match="odd"):
            geometry_from_info(KeyboardInfoV1(**data), "LAYOUT")

    def test_split_disabled(self) -> None:
        info = KeyboardInfoV1(**_info(split={"enabled": False}))
        assert geometry_from_info(info, "LAYOUT").split is None


class TestLoadGeometry:

    def test_from_file(self, tmp_path) -> None:
        path = tmp_path / "info.json"
        path.write_text(json.dumps(_info()))
        geometry = load_geometry(path, "LAYOUT_small")
        assert geometry.key_count == 2

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_geometry(tmp_path / "missing.json", "LAYOUT")

    def test_invalid_json(self, tmp_path) -> None:
        path = tmp_path / "info.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="not valid JSON"):
            load_geometry(path, "LAYOUT")

    def test_schema_violation(self, tmp_path) -> None:
        path = tmp_path / "info.json"
        path.write_text(json.dumps({"keyboard_name": "x", "layouts": {}}))
        with pytest.raises(ValueError, match="validation failed"):
            load_geometry(path, "LAYOUT")
