"""Tests for layout validation (keyforge.codegen.validator).

Verifies:
    - A complete layout validates cleanly
    - Coverage gaps name the matrix position and layer
    - All keycode problems are reported in one pass
    - Layer references, tap dances and combos are resolved against the layout
    - Warnings (unused tap dance, orphan combo participant) don't block

Run: pytest keyforge/tests/test_validator.py -v
"""

import pytest

from keyforge.codegen.validator import IssueCategory, validate
from keyforge.mapping.visual_layout import build_mapping
from keyforge.models.geometry import MatrixPosition, VisualPosition
from keyforge.models.layout import Combo, KeyDefinition, TapDance
from keyforge.tests import factories


def _messages(issues):
    return [issue.message for issue in issues]


class TestValidLayout:

    def test_golden_layout_is_valid(self, layout, geometry, mapping, registry) -> None:
        report = validate(layout, geometry, mapping, registry)
        assert report.is_valid, [str(e) for e in report.errors]
        assert report.warnings == []

    def test_aliases_and_functions_accepted(self, geometry, mapping, registry) -> None:
        layout = factories.simple_layout(mapping, [
            ["_______", "XXXXXXX", "MT(MOD_LCTL | MOD_LSFT, KC_A)",
             "LCTL(KC_C)", "LT(1, KC_SPC)", "LM(1, MOD_LALT)"],
            ["KC_TRNS", "OSM(MOD_LSFT)", "TG(0)", "DF(0)", "QK_BOOT", "MO(0)"],
        ])
        report = validate(layout, geometry, mapping, registry)
        assert report.is_valid, [str(e) for e in report.errors]


class TestCoverage:

    def test_missing_key_names_position(self, layout, geometry, mapping, registry) -> None:
        del layout.layers[1].keys[4]  # visual (1, 1)
        report = validate(layout, geometry, mapping, registry)
        coverage = report.by_category(IssueCategory.COVERAGE)
        assert len(coverage) == 1
        issue = coverage[0]
        assert issue.position == MatrixPosition(1, 1)
        assert issue.layer == 1
        assert "matrix(1, 1)" in issue.message
        assert "Function" in issue.message

    def test_duplicate_position(self, layout, geometry, mapping, registry) -> None:
        layout.layers[0].keys.append(KeyDefinition(VisualPosition(0, 0), "KC_A"))
        report = validate(layout, geometry, mapping, registry)
        dupes = report.by_category(IssueCategory.DUPLICATE)
        assert len(dupes) == 1
        assert dupes[0].position == VisualPosition(0, 0)

    def test_key_outside_mapping(self, layout, geometry, mapping, registry) -> None:
        layout.layers[0].keys.append(KeyDefinition(VisualPosition(5, 5), "KC_A"))
        report = validate(layout, geometry, mapping, registry)
        issues = report.by_category(IssueCategory.MAPPING)
        assert [i.position for i in issues] == [VisualPosition(5, 5)]

    def test_mapping_from_other_geometry(self, layout, geometry, registry) -> None:
        other = build_mapping(factories.grid_geometry(rows=1, cols=3))
        report = validate(layout, geometry, other, registry)
        assert not report.is_valid
        positions = {i.position for i in report.by_category(IssueCategory.MAPPING)}
        assert MatrixPosition(1, 0) in positions

    def test_layer_numbering(self, layout, geometry, mapping, registry) -> None:
        layout.layers[1].number = 5
        report = validate(layout, geometry, mapping, registry)
        assert report.by_category(IssueCategory.STRUCTURE)

    def test_no_layers(self, layout, geometry, mapping, registry) -> None:
        layout.layers.clear()
        report = validate(layout, geometry, mapping, registry)
        assert "Layout has no layers" in _messages(report.errors)


class TestKeycodes:

    def test_errors_are_aggregated(self, layout, geometry, mapping, registry) -> None:
        layout.layers[0].keys[0].keycode = "KC_NOPE"
        layout.layers[1].keys[2].keycode = "LT(1"
        layout.layers[1].keys[3].keycode = "FOO(KC_A)"
        report = validate(layout, geometry, mapping, registry)
        keycode_errors = report.by_category(IssueCategory.KEYCODE)
        assert len(keycode_errors) == 3
        assert {(e.layer, e.position) for e in keycode_errors} == {
            (0, VisualPosition(0, 0)),
            (1, VisualPosition(0, 2)),
            (1, VisualPosition(1, 0)),
        }

    @pytest.mark.parametrize("text, fragment", [
        ("MT(KC_A)", "takes 2 argument"),
        ("MT(MOD_FOO, KC_A)", "Unknown modifier"),
        ("LCTL(KC_NOPE)", "Unknown keycode"),
        ("MT(KC_A, KC_B)", "expects a mod"),
    ])
    def test_function_arguments(self, text, fragment, layout, geometry, mapping, registry) -> None:
        layout.layers[0].keys[0].keycode = text
        report = validate(layout, geometry, mapping, registry)
        assert any(fragment in m for m in _messages(report.errors)), _messages(report.errors)

    @pytest.mark.parametrize("text", ["MO(2)", "TO(@missing)", "LT(9, KC_A)"])
    def test_bad_layer_references(self, text, layout, geometry, mapping, registry) -> None:
        layout.layers[0].keys[0].keycode = text
        report = validate(layout, geometry, mapping, registry)
        refs = report.by_category(IssueCategory.LAYER_REF)
        assert len(refs) == 1
        assert refs[0].position == VisualPosition(0, 0)


class TestTapDancesAndCombos:

    def test_undefined_tap_dance(self, layout, geometry, mapping, registry) -> None:
        layout.layers[0].keys[0].keycode = "TD(ghost)"
        report = validate(layout, geometry, mapping, registry)
        assert any("ghost" in m for m in _messages(report.by_category(IssueCategory.TAP_DANCE)))

    def test_tap_dance_actions_checked(self, layout, geometry, mapping, registry) -> None:
        layout.tap_dances = [
            TapDance("td_one", "KC_NOPE", double_tap="KC_A"),
            TapDance("td_two", "KC_A", double_tap="TD(td_one)"),
        ]
        layout.layers[0].keys[0].keycode = "TD(td_one)"
        layout.layers[0].keys[2].keycode = "TD(td_two)"
        report = validate(layout, geometry, mapping, registry)
        messages = _messages(report.errors)
        assert any("td_one single_tap" in m and "KC_NOPE" in m for m in messages)
        assert any("cannot be another tap dance" in m for m in messages)

    def test_unused_tap_dance_warns(self, layout, geometry, mapping, registry) -> None:
        layout.tap_dances = [TapDance("spare", "KC_A", double_tap="KC_B")]
        report = validate(layout, geometry, mapping, registry)
        assert report.is_valid
        assert any("never used" in m for m in _messages(report.warnings))

    def test_combo_trigger_outside_mapping(self, layout, geometry, mapping, registry) -> None:
        layout.combos = [Combo("bad", (VisualPosition(0, 0), VisualPosition(7, 7)), "KC_ESC")]
        report = validate(layout, geometry, mapping, registry)
        combo_errors = report.by_category(IssueCategory.COMBO)
        assert [e.position for e in combo_errors] == [VisualPosition(7, 7)]

    def test_combo_output_checked(self, layout, geometry, mapping, registry) -> None:
        layout.combos = [Combo("bad", (VisualPosition(0, 0), VisualPosition(0, 1)), "KC_NOPE")]
        report = validate(layout, geometry, mapping, registry)
        assert any("Combo bad output" in m for m in _messages(report.errors))

    def test_orphan_combo_participant_warns(self, layout, geometry, mapping, registry) -> None:
        layout.layers[0].keys[0].combo_participant = True
        report = validate(layout, geometry, mapping, registry)
        assert report.is_valid
        assert report.warnings[0].category is IssueCategory.COMBO

    def test_variant_mismatch_warns(self, layout, geometry, mapping, registry) -> None:
        layout.metadata.layout_variant = "LAYOUT_other"
        report = validate(layout, geometry, mapping, registry)
        assert report.is_valid
        assert any("LAYOUT_other" in m for m in _messages(report.warnings))


def test_issue_str_includes_context(layout, geometry, mapping, registry) -> None:
    layout.layers[0].keys[0].keycode = "KC_NOPE"
    report = validate(layout, geometry, mapping, registry)
    text = str(report.errors[0])
    assert text.startswith("[keycode] layer 0, visual(0, 0):")
    assert report.summary() == "1 error(s), 0 warning(s)"
