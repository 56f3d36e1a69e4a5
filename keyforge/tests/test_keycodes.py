"""Tests for keycode parsing (keyforge.models.keycodes) and the registry.

Verifies:
    - Each text form parses to the right variant
    - Malformed text raises KeycodeSyntaxError with the offending text
    - iter_references finds nested layer and tap dance references
    - The shipped keycode database answers the KeycodeRegistry queries

Run: pytest keyforge/tests/test_keycodes.py -v
"""

import pytest

from keyforge.models.keycodes import (
    BasicKeycode,
    FunctionKeycode,
    KeycodeSyntaxError,
    LayerKeycode,
    LayerRef,
    ModMask,
    TapDanceKeycode,
    iter_references,
    parse_keycode,
)
from keyforge.registry.database import FunctionSpec, KeycodeDatabase


class TestParse:

    def test_basic(self) -> None:
        assert parse_keycode("KC_A") == BasicKeycode("KC_A")
        assert parse_keycode("  _______ ") == BasicKeycode("_______")

    def test_layer_function_numeric(self) -> None:
        kc = parse_keycode("MO(1)")
        assert kc == LayerKeycode("MO", LayerRef(index=1))
        assert not kc.layer.is_symbolic

    def test_layer_function_symbolic(self) -> None:
        kc = parse_keycode("LT(@nav, KC_SPC)")
        assert kc == LayerKeycode("LT", LayerRef(layer_id="nav"), BasicKeycode("KC_SPC"))
        assert kc.layer.is_symbolic
        assert str(kc) == "LT(@nav, KC_SPC)"

    def test_layer_mod(self) -> None:
        kc = parse_keycode("LM(2, MOD_LCTL | MOD_LSFT)")
        assert kc == LayerKeycode("LM", LayerRef(index=2), ModMask(("MOD_LCTL", "MOD_LSFT")))

    def test_tap_dance(self) -> None:
        assert parse_keycode("TD(esc_caps)") == TapDanceKeycode("esc_caps")

    def test_function_with_mod_mask(self) -> None:
        kc = parse_keycode("MT(MOD_LCTL | MOD_LSFT, KC_A)")
        assert kc == FunctionKeycode(
            "MT", (ModMask(("MOD_LCTL", "MOD_LSFT")), BasicKeycode("KC_A"))
        )
        assert str(kc) == "MT(MOD_LCTL | MOD_LSFT, KC_A)"

    def test_nested_function(self) -> None:
        kc = parse_keycode("LCTL(LSFT(KC_T))")
        assert kc == FunctionKeycode("LCTL", (FunctionKeycode("LSFT", (BasicKeycode("KC_T"),)),))
        assert str(kc) == "LCTL(LSFT(KC_T))"

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "KC_A)",
        "KC_A KC_B",
        "KC-A",
        "MO(",
        "MO()",
        "LT(1)",
        "LT(1, MOD_LCTL)",
        "LM(1, KC_A)",
        "MO(KC_A)",
        "MO(1, 2)",
        "TD(EscCaps)",
        "TD(1)",
    ])
    def test_malformed(self, text: str) -> None:
        with pytest.raises(KeycodeSyntaxError) as exc_info:
            parse_keycode(text)
        assert exc_info.value.text == text
        assert isinstance(exc_info.value, ValueError)

    def test_layer_ref_needs_exactly_one_field(self) -> None:
        with pytest.raises(ValueError):
            LayerRef()
        with pytest.raises(ValueError):
            LayerRef(index=1, layer_id="nav")


class TestReferences:

    def test_nested_references(self) -> None:
        kc = parse_keycode("LT(@nav, TD(esc_caps))")
        assert list(iter_references(kc)) == [
            LayerRef(layer_id="nav"),
            TapDanceKeycode("esc_caps"),
        ]

    def test_basic_has_no_references(self) -> None:
        assert list(iter_references(parse_keycode("KC_A"))) == []

    def test_function_layer_ref_argument(self) -> None:
        kc = parse_keycode("LCTL(MO(@sym))")
        assert list(iter_references(kc)) == [LayerRef(layer_id="sym")]


class TestRegistry:

    @pytest.fixture(scope="class")
    def db(self):
        return KeycodeDatabase.load()

    def test_basic_keycodes_and_aliases(self, db) -> None:
        assert db.is_keycode("KC_A")
        assert db.is_keycode("_______")
        assert db.canonical("_______") == "KC_TRNS"
        assert not db.is_keycode("KC_NOT_A_KEY")

    def test_function_specs(self, db) -> None:
        spec = db.function_spec("LT")
        assert isinstance(spec, FunctionSpec)
        assert spec.args == ("layer", "keycode")
        assert db.function_spec("MT").args == ("mod", "keycode")
        assert db.function_spec("MO").arity == 1
        assert db.function_spec("NOPE") is None

    def test_modifiers(self, db) -> None:
        assert db.is_modifier("MOD_LCTL")
        assert not db.is_modifier("KC_LCTL")

    def test_describe(self, db) -> None:
        assert db.describe("KC_A") == "letters"
        assert db.describe("_______") == "system (KC_TRNS)"
        assert db.describe("MO")
        assert db.describe("KC_NOT_A_KEY") is None

    def test_groups(self, db) -> None:
        assert "letters" in db.groups()
        assert db.keycodes_in("letters")[0] == "KC_A"
        assert len(db) > 100

    def test_custom_database(self, tmp_path) -> None:
        path = tmp_path / "keycodes.yaml"
        path.write_text(
            "schema: keycodes.v1\n"
            "groups:\n"
            "  basic: [KC_A, KC_B]\n"
            "aliases:\n"
            "  KC_AA: KC_A\n"
            "functions:\n"
            "  MO: {args: [layer]}\n"
        )
        db = KeycodeDatabase.load(path)
        assert db.is_keycode("KC_AA")
        assert db.function_spec("MO").args == ("layer",)

    def test_dangling_alias_rejected(self, tmp_path) -> None:
        path = tmp_path / "keycodes.yaml"
        path.write_text(
            "schema: keycodes.v1\n"
            "groups:\n"
            "  basic: [KC_A]\n"
            "aliases:\n"
            "  KC_X: KC_MISSING\n"
        )
        with pytest.raises(ValueError, match="KC_X"):
            KeycodeDatabase.load(path)
