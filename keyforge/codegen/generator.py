"""Firmware source generator -- layout to QMK keymap sources.

Produces ``keymap.c``, ``config.h`` and (when a feature needs switching
on) ``rules.mk`` as in-memory text.  Writing to disk is the caller's job
(``GeneratedFiles.write_to``); the build orchestrator does it before it
spawns the compiler.

Ordering rules keep the output byte-stable:

* keymap arguments follow the geometry declaration order (the ``LAYOUT``
  macro order), never visual order
* LED colour entries follow ascending LED index; keys without an LED are
  skipped
* tap dances and combos are emitted sorted by name

Nothing time- or environment-dependent is emitted except the optional
``// Generated at`` line, which deterministic mode suppresses.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from io import StringIO
from pathlib import Path
from typing import Callable, Iterator

from keyforge.codegen.validator import IssueCategory, ValidationIssue, validate
from keyforge.colors.resolver import led_color
from keyforge.configs.loader import GenerationConfig
from keyforge.mapping.visual_layout import MappingInconsistency, VisualLayoutMapping
from keyforge.models.geometry import KeyboardGeometry
from keyforge.models.keycodes import (
    BasicKeycode,
    FunctionKeycode,
    Keycode,
    LayerKeycode,
    LayerRef,
    ModMask,
    TapDanceKeycode,
    parse_keycode,
)
from keyforge.models.layout import Combo, Layout, RippleSettings, TapDance
from keyforge.registry.database import KeycodeRegistry
from keyforge.utils import fs

logger = logging.getLogger(__name__)

DEFINE_PREFIX = "KF"
RIPPLE_ENABLED_DEFINE = f"{DEFINE_PREFIX}_RIPPLE_OVERLAY_ENABLED"

_INDENT = "    "


class GenerationError(Exception):
    """Raised when a layout cannot be turned into firmware sources.

    Attributes
    ----------
    issues : list[ValidationIssue]
        Every blocking problem found, not just the first.
    warnings : list[ValidationIssue]
        Non-blocking findings from the same validation pass.
    """

    def __init__(
        self,
        issues: list[ValidationIssue],
        warnings: list[ValidationIssue] | None = None,
    ) -> None:
        self.issues = list(issues)
        self.warnings = list(warnings or [])
        lines = [f"Generation failed with {len(self.issues)} error(s)"]
        lines.extend(f"  {issue}" for issue in self.issues)
        super().__init__("\n".join(lines))


# ---------------------------------------------------------------------------
# Output container
# ---------------------------------------------------------------------------


class GeneratedFiles(Mapping):
    """Ordered ``file name -> text`` mapping."""

    def __init__(self, files: dict[str, str]) -> None:
        self._files = dict(files)

    def __getitem__(self, name: str) -> str:
        return self._files[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def digest(self) -> str:
        """SHA-256 over names and contents, in order."""
        h = hashlib.sha256()
        for name, text in self._files.items():
            h.update(name.encode("utf-8"))
            h.update(b"\0")
            h.update(text.encode("utf-8"))
            h.update(b"\0")
        return h.hexdigest()

    def write_to(self, directory: str | Path) -> list[Path]:
        """Write every file atomically into ``directory``; returns the paths."""
        directory = fs.ensure_dir(directory)
        written = []
        for name, text in self._files.items():
            path = directory / name
            fs.atomic_write_text(path, text)
            written.append(path)
        logger.info("Wrote %d generated file(s) to %s", len(written), directory)
        return written


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _line(buf: StringIO, text: str = "") -> None:
    buf.write(text + "\n")


def _comment_text(text: str) -> str:
    """Single-line text safe to put after ``//``."""
    return " ".join(text.split())


def _td_enum(name: str) -> str:
    return f"TD_{name.upper()}"


def _combo_enum(name: str) -> str:
    return f"CMB_{name.upper()}"


def _ripple_active(layout: Layout, led_count: int) -> bool:
    return layout.rgb_enabled and layout.ripple.enabled and led_count > 0


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class FirmwareGenerator:
    """Convert a layout into QMK firmware sources.

    Parameters
    ----------
    registry : KeycodeRegistry
        Keycode database used for validation.
    config : GenerationConfig | None
        File names and header settings; defaults to ``GenerationConfig()``.
    clock : Callable[[], datetime] | None
        Time source for the ``Generated at`` line (UTC now by default).

    Notes
    -----
    A generator holds no per-layout state between calls; ``generate`` may
    be called repeatedly and from different threads.
    """

    def __init__(
        self,
        registry: KeycodeRegistry,
        config: GenerationConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._cfg = config or GenerationConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(
        self,
        layout: Layout,
        geometry: KeyboardGeometry,
        mapping: VisualLayoutMapping,
        deterministic: bool | None = None,
    ) -> GeneratedFiles:
        """Validate ``layout`` and generate firmware sources.

        Parameters
        ----------
        layout : Layout
            Layout to generate; a snapshot is taken before anything is read.
        geometry : KeyboardGeometry
            Active geometry.
        mapping : VisualLayoutMapping
            Mapping built from ``geometry``.
        deterministic : bool | None
            Suppress the timestamp line.  ``None`` uses the config default.

        Returns
        -------
        GeneratedFiles
            ``keymap.c``, ``config.h`` and, when needed, ``rules.mk``.

        Raises
        ------
        GenerationError
            With every validation error; no output is produced.
        """
        if deterministic is None:
            deterministic = self._cfg.deterministic
        layout = layout.snapshot()

        report = validate(layout, geometry, mapping, self._registry)
        for warning in report.warnings:
            logger.warning("Layout warning: %s", warning)
        if not report.is_valid:
            logger.error(
                "Validation of %r failed: %s", layout.metadata.name, report.summary()
            )
            raise GenerationError(report.errors, report.warnings)

        stamp = None if deterministic else self._clock()
        files = {
            self._cfg.keymap_file: self._keymap_c(layout, geometry, mapping, stamp),
            self._cfg.config_file: self._config_h(layout, geometry, stamp),
        }
        rules = self._rules_mk(layout, stamp)
        if rules is not None:
            files[self._cfg.rules_file] = rules

        out = GeneratedFiles(files)
        logger.info(
            "Generated %s for %s/%s (%d layers, digest %s)",
            ", ".join(out), geometry.keyboard_name, geometry.layout_name,
            len(layout.layers), out.digest()[:12],
        )
        return out

    # ------------------------------------------------------------------
    # Keycode rendering
    # ------------------------------------------------------------------

    def _render(self, kc: Keycode, layout: Layout) -> str:
        """Render a keycode variant as a C expression."""
        if isinstance(kc, BasicKeycode):
            return kc.name
        if isinstance(kc, TapDanceKeycode):
            return f"TD({_td_enum(kc.name)})"
        if isinstance(kc, LayerKeycode):
            layer = self._layer_index(kc.layer, layout)
            if kc.argument is None:
                return f"{kc.function}({layer})"
            return f"{kc.function}({layer}, {self._render_arg(kc.argument, layout)})"
        if isinstance(kc, FunctionKeycode):
            args = ", ".join(self._render_arg(a, layout) for a in kc.args)
            return f"{kc.name}({args})"
        raise GenerationError(
            [ValidationIssue(IssueCategory.KEYCODE, f"Unsupported keycode kind {type(kc).__name__}")]
        )

    def _render_arg(self, arg, layout: Layout) -> str:
        if isinstance(arg, Keycode):
            return self._render(arg, layout)
        if isinstance(arg, ModMask):
            return " | ".join(arg.names)
        if isinstance(arg, LayerRef):
            return str(self._layer_index(arg, layout))
        return str(arg)

    @staticmethod
    def _layer_index(ref: LayerRef, layout: Layout) -> int:
        if not ref.is_symbolic:
            return ref.index
        index = layout.layer_index_for_id(ref.layer_id)
        if index is None:
            raise GenerationError(
                [ValidationIssue(IssueCategory.LAYER_REF, f"Layer id {ref.layer_id!r} does not exist")]
            )
        return index

    def _render_text(self, text: str, layout: Layout) -> str:
        return self._render(parse_keycode(text), layout)

    # ------------------------------------------------------------------
    # keymap.c
    # ------------------------------------------------------------------

    def _write_header(
        self,
        buf: StringIO,
        layout: Layout,
        geometry: KeyboardGeometry,
        stamp: datetime | None,
        include_layout: bool = True,
    ) -> None:
        _line(buf, f"// Generated by {self._cfg.header_tag}")
        if stamp is not None:
            _line(buf, f"// Generated at {stamp.strftime('%Y-%m-%dT%H:%M:%SZ')}")
        _line(buf, f"// Keyboard: {_comment_text(geometry.keyboard_name)}")
        if include_layout:
            _line(buf, f"// Layout: {_comment_text(geometry.layout_name)}")
        _line(buf, f"// Keymap: {_comment_text(layout.metadata.keymap_name)}")

    def _keymap_c(
        self,
        layout: Layout,
        geometry: KeyboardGeometry,
        mapping: VisualLayoutMapping,
        stamp: datetime | None,
    ) -> str:
        buf = StringIO()
        self._write_header(buf, layout, geometry, stamp)
        _line(buf)
        _line(buf, "#include QMK_KEYBOARD_H")

        tap_dances = sorted(layout.tap_dances, key=lambda td: td.name)
        if tap_dances:
            _line(buf)
            self._write_tap_dances(buf, tap_dances, layout)

        combos = sorted(layout.combos, key=lambda c: c.name)
        if combos:
            _line(buf)
            self._write_combos(buf, combos, layout)

        _line(buf)
        self._write_keymaps(buf, layout, geometry, mapping)

        ripple = _ripple_active(layout, len(mapping.leds))
        if ripple:
            _line(buf)
            self._write_ripple(buf, layout.ripple, owns_record_hook=not layout.idle_effect.enabled)

        if layout.idle_effect.enabled:
            _line(buf)
            self._write_idle_effect(buf, ripple)

        if layout.rgb_enabled and len(mapping.leds) > 0:
            _line(buf)
            self._write_layer_colors(buf, layout, mapping, ripple)

        return buf.getvalue()

    def _write_keymaps(
        self,
        buf: StringIO,
        layout: Layout,
        geometry: KeyboardGeometry,
        mapping: VisualLayoutMapping,
    ) -> None:
        _line(buf, "const uint16_t PROGMEM keymaps[][MATRIX_ROWS][MATRIX_COLS] = {")
        for index, layer in enumerate(layout.layers):
            by_position = {key.position: key for key in layer.keys}
            rows: list[list[str]] = []
            last_row: int | None = None
            for matrix in mapping.matrix_order():
                visual = mapping.matrix_to_visual(matrix)
                key = by_position.get(visual)
                if key is None:
                    raise GenerationError([
                        ValidationIssue(
                            IssueCategory.MAPPING,
                            str(MappingInconsistency(visual, index)),
                            matrix, index,
                        )
                    ])
                if matrix.row != last_row:
                    rows.append([])
                    last_row = matrix.row
                rows[-1].append(self._render_text(key.keycode, layout))

            _line(buf, f"{_INDENT}// Layer {index}: {_comment_text(layer.name)}")
            _line(buf, f"{_INDENT}[{index}] = {geometry.layout_name}(")
            for i, row in enumerate(rows):
                sep = "," if i < len(rows) - 1 else ""
                _line(buf, f"{_INDENT * 2}{', '.join(row)}{sep}")
            _line(buf, f"{_INDENT}),")
        _line(buf, "};")

    def _write_layer_colors(
        self,
        buf: StringIO,
        layout: Layout,
        mapping: VisualLayoutMapping,
        ripple: bool = False,
    ) -> None:
        led_order = mapping.led_order()
        _line(buf, "#ifdef RGB_MATRIX_ENABLE")
        _line(buf, f"#define LAYER_BASE_COLORS_LAYER_COUNT {len(layout.layers)}")
        _line(buf)
        _line(
            buf,
            "const uint8_t PROGMEM layer_base_colors"
            "[LAYER_BASE_COLORS_LAYER_COUNT][RGB_MATRIX_LED_COUNT][3] = {",
        )
        for index, layer in enumerate(layout.layers):
            by_position = {key.position: key for key in layer.keys}
            _line(buf, f"{_INDENT}// Layer {index}: {_comment_text(layer.name)}")
            _line(buf, f"{_INDENT}[{index}] = {{")
            for led, matrix in led_order:
                key = by_position[mapping.matrix_to_visual(matrix)]
                c = led_color(layout, index, key)
                _line(buf, f"{_INDENT * 2}[{led}] = {{{c.r}, {c.g}, {c.b}}},")
            _line(buf, f"{_INDENT}}},")
        _line(buf, "};")
        _line(buf)
        if ripple:
            self._write_ripple_apply(buf, layout.ripple)
            _line(buf)
        _line(
            buf,
            "__attribute__((weak)) bool rgb_matrix_indicators_advanced_user"
            "(uint8_t led_min, uint8_t led_max) {",
        )
        if layout.idle_effect.enabled:
            _line(buf, f"{_INDENT}if (idle_state != IDLE_STATE_ACTIVE) {{")
            _line(buf, f"{_INDENT * 2}return false;")
            _line(buf, f"{_INDENT}}}")
        _line(buf, f"{_INDENT}uint8_t layer = get_highest_layer(layer_state | default_layer_state);")
        _line(buf, f"{_INDENT}if (layer >= LAYER_BASE_COLORS_LAYER_COUNT) {{")
        _line(buf, f"{_INDENT * 2}return false;")
        _line(buf, f"{_INDENT}}}")
        _line(buf, f"{_INDENT}for (uint8_t i = led_min; i < led_max; i++) {{")
        if ripple:
            _line(buf, f"{_INDENT * 2}RGB color = {{")
            for channel, name in enumerate("rgb"):
                _line(
                    buf,
                    f"{_INDENT * 3}.{name} = pgm_read_byte(&layer_base_colors[layer][i][{channel}]),",
                )
            _line(buf, f"{_INDENT * 2}}};")
            _line(buf, f"#ifdef {RIPPLE_ENABLED_DEFINE}")
            _line(buf, f"{_INDENT * 2}kf_ripple_apply(i, &color, layer);")
            _line(buf, "#endif")
            _line(buf, f"{_INDENT * 2}rgb_matrix_set_color(i, color.r, color.g, color.b);")
        else:
            _line(buf, f"{_INDENT * 2}rgb_matrix_set_color(i,")
            for channel in range(3):
                end = ");" if channel == 2 else ","
                _line(
                    buf,
                    f"{_INDENT * 5}pgm_read_byte(&layer_base_colors[layer][i][{channel}]){end}",
                )
        _line(buf, f"{_INDENT}}}")
        _line(buf, f"{_INDENT}return false;")
        _line(buf, "}")
        _line(buf, "#endif")

    def _write_tap_dances(
        self, buf: StringIO, tap_dances: list[TapDance], layout: Layout
    ) -> None:
        _line(buf, "// Tap dances")
        _line(buf, "enum tap_dance_ids {")
        for td in tap_dances:
            _line(buf, f"{_INDENT}{_td_enum(td.name)},")
        _line(buf, "};")

        for td in tap_dances:
            if not td.is_three_way:
                continue
            single = self._render_text(td.single_tap, layout)
            double = self._render_text(td.double_tap or td.single_tap, layout)
            hold = self._render_text(td.hold, layout)
            var = f"td_{td.name}_active"
            _line(buf)
            _line(buf, f"static uint16_t {var} = KC_NO;")
            _line(buf)
            _line(buf, f"void td_{td.name}_finished(tap_dance_state_t *state, void *user_data) {{")
            _line(buf, f"{_INDENT}if (state->count == 1 && state->pressed) {{")
            _line(buf, f"{_INDENT * 2}{var} = {hold};")
            _line(buf, f"{_INDENT}}} else if (state->count == 1) {{")
            _line(buf, f"{_INDENT * 2}{var} = {single};")
            _line(buf, f"{_INDENT}}} else {{")
            _line(buf, f"{_INDENT * 2}{var} = {double};")
            _line(buf, f"{_INDENT}}}")
            _line(buf, f"{_INDENT}register_code16({var});")
            _line(buf, "}")
            _line(buf)
            _line(buf, f"void td_{td.name}_reset(tap_dance_state_t *state, void *user_data) {{")
            _line(buf, f"{_INDENT}unregister_code16({var});")
            _line(buf, f"{_INDENT}{var} = KC_NO;")
            _line(buf, "}")

        _line(buf)
        _line(buf, "tap_dance_action_t tap_dance_actions[] = {")
        for td in tap_dances:
            if td.is_three_way:
                action = (
                    f"ACTION_TAP_DANCE_FN_ADVANCED(NULL, td_{td.name}_finished, "
                    f"td_{td.name}_reset)"
                )
            else:
                single = self._render_text(td.single_tap, layout)
                double = self._render_text(td.double_tap, layout)
                action = f"ACTION_TAP_DANCE_DOUBLE({single}, {double})"
            _line(buf, f"{_INDENT}[{_td_enum(td.name)}] = {action},")
        _line(buf, "};")

    def _write_combos(
        self,
        buf: StringIO,
        combos: list[Combo],
        layout: Layout,
    ) -> None:
        base = {key.position: key for key in layout.layers[0].keys}
        _line(buf, "#ifdef COMBO_ENABLE")
        _line(buf, "// Combos")
        _line(buf, "enum combo_events {")
        for combo in combos:
            _line(buf, f"{_INDENT}{_combo_enum(combo.name)},")
        _line(buf, "};")
        _line(buf)
        for combo in combos:
            # Triggers fire on the base-layer keycodes at those positions.
            triggers = [self._render_text(base[pos].keycode, layout) for pos in combo.trigger]
            _line(
                buf,
                f"const uint16_t PROGMEM cmb_{combo.name}[] = "
                f"{{{', '.join(triggers)}, COMBO_END}};",
            )
        _line(buf)
        _line(buf, "combo_t key_combos[] = {")
        for combo in combos:
            output = self._render_text(combo.output, layout)
            _line(buf, f"{_INDENT}[{_combo_enum(combo.name)}] = COMBO(cmb_{combo.name}, {output}),")
        _line(buf, "};")
        _line(buf, "#endif")

    def _write_idle_effect(self, buf: StringIO, ripple: bool = False) -> None:
        p = DEFINE_PREFIX
        record_hook = "bool process_record_user(uint16_t keycode, keyrecord_t *record) {"
        lines = [
            "#ifdef RGB_MATRIX_ENABLE",
            "// Idle effect",
            "typedef enum {",
            f"{_INDENT}IDLE_STATE_ACTIVE,",
            f"{_INDENT}IDLE_STATE_IDLE_EFFECT,",
            f"{_INDENT}IDLE_STATE_OFF,",
            "} idle_state_t;",
            "",
            "static idle_state_t idle_state = IDLE_STATE_ACTIVE;",
            "static uint32_t idle_timer = 0;",
            "static uint8_t saved_mode = 0;",
            "",
            "void keyboard_post_init_user(void) {",
            f"{_INDENT}idle_timer = timer_read32();",
            f"{_INDENT}saved_mode = rgb_matrix_get_mode();",
            "}",
            "",
            record_hook,
            f"{_INDENT}if (record->event.pressed) {{",
            f"{_INDENT * 2}if (idle_state != IDLE_STATE_ACTIVE) {{",
            f"{_INDENT * 3}rgb_matrix_enable_noeeprom();",
            f"{_INDENT * 3}rgb_matrix_mode_noeeprom(saved_mode);",
            f"{_INDENT * 3}idle_state = IDLE_STATE_ACTIVE;",
            f"{_INDENT * 2}}}",
            f"{_INDENT * 2}idle_timer = timer_read32();",
            f"{_INDENT}}}",
            f"{_INDENT}return true;",
            "}",
            "",
            "void matrix_scan_user(void) {",
            f"{_INDENT}uint32_t elapsed = timer_elapsed32(idle_timer);",
            f"{_INDENT}switch (idle_state) {{",
            f"{_INDENT * 2}case IDLE_STATE_ACTIVE:",
            f"{_INDENT * 3}if (elapsed >= {p}_IDLE_TIMEOUT_MS) {{",
            f"{_INDENT * 4}saved_mode = rgb_matrix_get_mode();",
            f"{_INDENT * 4}rgb_matrix_mode_noeeprom({p}_IDLE_EFFECT_MODE);",
            f"{_INDENT * 4}idle_state = IDLE_STATE_IDLE_EFFECT;",
            f"{_INDENT * 4}idle_timer = timer_read32();",
            f"{_INDENT * 3}}}",
            f"{_INDENT * 3}break;",
            f"{_INDENT * 2}case IDLE_STATE_IDLE_EFFECT:",
            f"{_INDENT * 3}if (elapsed >= {p}_IDLE_EFFECT_DURATION_MS) {{",
            f"{_INDENT * 4}rgb_matrix_disable_noeeprom();",
            f"{_INDENT * 4}idle_state = IDLE_STATE_OFF;",
            f"{_INDENT * 3}}}",
            f"{_INDENT * 3}break;",
            f"{_INDENT * 2}case IDLE_STATE_OFF:",
            f"{_INDENT * 3}break;",
            f"{_INDENT}}}",
            "}",
            "#endif",
        ]
        if ripple:
            at = lines.index(record_hook) + 1
            lines[at:at] = [
                f"#ifdef {RIPPLE_ENABLED_DEFINE}",
                f"{_INDENT}kf_ripple_trigger(keycode, record);",
                "#endif",
            ]
        for text in lines:
            _line(buf, text)

    def _write_ripple(self, buf: StringIO, ripple: RippleSettings, owns_record_hook: bool) -> None:
        """Ripple state, keypress -> LED lookup and the trigger.

        The trigger is called from ``process_record_user``; when the idle
        effect is off there is no such hook yet and one is emitted here.
        """
        p = f"{DEFINE_PREFIX}_RIPPLE"
        lines = [
            f"#if defined(RGB_MATRIX_ENABLE) && defined({RIPPLE_ENABLED_DEFINE})",
            "// RGB overlay ripple",
            "typedef struct {",
            f"{_INDENT}uint8_t led;",
            f"{_INDENT}uint16_t started;",
            f"{_INDENT}bool active;",
            "} ripple_t;",
            "",
            f"static ripple_t ripples[{p}_MAX_RIPPLES];",
            "static uint8_t ripple_next = 0;",
            "",
            "static uint8_t kf_matrix_to_led(uint8_t row, uint8_t col) {",
            f"{_INDENT}if (row >= MATRIX_ROWS || col >= MATRIX_COLS) {{",
            f"{_INDENT * 2}return NO_LED;",
            f"{_INDENT}}}",
            f"{_INDENT}return g_led_config.matrix_co[row][col];",
            "}",
            "",
            "static void kf_ripple_add(uint8_t led_index) {",
            f"{_INDENT}if (led_index >= RGB_MATRIX_LED_COUNT) {{",
            f"{_INDENT * 2}return;",
            f"{_INDENT}}}",
            f"{_INDENT}ripples[ripple_next] = (ripple_t){{.led = led_index, .started = timer_read(), .active = true}};",
            f"{_INDENT}ripple_next = (ripple_next + 1) % {p}_MAX_RIPPLES;",
            "}",
            "",
            "static void kf_ripple_trigger(uint16_t keycode, keyrecord_t *record) {",
            f"{_INDENT}if (record->event.pressed ? !{p}_TRIGGER_ON_PRESS : !{p}_TRIGGER_ON_RELEASE) {{",
            f"{_INDENT * 2}return;",
            f"{_INDENT}}}",
        ]
        skips = []
        if ripple.ignore_transparent:
            skips.append("keycode == KC_TRNS")
        if ripple.ignore_modifiers:
            skips.append("IS_MODIFIER_KEYCODE(keycode)")
        if ripple.ignore_layer_switch:
            skips.extend(
                f"{macro}(keycode)"
                for macro in (
                    "IS_QK_MOMENTARY", "IS_QK_LAYER_TAP", "IS_QK_TO", "IS_QK_TOGGLE_LAYER",
                    "IS_QK_LAYER_TAP_TOGGLE", "IS_QK_ONE_SHOT_LAYER", "IS_QK_DEF_LAYER",
                    "IS_QK_LAYER_MOD",
                )
            )
        for condition in skips:
            lines += [
                f"{_INDENT}if ({condition}) {{",
                f"{_INDENT * 2}return;",
                f"{_INDENT}}}",
            ]
        lines += [
            f"{_INDENT}kf_ripple_add(kf_matrix_to_led(record->event.key.row, record->event.key.col));",
            "}",
        ]
        if owns_record_hook:
            lines += [
                "",
                "bool process_record_user(uint16_t keycode, keyrecord_t *record) {",
                f"{_INDENT}kf_ripple_trigger(keycode, record);",
                f"{_INDENT}return true;",
                "}",
            ]
        lines.append("#endif")
        for text in lines:
            _line(buf, text)

    def _write_ripple_apply(self, buf: StringIO, ripple: RippleSettings) -> None:
        """Ring distance, ripple colour and the per-LED blend."""
        p = f"{DEFINE_PREFIX}_RIPPLE"
        if ripple.color_mode == "key_based":
            color_body = [
                f"{_INDENT}return (RGB){{",
                f"{_INDENT * 2}.r = pgm_read_byte(&layer_base_colors[layer][origin][0]),",
                f"{_INDENT * 2}.g = pgm_read_byte(&layer_base_colors[layer][origin][1]),",
                f"{_INDENT * 2}.b = pgm_read_byte(&layer_base_colors[layer][origin][2]),",
                f"{_INDENT}}};",
            ]
        elif ripple.color_mode == "hue_shift":
            color_body = [
                f"{_INDENT}HSV hsv = rgb_matrix_get_hsv();",
                f"{_INDENT}hsv.h += (uint8_t)({p}_HUE_SHIFT_DEG * 256L / 360);",
                f"{_INDENT}hsv.v = 255;",
                f"{_INDENT}return hsv_to_rgb(hsv);",
            ]
        else:
            color_body = [
                f"{_INDENT}return (RGB){{.r = {p}_COLOR_R, .g = {p}_COLOR_G, .b = {p}_COLOR_B}};",
            ]
        lines = [
            f"#ifdef {RIPPLE_ENABLED_DEFINE}",
            "static uint8_t kf_ripple_distance(uint8_t led1, uint8_t led2) {",
            f"{_INDENT}int16_t dx = (int16_t)g_led_config.point[led1].x - g_led_config.point[led2].x;",
            f"{_INDENT}int16_t dy = (int16_t)g_led_config.point[led1].y - g_led_config.point[led2].y;",
            f"{_INDENT}return sqrt16((uint16_t)(dx * dx + dy * dy));",
            "}",
            "",
            "static RGB kf_ripple_color(uint8_t origin, uint8_t layer) {",
            *color_body,
            "}",
            "",
            "static void kf_ripple_apply(uint8_t led_index, RGB *led_color, uint8_t layer) {",
            f"{_INDENT}for (uint8_t r = 0; r < {p}_MAX_RIPPLES; r++) {{",
            f"{_INDENT * 2}if (!ripples[r].active) {{",
            f"{_INDENT * 3}continue;",
            f"{_INDENT * 2}}}",
            f"{_INDENT * 2}uint16_t elapsed = timer_elapsed(ripples[r].started);",
            f"{_INDENT * 2}if (elapsed >= {p}_DURATION_MS) {{",
            f"{_INDENT * 3}ripples[r].active = false;",
            f"{_INDENT * 3}continue;",
            f"{_INDENT * 2}}}",
            f"{_INDENT * 2}uint16_t radius = (uint32_t)elapsed * {p}_SPEED / 1000;",
            f"{_INDENT * 2}uint8_t distance = kf_ripple_distance(ripples[r].led, led_index);",
            f"{_INDENT * 2}uint16_t gap = distance > radius ? distance - radius : radius - distance;",
            f"{_INDENT * 2}if (gap > {p}_BAND_WIDTH) {{",
            f"{_INDENT * 3}continue;",
            f"{_INDENT * 2}}}",
            f"{_INDENT * 2}RGB color = kf_ripple_color(ripples[r].led, layer);",
            f"{_INDENT * 2}uint8_t fade = 255 - (uint32_t)elapsed * 255 / {p}_DURATION_MS;",
            f"{_INDENT * 2}uint8_t amount = (uint16_t)fade * {p}_AMPLITUDE_PCT / 100;",
            f"{_INDENT * 2}led_color->r = blend8(led_color->r, color.r, amount);",
            f"{_INDENT * 2}led_color->g = blend8(led_color->g, color.g, amount);",
            f"{_INDENT * 2}led_color->b = blend8(led_color->b, color.b, amount);",
            f"{_INDENT}}}",
            "}",
            "#endif",
        ]
        for text in lines:
            _line(buf, text)

    # ------------------------------------------------------------------
    # config.h / rules.mk
    # ------------------------------------------------------------------

    def _config_h(
        self, layout: Layout, geometry: KeyboardGeometry, stamp: datetime | None
    ) -> str:
        buf = StringIO()
        self._write_header(buf, layout, geometry, stamp, include_layout=False)
        _line(buf)
        _line(buf, "#pragma once")

        th = layout.tap_hold
        if not th.is_default():
            _line(buf)
            _line(buf, "// Tap-hold")
            _line(buf, f"#define TAPPING_TERM {th.tapping_term}")
            if th.quick_tap_term is not None:
                _line(buf, f"#define QUICK_TAP_TERM {th.quick_tap_term}")
            if th.permissive_hold:
                _line(buf, "#define PERMISSIVE_HOLD")
            if th.hold_on_other_key_press:
                _line(buf, "#define HOLD_ON_OTHER_KEY_PRESS")
            if th.retro_tapping:
                _line(buf, "#define RETRO_TAPPING")

        if layout.rgb_enabled:
            rgb_lines = []
            if layout.rgb_brightness is not None:
                rgb_lines.append(
                    f"#define RGB_MATRIX_MAXIMUM_BRIGHTNESS {layout.rgb_brightness * 255 // 100}"
                )
            if layout.rgb_saturation != 100:
                rgb_lines.append(
                    f"#define RGB_MATRIX_DEFAULT_SAT {layout.rgb_saturation * 255 // 100}"
                )
            # The idle effect owns the timeout when enabled.
            if not layout.idle_effect.enabled and layout.rgb_timeout_ms > 0:
                rgb_lines.append(f"#define RGB_MATRIX_TIMEOUT {layout.rgb_timeout_ms}")
            if rgb_lines:
                _line(buf)
                _line(buf, "// RGB matrix")
                for text in rgb_lines:
                    _line(buf, text)

        idle = layout.idle_effect
        if idle.enabled:
            p = DEFINE_PREFIX
            _line(buf)
            _line(buf, "// Idle effect")
            _line(buf, f"#define {p}_IDLE_TIMEOUT_MS {idle.idle_timeout_ms}")
            _line(buf, f"#define {p}_IDLE_EFFECT_DURATION_MS {idle.idle_effect_duration_ms}")
            _line(buf, f"#define {p}_IDLE_EFFECT_MODE {idle.rgb_mode}")

        if _ripple_active(layout, geometry.led_count):
            rp = layout.ripple
            p = f"{DEFINE_PREFIX}_RIPPLE"
            _line(buf)
            _line(buf, "// RGB overlay ripple")
            _line(buf, f"#define {RIPPLE_ENABLED_DEFINE}")
            _line(buf, f"#define {p}_MAX_RIPPLES {rp.max_ripples}")
            _line(buf, f"#define {p}_DURATION_MS {rp.duration_ms}")
            _line(buf, f"#define {p}_SPEED {rp.speed}")
            _line(buf, f"#define {p}_BAND_WIDTH {rp.band_width}")
            _line(buf, f"#define {p}_AMPLITUDE_PCT {rp.amplitude_pct}")
            if rp.color_mode == "fixed":
                _line(buf, f"#define {p}_COLOR_R {rp.fixed_color.r}")
                _line(buf, f"#define {p}_COLOR_G {rp.fixed_color.g}")
                _line(buf, f"#define {p}_COLOR_B {rp.fixed_color.b}")
            elif rp.color_mode == "hue_shift":
                _line(buf, f"#define {p}_HUE_SHIFT_DEG {rp.hue_shift_deg}")
            _line(buf, f"#define {p}_TRIGGER_ON_PRESS {int(rp.trigger_on_press)}")
            _line(buf, f"#define {p}_TRIGGER_ON_RELEASE {int(rp.trigger_on_release)}")

        return buf.getvalue()

    def _rules_mk(self, layout: Layout, stamp: datetime | None) -> str | None:
        switches = []
        if layout.tap_dances:
            switches.append("TAP_DANCE_ENABLE = yes")
        if layout.combos:
            switches.append("COMBO_ENABLE = yes")
        if not switches:
            return None

        buf = StringIO()
        _line(buf, f"# Generated by {self._cfg.header_tag}")
        if stamp is not None:
            _line(buf, f"# Generated at {stamp.strftime('%Y-%m-%dT%H:%M:%SZ')}")
        _line(buf)
        for text in switches:
            _line(buf, text)
        return buf.getvalue()


# ---------------------------------------------------------------------------
# Module-level convenience
# ---------------------------------------------------------------------------


def generate(
    layout: Layout,
    geometry: KeyboardGeometry,
    mapping: VisualLayoutMapping,
    registry: KeycodeRegistry | None = None,
    deterministic: bool | None = None,
    config: GenerationConfig | None = None,
) -> GeneratedFiles:
    """Generate firmware sources with a one-off ``FirmwareGenerator``.

    ``registry`` defaults to the shipped keycode database; ``deterministic``
    defaults to ``config.deterministic``.
    """
    if registry is None:
        from keyforge.registry.database import KeycodeDatabase

        registry = KeycodeDatabase.load()
    return FirmwareGenerator(registry, config).generate(
        layout, geometry, mapping, deterministic=deterministic
    )
