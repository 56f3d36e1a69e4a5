"""Layout validation run before any firmware source is emitted.

Every problem is collected into one ``ValidationReport`` so a single
generation attempt surfaces all of them; nothing stops at the first
error.  Errors block generation, warnings don't.

Checks, in order:

1. structure -- at least one layer, layer numbers sequential, mapping built
   from the same geometry
2. per layer -- duplicate visual positions, positions with no matrix
   counterpart, matrix coverage (every matrix position has a key)
3. per key -- keycode syntax, registry membership, layer references,
   tap dance references
4. tap dances and combos -- action / output keycodes, combo triggers,
   duplicate names
5. lighting -- brightness, saturation and uncoloured-key percentages
6. warnings -- unused tap dances, combo-flagged keys in no combo
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from keyforge.mapping.visual_layout import (
    MappingInconsistency,
    NotFound,
    VisualLayoutMapping,
)
from keyforge.models.geometry import KeyboardGeometry, MatrixPosition, VisualPosition
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
from keyforge.models.layout import Layout
from keyforge.registry.database import KeycodeRegistry

logger = logging.getLogger(__name__)


class IssueCategory(Enum):
    STRUCTURE = "structure"
    COVERAGE = "coverage"
    MAPPING = "mapping"
    DUPLICATE = "duplicate"
    KEYCODE = "keycode"
    LAYER_REF = "layer_ref"
    TAP_DANCE = "tap_dance"
    COMBO = "combo"
    RGB = "rgb"


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """One problem, with enough context to point at the responsible key.

    ``position`` is a visual position for key-level problems and a matrix
    position for coverage problems.
    """

    category: IssueCategory
    message: str
    position: VisualPosition | MatrixPosition | None = None
    layer: int | None = None

    def __str__(self) -> str:
        where = []
        if self.layer is not None:
            where.append(f"layer {self.layer}")
        if self.position is not None:
            where.append(str(self.position))
        prefix = f"[{self.category.value}]"
        if where:
            prefix += f" {', '.join(where)}:"
        return f"{prefix} {self.message}"


@dataclass
class ValidationReport:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, category: IssueCategory, message: str, position=None, layer=None) -> None:
        self.errors.append(ValidationIssue(category, message, position, layer))

    def warn(self, category: IssueCategory, message: str, position=None, layer=None) -> None:
        self.warnings.append(ValidationIssue(category, message, position, layer))

    def by_category(self, category: IssueCategory) -> list[ValidationIssue]:
        return [e for e in self.errors if e.category is category]

    def summary(self) -> str:
        return f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"


# ---------------------------------------------------------------------------
# Keycode checks
# ---------------------------------------------------------------------------


class _KeycodeChecker:
    """Checks one parsed keycode against the registry and the layout."""

    def __init__(self, layout: Layout, registry: KeycodeRegistry, report: ValidationReport) -> None:
        self._layout = layout
        self._registry = registry
        self._report = report

    def check_text(self, text: str, position=None, layer=None, context: str = "") -> Keycode | None:
        """Parse and check ``text``; returns the variant, or ``None`` if unparseable."""
        try:
            kc = parse_keycode(text)
        except KeycodeSyntaxError as exc:
            self._report.error(IssueCategory.KEYCODE, f"{context}{exc}", position, layer)
            return None
        self._check_names(kc, text, position, layer, context)
        self._check_references(kc, text, position, layer, context)
        return kc

    def _check_names(self, kc: Keycode, text: str, position, layer, context: str) -> None:
        report = self._report
        if isinstance(kc, BasicKeycode):
            if not self._registry.is_keycode(kc.name):
                report.error(
                    IssueCategory.KEYCODE,
                    f"{context}Unknown keycode {kc.name!r} in {text!r}",
                    position, layer,
                )
        elif isinstance(kc, TapDanceKeycode):
            pass
        elif isinstance(kc, LayerKeycode):
            if self._registry.function_spec(kc.function) is None:
                report.error(
                    IssueCategory.KEYCODE,
                    f"{context}Unknown layer function {kc.function!r} in {text!r}",
                    position, layer,
                )
            if isinstance(kc.argument, ModMask):
                self._check_mods(kc.argument, text, position, layer, context)
            elif isinstance(kc.argument, Keycode):
                self._check_names(kc.argument, text, position, layer, context)
        elif isinstance(kc, FunctionKeycode):
            self._check_function(kc, text, position, layer, context)
        else:
            report.error(
                IssueCategory.KEYCODE,
                f"{context}Unsupported keycode kind {type(kc).__name__}",
                position, layer,
            )

    def _check_function(self, kc: FunctionKeycode, text: str, position, layer, context: str) -> None:
        report = self._report
        spec = self._registry.function_spec(kc.name)
        if spec is None:
            report.error(
                IssueCategory.KEYCODE,
                f"{context}Unknown keycode function {kc.name!r} in {text!r}",
                position, layer,
            )
            return
        if len(kc.args) != spec.arity:
            report.error(
                IssueCategory.KEYCODE,
                f"{context}{kc.name}() takes {spec.arity} argument(s), "
                f"got {len(kc.args)} in {text!r}",
                position, layer,
            )
            return
        for kind, arg in zip(spec.args, kc.args):
            if kind == "keycode" and isinstance(arg, Keycode):
                self._check_names(arg, text, position, layer, context)
            elif kind == "mod" and isinstance(arg, ModMask):
                self._check_mods(arg, text, position, layer, context)
            elif kind == "layer" and isinstance(arg, (LayerRef, int)):
                pass
            elif kind == "int" and isinstance(arg, int):
                pass
            else:
                report.error(
                    IssueCategory.KEYCODE,
                    f"{context}{kc.name}() expects a {kind} argument, got {arg} in {text!r}",
                    position, layer,
                )

    def _check_mods(self, mask: ModMask, text: str, position, layer, context: str) -> None:
        for name in mask.names:
            if not self._registry.is_modifier(name):
                self._report.error(
                    IssueCategory.KEYCODE,
                    f"{context}Unknown modifier {name!r} in {text!r}",
                    position, layer,
                )

    def _check_references(self, kc: Keycode, text: str, position, layer, context: str) -> None:
        layer_count = len(self._layout.layers)
        refs = list(iter_references(kc))
        if isinstance(kc, FunctionKeycode):
            refs.extend(LayerRef(index=a) for a in _layer_int_args(kc, self._registry))
        for ref in refs:
            if isinstance(ref, TapDanceKeycode):
                if self._layout.get_tap_dance(ref.name) is None:
                    self._report.error(
                        IssueCategory.TAP_DANCE,
                        f"{context}Tap dance {ref.name!r} is not defined ({text!r})",
                        position, layer,
                    )
            elif ref.is_symbolic:
                if self._layout.layer_index_for_id(ref.layer_id) is None:
                    self._report.error(
                        IssueCategory.LAYER_REF,
                        f"{context}Layer id {ref.layer_id!r} does not exist ({text!r})",
                        position, layer,
                    )
            elif not 0 <= ref.index < layer_count:
                self._report.error(
                    IssueCategory.LAYER_REF,
                    f"{context}Layer {ref.index} out of range, layout has "
                    f"{layer_count} layer(s) ({text!r})",
                    position, layer,
                )


def _layer_int_args(kc: FunctionKeycode, registry: KeycodeRegistry) -> list[int]:
    """Plain integer arguments in ``layer`` slots of a function keycode."""
    spec = registry.function_spec(kc.name)
    if spec is None or len(spec.args) != len(kc.args):
        return []
    return [
        arg for kind, arg in zip(spec.args, kc.args)
        if kind == "layer" and isinstance(arg, int)
    ]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate(
    layout: Layout,
    geometry: KeyboardGeometry,
    mapping: VisualLayoutMapping,
    registry: KeycodeRegistry,
) -> ValidationReport:
    """Validate ``layout`` against a geometry, its mapping and a registry.

    Parameters
    ----------
    layout : Layout
        Layout snapshot.
    geometry : KeyboardGeometry
        Active keyboard geometry.
    mapping : VisualLayoutMapping
        Mapping built from ``geometry``.
    registry : KeycodeRegistry
        Keycode database.

    Returns
    -------
    ValidationReport
        All errors and warnings found.
    """
    report = ValidationReport()
    checker = _KeycodeChecker(layout, registry, report)

    # -- structure ----------------------------------------------------------
    if not layout.layers:
        report.error(IssueCategory.STRUCTURE, "Layout has no layers")
    for index, layer in enumerate(layout.layers):
        if layer.number != index:
            report.error(
                IssueCategory.STRUCTURE,
                f"Layer {layer.name!r} has number {layer.number}, expected {index}",
                layer=index,
            )
    layer_ids = Counter(layer.id for layer in layout.layers)
    for layer_id, count in sorted(layer_ids.items()):
        if count > 1:
            report.error(IssueCategory.DUPLICATE, f"Layer id {layer_id!r} used {count} times")

    mapping_ok = True
    for m in geometry.matrix_positions():
        try:
            mapping.matrix_to_visual(m)
        except NotFound:
            mapping_ok = False
            report.error(
                IssueCategory.MAPPING,
                f"Mapping has no visual position for {m}; it was built from another geometry",
                position=m,
            )

    # -- per layer ------------------------------------------------------------
    for index, layer in enumerate(layout.layers):
        counts = Counter(key.position for key in layer.keys)
        for pos, count in sorted(counts.items()):
            if count > 1:
                report.error(
                    IssueCategory.DUPLICATE,
                    f"{count} keys defined at the same position",
                    pos, index,
                )

        for key in layer.keys:
            if not mapping.has_visual(key.position):
                report.error(
                    IssueCategory.MAPPING,
                    str(MappingInconsistency(key.position, index)),
                    key.position, index,
                )

        if mapping_ok:
            defined = set(counts)
            for m in geometry.matrix_positions():
                v = mapping.matrix_to_visual(m)
                if v not in defined:
                    report.error(
                        IssueCategory.COVERAGE,
                        f"Layer {index} ({layer.name}) has no key for {m} at {v}",
                        m, index,
                    )

        for key in layer.keys:
            checker.check_text(key.keycode, key.position, index)

    # -- tap dances -------------------------------------------------------------
    td_names = Counter(td.name for td in layout.tap_dances)
    for name, count in sorted(td_names.items()):
        if count > 1:
            report.error(IssueCategory.TAP_DANCE, f"Tap dance {name!r} defined {count} times")
    for td in layout.tap_dances:
        for role, text in td.actions():
            kc = checker.check_text(text, context=f"Tap dance {td.name} {role}: ")
            if isinstance(kc, TapDanceKeycode):
                report.error(
                    IssueCategory.TAP_DANCE,
                    f"Tap dance {td.name} {role} cannot be another tap dance ({text!r})",
                )

    # -- combos -----------------------------------------------------------------
    combo_names = Counter(c.name for c in layout.combos)
    for name, count in sorted(combo_names.items()):
        if count > 1:
            report.error(IssueCategory.COMBO, f"Combo {name!r} defined {count} times")
    for combo in layout.combos:
        for pos in combo.trigger:
            if not mapping.has_visual(pos):
                report.error(
                    IssueCategory.COMBO,
                    f"Combo {combo.name} trigger has no counterpart in the mapping",
                    pos,
                )
        checker.check_text(combo.output, context=f"Combo {combo.name} output: ")

    # -- lighting -------------------------------------------------------------
    for name in ("rgb_brightness", "rgb_saturation", "uncolored_key_brightness"):
        value = getattr(layout, name)
        if value is not None and not 0 <= value <= 100:
            report.error(IssueCategory.RGB, f"{name} must be a percentage in [0, 100], got {value}")

    # -- warnings -------------------------------------------------------------
    used_tds = set()
    for layer in layout.layers:
        for key in layer.keys:
            try:
                kc = parse_keycode(key.keycode)
            except KeycodeSyntaxError:
                continue
            used_tds.update(
                ref.name for ref in iter_references(kc) if isinstance(ref, TapDanceKeycode)
            )
    for td in layout.tap_dances:
        if td.name not in used_tds:
            report.warn(IssueCategory.TAP_DANCE, f"Tap dance {td.name!r} is defined but never used")

    triggers = {pos for combo in layout.combos for pos in combo.trigger}
    for index, layer in enumerate(layout.layers):
        for key in layer.keys:
            if key.combo_participant and key.position not in triggers:
                report.warn(
                    IssueCategory.COMBO,
                    "Key is flagged as a combo participant but no combo uses it",
                    key.position, index,
                )

    if layout.metadata.layout_variant and layout.metadata.layout_variant != geometry.layout_name:
        report.warn(
            IssueCategory.STRUCTURE,
            f"Layout was made for variant {layout.metadata.layout_variant!r}, "
            f"generating for {geometry.layout_name!r}",
        )

    logger.debug("Validated layout %r: %s", layout.metadata.name, report.summary())
    return report
