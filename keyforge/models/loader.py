"""Layout file <-> ``Layout`` conversion.

The YAML document is validated by
:class:`keyforge.utils.validators.LayoutFileV1` first; this module only
turns the validated document into model objects and back.  Layer numbers
follow document order.
"""

from __future__ import annotations

import logging
from pathlib import Path

from keyforge.models.geometry import VisualPosition
from keyforge.models.layout import (
    Category,
    Combo,
    IdleEffectSettings,
    KeyDefinition,
    Layer,
    Layout,
    LayoutMetadata,
    RippleSettings,
    TapDance,
    TapHoldSettings,
)
from keyforge.models.rgb import RgbColor
from keyforge.utils import fs, validators

logger = logging.getLogger(__name__)


def _color(value: str | None) -> RgbColor | None:
    return RgbColor.from_hex(value) if value is not None else None


def _ripple_from_document(doc: validators.RippleDoc) -> RippleSettings:
    fields = doc.model_dump()
    fields["fixed_color"] = RgbColor.from_hex(doc.fixed_color)
    return RippleSettings(**fields)


def _ripple_to_document(ripple: RippleSettings) -> validators.RippleDoc:
    fields = {name: getattr(ripple, name) for name in validators.RippleDoc.model_fields}
    fields["fixed_color"] = ripple.fixed_color.to_hex()
    return validators.RippleDoc(**fields)


def layout_from_document(doc: validators.LayoutFileV1) -> Layout:
    """Build a ``Layout`` from a validated layout document.

    Raises
    ------
    ValueError
        If a value passes the schema but not the model (for example an
        unknown idle effect mode).
    """
    layers = []
    for number, layer_doc in enumerate(doc.layers):
        keys = [
            KeyDefinition(
                position=VisualPosition(k.row, k.col),
                keycode=k.keycode,
                color_override=_color(k.color),
                category_id=k.category,
                combo_participant=k.combo,
                label=k.label,
                description=k.description,
            )
            for k in layer_doc.keys
        ]
        layers.append(Layer(
            number=number,
            name=layer_doc.name,
            default_color=RgbColor.from_hex(layer_doc.color),
            id=layer_doc.id or "",
            category_id=layer_doc.category,
            keys=keys,
            layer_colors_enabled=layer_doc.layer_colors,
        ))

    layout = Layout(
        metadata=LayoutMetadata(
            name=doc.name,
            keyboard=doc.keyboard,
            layout_variant=doc.layout_variant,
            keymap_name=doc.keymap_name,
            author=doc.author,
            description=doc.description,
        ),
        layers=layers,
        categories=[Category(c.id, c.name, RgbColor.from_hex(c.color)) for c in doc.categories],
        tap_dances=[TapDance(t.name, t.single_tap, t.double_tap, t.hold) for t in doc.tap_dances],
        combos=[
            Combo(c.name, tuple(VisualPosition(r, col) for r, col in c.keys), c.output)
            for c in doc.combos
        ],
        idle_effect=IdleEffectSettings(**doc.idle_effect.model_dump()),
        tap_hold=TapHoldSettings(**doc.tap_hold.model_dump()),
        rgb_enabled=doc.rgb.enabled,
        rgb_brightness=doc.rgb.brightness,
        rgb_saturation=doc.rgb.saturation,
        uncolored_key_brightness=doc.rgb.uncolored_key_brightness,
        rgb_timeout_ms=doc.rgb.timeout_ms,
        ripple=_ripple_from_document(doc.rgb.ripple),
    )
    logger.debug(
        "Loaded layout %r: %d layers, %d categories",
        doc.name, len(layout.layers), len(layout.categories),
    )
    return layout


def load_layout(path: str | Path) -> Layout:
    """Load, validate and convert a layout file (layout.v1.yaml)."""
    return layout_from_document(validators.load_layout_file(path))


def layout_to_document(layout: Layout) -> validators.LayoutFileV1:
    """Inverse of :func:`layout_from_document`."""
    meta = layout.metadata
    return validators.LayoutFileV1(
        name=meta.name,
        keyboard=meta.keyboard,
        layout_variant=meta.layout_variant,
        keymap_name=meta.keymap_name,
        author=meta.author,
        description=meta.description,
        categories=[
            validators.CategoryDoc(id=c.id, name=c.name, color=c.color.to_hex())
            for c in layout.categories
        ],
        layers=[
            validators.LayerDoc(
                name=layer.name,
                id=layer.id,
                color=layer.default_color.to_hex(),
                category=layer.category_id,
                layer_colors=layer.layer_colors_enabled,
                keys=[
                    validators.KeyDoc(
                        row=k.position.row,
                        col=k.position.col,
                        keycode=k.keycode,
                        color=k.color_override.to_hex() if k.color_override else None,
                        category=k.category_id,
                        combo=k.combo_participant,
                        label=k.label,
                        description=k.description,
                    )
                    for k in layer.keys
                ],
            )
            for layer in layout.layers
        ],
        tap_dances=[
            validators.TapDanceDoc(
                name=t.name, single_tap=t.single_tap, double_tap=t.double_tap, hold=t.hold
            )
            for t in layout.tap_dances
        ],
        combos=[
            validators.ComboDoc(
                name=c.name, keys=[(p.row, p.col) for p in c.trigger], output=c.output
            )
            for c in layout.combos
        ],
        idle_effect=validators.IdleEffectDoc(
            enabled=layout.idle_effect.enabled,
            idle_timeout_ms=layout.idle_effect.idle_timeout_ms,
            idle_effect_duration_ms=layout.idle_effect.idle_effect_duration_ms,
            idle_effect_mode=layout.idle_effect.idle_effect_mode,
        ),
        tap_hold=validators.TapHoldDoc(
            tapping_term=layout.tap_hold.tapping_term,
            quick_tap_term=layout.tap_hold.quick_tap_term,
            permissive_hold=layout.tap_hold.permissive_hold,
            hold_on_other_key_press=layout.tap_hold.hold_on_other_key_press,
            retro_tapping=layout.tap_hold.retro_tapping,
        ),
        rgb=validators.RgbDoc(
            enabled=layout.rgb_enabled,
            brightness=layout.rgb_brightness,
            saturation=layout.rgb_saturation,
            uncolored_key_brightness=layout.uncolored_key_brightness,
            timeout_ms=layout.rgb_timeout_ms,
            ripple=_ripple_to_document(layout.ripple),
        ),
    )


def save_layout(layout: Layout, path: str | Path) -> None:
    """Write ``layout`` as a layout.v1 YAML document (atomic)."""
    doc = layout_to_document(layout)
    data = doc.model_dump(mode="json", by_alias=True, exclude_none=True)
    fs.atomic_yaml_dump(data, path)
    logger.info("Saved layout %r to %s", layout.metadata.name, path)
