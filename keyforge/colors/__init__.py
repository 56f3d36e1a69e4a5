"""
Colour resolution engine (four-level precedence).
"""

from keyforge.colors.resolver import (
    PrioritySource,
    ResolvedColor,
    led_color,
    resolve,
    resolve_layer,
)

__all__ = ["PrioritySource", "ResolvedColor", "led_color", "resolve", "resolve_layer"]
