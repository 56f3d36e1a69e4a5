"""
Coordinate mapping engine.

Translates between Matrix positions, LED indices and Visual positions for
one keyboard geometry.  Rebuilt from scratch on every keyboard or layout
variant change.
"""

from keyforge.mapping.description import (
    geometry_from_info,
    list_layout_variants,
    load_geometry,
)
from keyforge.mapping.visual_layout import (
    GeometryError,
    MappingInconsistency,
    MatrixMapping,
    NotFound,
    VisualLayoutMapping,
    build_mapping,
)

__all__ = [
    "geometry_from_info",
    "list_layout_variants",
    "load_geometry",
    "GeometryError",
    "MappingInconsistency",
    "MatrixMapping",
    "NotFound",
    "VisualLayoutMapping",
    "build_mapping",
]
