"""
keyforge: QMK firmware generation for custom keyboard layouts.

Pipeline stages, one subpackage each:
    - models: geometry, layout and keycode data model
    - mapping: Matrix / LED / Visual coordinate mapping
    - colors: per-key colour resolution
    - codegen: layout validation and QMK source generation
    - build: background compilation with an event stream
    - registry: keycode database
    - configs: pipeline configuration
"""

__version__ = "0.1.0"

__all__ = [
    "build",
    "codegen",
    "colors",
    "configs",
    "mapping",
    "models",
    "registry",
    "utils",
]
