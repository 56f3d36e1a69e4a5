"""
Keycode registry: the set of valid keycode names and function signatures.
"""

from keyforge.registry.database import (
    DEFAULT_DATABASE,
    FunctionSpec,
    KeycodeDatabase,
    KeycodeRegistry,
)

__all__ = [
    "DEFAULT_DATABASE",
    "FunctionSpec",
    "KeycodeDatabase",
    "KeycodeRegistry",
]
