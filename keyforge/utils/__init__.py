"""
Shared utilities: atomic file I/O, logging setup, input schema validation.
"""

__all__ = ["fs", "logging_config", "validators"]
