"""
Pipeline configuration: loads and validates ``pipeline.yaml``.
"""

from keyforge.configs.loader import (
    BuildConfig,
    ConfigError,
    GenerationConfig,
    LoggingConfig,
    PipelineConfig,
    ProgressMarker,
    QmkConfig,
    load_config,
)

__all__ = [
    "BuildConfig",
    "ConfigError",
    "GenerationConfig",
    "LoggingConfig",
    "PipelineConfig",
    "ProgressMarker",
    "QmkConfig",
    "load_config",
]
