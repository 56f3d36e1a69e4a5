"""Argument and input loading shared by the command-line entry points."""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path

from keyforge.configs.loader import PipelineConfig, load_config
from keyforge.mapping.description import load_geometry
from keyforge.mapping.visual_layout import VisualLayoutMapping, build_mapping
from keyforge.models.geometry import KeyboardGeometry
from keyforge.models.layout import Layout
from keyforge.models.loader import load_layout
from keyforge.registry.database import KeycodeDatabase
from keyforge.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


@dataclass
class Inputs:
    config: PipelineConfig
    registry: KeycodeDatabase
    geometry: KeyboardGeometry
    mapping: VisualLayoutMapping
    layout: Layout


def add_input_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments every entry point takes."""
    parser.add_argument(
        "--keyboard-info",
        type=Path,
        required=True,
        help="QMK keyboard description (info.json / keyboard.json)",
    )
    parser.add_argument(
        "--variant",
        type=str,
        required=True,
        help="Layout variant name (e.g. LAYOUT_split_3x6_3)",
    )
    parser.add_argument(
        "--layout",
        type=Path,
        required=True,
        help="Layout file (layout.v1 YAML)",
    )
    parser.add_argument(
        "--out-dir",
        type=Path,
        required=True,
        help="Directory for the generated sources",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Pipeline config (default: the packaged pipeline.yaml)",
    )
    parser.add_argument(
        "--keycodes",
        type=Path,
        default=None,
        help="Keycode database YAML (default: the packaged keycodes.yaml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )


def configure_logging(config: PipelineConfig, verbose: bool) -> None:
    kwargs = config.logging.as_kwargs()
    if verbose:
        kwargs["log_level"] = "DEBUG"
    setup_logging(**kwargs)


def load_inputs(args: argparse.Namespace) -> Inputs:
    """Load config, registry, geometry, mapping and layout from parsed args.

    Raises whatever the individual loaders raise (``ConfigError``,
    ``GeometryError``, ``ValueError``, ``FileNotFoundError``).
    """
    config = load_config(args.config)
    configure_logging(config, args.verbose)

    registry = KeycodeDatabase.load(args.keycodes)
    geometry = load_geometry(args.keyboard_info, args.variant)
    mapping = build_mapping(geometry)
    layout = load_layout(args.layout)
    logger.info(
        "Loaded %s/%s (%d keys, %d LEDs) and layout %r (%d layers)",
        geometry.keyboard_name, geometry.layout_name, geometry.key_count,
        geometry.led_count, layout.metadata.name, len(layout.layers),
    )
    return Inputs(config, registry, geometry, mapping, layout)
