"""Shared fixtures: keycode registry, a 2x3 test keyboard and its layouts."""

from pathlib import Path

import pytest

from keyforge.codegen.generator import FirmwareGenerator
from keyforge.configs.loader import GenerationConfig
from keyforge.mapping.visual_layout import build_mapping
from keyforge.registry.database import KeycodeDatabase
from keyforge.tests import factories

GOLDEN_DIR = Path(__file__).parent / "golden"


@pytest.fixture(scope="session")
def registry():
    """Shipped keycode database."""
    return KeycodeDatabase.load()


@pytest.fixture()
def geometry():
    """2x3 non-split grid, every key lit."""
    return factories.grid_geometry()


@pytest.fixture()
def mapping(geometry):
    return build_mapping(geometry)


@pytest.fixture()
def layout(mapping):
    """Two-layer layout used by the golden output test."""
    return factories.golden_layout(mapping)


@pytest.fixture()
def generator(registry):
    """Generator in deterministic mode (no timestamp line)."""
    return FirmwareGenerator(registry, GenerationConfig(deterministic=True))
