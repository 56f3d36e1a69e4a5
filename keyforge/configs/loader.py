"""Configuration loader for the firmware pipeline.

Loads and validates ``pipeline.yaml`` into typed, frozen dataclasses.
Everything environment-specific (QMK checkout location, the compiler
command line, artifact names, progress milestones) comes from the config
-- nothing is hardcoded in the generator or the orchestrator.

Usage::

    from keyforge.configs.loader import load_config
    cfg = load_config()                          # default path
    cfg = load_config("/custom/pipeline.yaml")   # explicit path
"""

from __future__ import annotations

import logging
import re
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from keyforge.utils.fs import load_yaml

logger = logging.getLogger(__name__)

PLACEHOLDERS = frozenset({"keyboard", "keymap", "keymap_dir", "output_dir", "qmk_path"})
"""Names allowed inside ``{...}`` in build templates.

``keymap_dir`` is ``<qmk_path>/keyboards/<keyboard>/keymaps/<keymap>``, the
directory QMK compiles a keymap from.
"""


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QmkConfig:
    """QMK checkout and keymap naming."""

    firmware_path: Path
    keymap_name: str


@dataclass(frozen=True)
class GenerationConfig:
    """Generated file names and header settings."""

    keymap_file: str = "keymap.c"
    config_file: str = "config.h"
    rules_file: str = "rules.mk"
    header_tag: str = "keyforge"
    deterministic: bool = False


@dataclass(frozen=True)
class ProgressMarker:
    """Compiler output milestone.

    ``pattern`` is a regex searched in each output line; a match reports
    ``phase`` at ``percent``.
    """

    pattern: str
    phase: str
    percent: int | None = None


@dataclass(frozen=True)
class BuildConfig:
    """External compiler invocation.

    ``command``, ``working_dir`` and ``sources_dir`` are templates; see
    :meth:`render_command`.  ``sources_dir`` is where generated sources are
    written; ``None`` writes them into the build output directory.
    """

    command: tuple[str, ...]
    working_dir: str | None = None
    sources_dir: str | None = None
    artifact_patterns: tuple[str, ...] = ("*.uf2", "*.hex", "*.bin")
    progress_markers: tuple[ProgressMarker, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    def render_command(self, **values: str) -> list[str]:
        """Substitute placeholders into the command template."""
        return [arg.format(**values) for arg in self.command]

    def render_working_dir(self, **values: str) -> Path | None:
        if self.working_dir is None:
            return None
        return Path(self.working_dir.format(**values)).expanduser()

    def render_sources_dir(self, **values: str) -> Path | None:
        if self.sources_dir is None:
            return None
        return Path(self.sources_dir.format(**values)).expanduser()


@dataclass(frozen=True)
class LoggingConfig:
    """Arguments for :func:`keyforge.utils.logging_config.setup_logging`."""

    level: str = "INFO"
    file: str | None = None
    json: bool = False
    color: bool = True
    rotate: dict[str, Any] | None = None

    def as_kwargs(self) -> dict[str, Any]:
        return {
            "log_level": self.level,
            "log_file": self.file,
            "json": self.json,
            "color": self.color,
            "rotate": self.rotate,
        }


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level configuration."""

    qmk: QmkConfig
    generation: GenerationConfig
    build: BuildConfig
    logging: LoggingConfig


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _parse_markers(raw: Any) -> tuple[ProgressMarker, ...]:
    if not raw:
        return ()
    markers = []
    for entry in raw:
        percent = entry.get("percent")
        markers.append(
            ProgressMarker(
                pattern=str(entry["pattern"]),
                phase=str(entry["phase"]),
                percent=int(percent) if percent is not None else None,
            )
        )
    return tuple(markers)


def _parse_build(data: dict[str, Any]) -> BuildConfig:
    command = data["command"]
    if isinstance(command, str):
        command = command.split()
    working_dir = data.get("working_dir")
    sources_dir = data.get("sources_dir")
    return BuildConfig(
        command=tuple(str(arg) for arg in command),
        working_dir=str(working_dir) if working_dir is not None else None,
        sources_dir=str(sources_dir) if sources_dir is not None else None,
        artifact_patterns=tuple(
            str(p) for p in data.get("artifact_patterns", ("*.uf2", "*.hex", "*.bin"))
        ),
        progress_markers=_parse_markers(data.get("progress_markers")),
        env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
    )


def _template_fields(template: str) -> set[str]:
    return {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}


def _validate_config(cfg: PipelineConfig) -> None:
    """Validate cross-field consistency.

    Raises
    ------
    ConfigError
        On any invalid combination.
    """
    if not cfg.qmk.keymap_name or not re.match(r"^[A-Za-z0-9_-]+$", cfg.qmk.keymap_name):
        raise ConfigError(f"Invalid keymap name: {cfg.qmk.keymap_name!r}")

    gen = cfg.generation
    names = [gen.keymap_file, gen.config_file, gen.rules_file]
    if len(set(names)) != len(names):
        raise ConfigError(f"Generated file names must be distinct: {names}")
    for name in names:
        if not name or "/" in name or "\\" in name:
            raise ConfigError(f"Generated file name must be a bare file name: {name!r}")

    build = cfg.build
    if not build.command:
        raise ConfigError("Build command is empty")
    templates = list(build.command)
    for template in (build.working_dir, build.sources_dir):
        if template is not None:
            templates.append(template)
    for template in templates:
        try:
            unknown = _template_fields(template) - PLACEHOLDERS
        except ValueError as exc:
            raise ConfigError(f"Malformed template {template!r}: {exc}") from exc
        if unknown:
            raise ConfigError(
                f"Unknown placeholder(s) {sorted(unknown)} in {template!r}; "
                f"allowed: {sorted(PLACEHOLDERS)}"
            )

    if not build.artifact_patterns:
        raise ConfigError("At least one artifact pattern is required")

    for marker in build.progress_markers:
        try:
            re.compile(marker.pattern)
        except re.error as exc:
            raise ConfigError(f"Invalid progress pattern {marker.pattern!r}: {exc}") from exc
        if marker.percent is not None and not 0 <= marker.percent <= 100:
            raise ConfigError(
                f"Progress percent must be in [0, 100], got {marker.percent} "
                f"for phase {marker.phase!r}"
            )

    if cfg.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"Invalid log level: {cfg.logging.level!r}")

    if not cfg.qmk.firmware_path.exists():
        logger.warning("QMK firmware path does not exist: %s", cfg.qmk.firmware_path)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> PipelineConfig:
    """Load and validate pipeline configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``pipeline.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    PipelineConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "pipeline.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    try:
        # -- qmk --------------------------------------------------------------
        qd = data["qmk"]
        qmk = QmkConfig(
            firmware_path=Path(str(qd["firmware_path"])).expanduser(),
            keymap_name=str(qd.get("keymap_name", "keyforge")),
        )

        # -- generation -------------------------------------------------------
        gd = data.get("generation") or {}
        generation = GenerationConfig(
            keymap_file=str(gd.get("keymap_file", "keymap.c")),
            config_file=str(gd.get("config_file", "config.h")),
            rules_file=str(gd.get("rules_file", "rules.mk")),
            header_tag=str(gd.get("header_tag", "keyforge")),
            deterministic=bool(gd.get("deterministic", False)),
        )

        # -- build ------------------------------------------------------------
        build = _parse_build(data["build"])

        # -- logging (optional) -----------------------------------------------
        ld = data.get("logging") or {}
        log_cfg = LoggingConfig(
            level=str(ld.get("level", "INFO")),
            file=ld.get("file"),
            json=bool(ld.get("json", False)),
            color=bool(ld.get("color", True)),
            rotate=ld.get("rotate"),
        )

        config = PipelineConfig(
            qmk=qmk,
            generation=generation,
            build=build,
            logging=log_cfg,
        )

        _validate_config(config)
        logger.info("Configuration loaded successfully")
        return config

    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc
