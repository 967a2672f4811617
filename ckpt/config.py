"""Configuration and metadata layout for ckpt.

Storage Structure
-----------------
<workspace>/.ckpt/            # Metadata directory (never captured)
├── db.json                   # Snapshot store + active pointer
├── config.yaml               # Optional overrides (CkptConfig)
├── graph.mmd                 # Mermaid description of the snapshot graph
├── graph.svg                 # Rendered diagram (when a renderer is available)
└── puppeteer.json            # Renderer sandbox settings

Configuration
-------------
**CkptConfig** is loaded from .ckpt/config.yaml. Only known keys are applied
and only non-default values are written back. ``CKPT_NO_RENDER=1`` in the
environment disables diagram rendering regardless of the file.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from ckpt.atomic import atomic_write_yaml
from ckpt.errors import CkptError, Result, io_error, ok

logger = logging.getLogger(__name__)

# Metadata layout (relative to the workspace root)
CKPT_DIR_NAME = ".ckpt"
DB_FILE_NAME = "db.json"
CONFIG_FILE_NAME = "config.yaml"
GRAPH_FILE_NAME = "graph.mmd"
SVG_FILE_NAME = "graph.svg"
PUPPETEER_FILE_NAME = "puppeteer.json"

ROOT_ID = "$"
ROOT_TAG = "root"


@dataclass(frozen=True)
class CkptPaths:
    """Resolved metadata paths for one workspace."""

    root: Path

    @property
    def ckpt_dir(self) -> Path:
        return self.root / CKPT_DIR_NAME

    @property
    def db_file(self) -> Path:
        return self.ckpt_dir / DB_FILE_NAME

    @property
    def config_file(self) -> Path:
        return self.ckpt_dir / CONFIG_FILE_NAME

    @property
    def graph_file(self) -> Path:
        return self.ckpt_dir / GRAPH_FILE_NAME

    @property
    def svg_file(self) -> Path:
        return self.ckpt_dir / SVG_FILE_NAME

    @property
    def puppeteer_file(self) -> Path:
        return self.ckpt_dir / PUPPETEER_FILE_NAME


@dataclass
class CkptConfig:
    """User-tunable settings for capture and rendering."""

    # Capture
    ignore_file: str = ".gitignore"
    extra_ignore: list[str] = field(default_factory=list)
    read_workers: int = 8

    # Diagram rendering
    render: bool = True
    render_theme: str = "dark"
    render_background: str = "black"
    render_timeout: int = 120

    @classmethod
    def load(cls, ckpt_dir: Path) -> "CkptConfig":
        """Load the effective config: config.yaml plus environment overrides.

        Args:
            ckpt_dir: Path to the .ckpt directory

        Returns:
            CkptConfig with values from config.yaml, or defaults if not found
        """
        config = cls.load_file(ckpt_dir)
        if os.environ.get("CKPT_NO_RENDER", "").lower() in ("1", "true", "yes"):
            config.render = False
        return config

    @classmethod
    def load_file(cls, ckpt_dir: Path) -> "CkptConfig":
        """Load config.yaml only. Bad values are dropped in favour of defaults."""
        config_path = ckpt_dir / CONFIG_FILE_NAME
        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                overrides = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read {config_path}, using defaults: {e}")
            return cls()

        if not isinstance(overrides, dict):
            logger.warning(f"Ignoring malformed config file: {config_path}")
            return cls()

        defaults = cls()
        valid_fields = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - valid_fields - {"_version"})
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {config_path}: {unknown}")

        values = {}
        for key, value in overrides.items():
            if key not in valid_fields:
                continue
            if not _matches_type(getattr(defaults, key), value):
                logger.warning(
                    f"Ignoring {key}={value!r} in {config_path}: "
                    f"expected a value like {getattr(defaults, key)!r}"
                )
                continue
            values[key] = value
        return cls(**values)

    def save(self, ckpt_dir: Path) -> Result[Path, CkptError]:
        """Save non-default values to .ckpt/config.yaml."""
        defaults = CkptConfig()
        data = {
            key: value
            for key, value in self.to_dict().items()
            if getattr(defaults, key) != value
        }
        if not data:
            data = {"_version": 1}

        return atomic_write_yaml(ckpt_dir / CONFIG_FILE_NAME, data)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "ignore_file": self.ignore_file,
            "extra_ignore": list(self.extra_ignore),
            "read_workers": self.read_workers,
            "render": self.render,
            "render_theme": self.render_theme,
            "render_background": self.render_background,
            "render_timeout": self.render_timeout,
        }


def _matches_type(default: Any, value: Any) -> bool:
    """True if a config.yaml value has the same shape as the field default."""
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int) and not isinstance(value, bool) and value > 0
    if isinstance(default, list):
        return isinstance(value, list) and all(isinstance(v, str) for v in value)
    return isinstance(value, str)


def coerce_config_value(key: str, raw: str) -> Any:
    """Convert a CLI string into the type of the CkptConfig field ``key``.

    Raises:
        KeyError: Unknown key
        ValueError: Value cannot be converted
    """
    defaults = CkptConfig()
    if key not in {f.name for f in fields(CkptConfig)}:
        raise KeyError(key)

    current = getattr(defaults, key)
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{key} expects a boolean, got {raw!r}")
    if isinstance(current, int):
        value = int(raw)
        if value <= 0:
            raise ValueError(f"{key} must be a positive integer, got {value}")
        return value
    if isinstance(current, list):
        return [part.strip() for part in raw.split(",") if part.strip()]
    return raw


def reset_config(ckpt_dir: Path) -> Result[bool, CkptError]:
    """Delete config.yaml. Returns Ok(True) if a file was removed."""
    config_path = ckpt_dir / CONFIG_FILE_NAME
    if not config_path.exists():
        return ok(False)
    try:
        config_path.unlink()
    except OSError as e:
        return io_error(f"Failed to remove {config_path}: {e}", path=config_path, exc=e)
    return ok(True)


def detect_workspace_root(start_path: Path | None = None) -> Path | None:
    """Find the nearest ancestor (inclusive) holding a .ckpt directory.

    Args:
        start_path: Starting path for traversal. Defaults to cwd.

    Returns:
        Workspace root, or None if no .ckpt directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    while True:
        if (current / CKPT_DIR_NAME).is_dir():
            return current
        if current == current.parent:
            return None
        current = current.parent
