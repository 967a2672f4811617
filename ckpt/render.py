"""Diagram rendering for the snapshot graph.

The core only depends on the Renderer capability:

    render(description) -> Ok(svg_path) | Err(render_failed)

Each way of locating the Mermaid CLI (mmdc) is one Renderer variant.
discover_renderer() probes them in order and returns the first one that is
available:

1. LocalBinRenderer  <workspace>/node_modules/.bin/mmdc
2. PathRenderer      mmdc on PATH
3. BunRenderer       bun x mmdc
4. NpxRenderer       npx -y @mermaid-js/mermaid-cli mmdc

The description file (.ckpt/graph.mmd) is always written before a renderer
runs, and a render failure never touches the snapshot history.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from ckpt.atomic import atomic_write_json
from ckpt.config import CkptConfig, CkptPaths
from ckpt.errors import RENDER_FAILED, RENDERER_UNAVAILABLE, CkptError, Result, err, ok
from ckpt.graph import describe, write_description

if TYPE_CHECKING:
    from ckpt.store import SnapshotStore

logger = logging.getLogger(__name__)

MERMAID_CLI_PACKAGE = "@mermaid-js/mermaid-cli"

# Headless Chromium inside containers needs the sandbox disabled
PUPPETEER_CONFIG = {
    "args": ["--no-sandbox", "--disable-setuid-sandbox"],
    "headless": "new",
}


class Renderer(Protocol):
    """Turns a graph description into an image."""

    name: str

    def available(self) -> bool: ...

    def render(self, description: str) -> Result[Path, CkptError]: ...


@dataclass(frozen=True)
class RenderSettings:
    """Where to write and how to style the rendered diagram."""

    output: Path
    puppeteer_config: Path
    theme: str = "dark"
    background: str = "black"
    timeout: int = 120

    @classmethod
    def for_workspace(cls, paths: CkptPaths, config: CkptConfig) -> RenderSettings:
        return cls(
            output=paths.svg_file,
            puppeteer_config=paths.puppeteer_file,
            theme=config.render_theme,
            background=config.render_background,
            timeout=config.render_timeout,
        )


class MmdcRenderer(ABC):
    """Shared mmdc invocation; subclasses decide how mmdc is launched."""

    name = "mmdc"

    def __init__(self, settings: RenderSettings):
        self.settings = settings
        self._prefix: list[str] | None = None
        self._located = False

    @abstractmethod
    def locate(self) -> list[str] | None:
        """Find the command prefix that runs mmdc, or None if this strategy is unavailable."""

    def command(self) -> list[str] | None:
        """Command prefix, looked up once per renderer."""
        if not self._located:
            self._prefix = self.locate()
            self._located = True
        return self._prefix

    def available(self) -> bool:
        return self.command() is not None

    def arguments(self) -> list[str]:
        s = self.settings
        return [
            "-i", "-",
            "-o", str(s.output),
            "-t", s.theme,
            "--backgroundColor", s.background,
            "-p", str(s.puppeteer_config),
            "--quiet",
        ]

    def render(self, description: str) -> Result[Path, CkptError]:
        prefix = self.command()
        if prefix is None:
            return err(
                CkptError(
                    code=RENDERER_UNAVAILABLE,
                    message=f"Renderer {self.name} is not available",
                    context={"renderer": self.name},
                )
            )

        cfg_result = atomic_write_json(self.settings.puppeteer_config, PUPPETEER_CONFIG)
        if cfg_result.is_err():
            return cfg_result

        args = [*prefix, *self.arguments()]
        logger.debug(f"Running renderer {self.name}: {args}")
        try:
            # Security: shell=False (default), prefix comes from fixed discovery rules
            result = subprocess.run(
                args,  # noqa: S603
                input=description,
                capture_output=True,
                text=True,
                timeout=self.settings.timeout,
            )
        except subprocess.TimeoutExpired:
            return self._failed(f"{self.name} timed out after {self.settings.timeout}s")
        except OSError as e:
            return self._failed(f"Could not start {self.name}: {e}")

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip().splitlines()
            tail = detail[-1] if detail else f"exit code {result.returncode}"
            return self._failed(f"{self.name} failed: {tail}", returncode=result.returncode)

        if not self.settings.output.exists():
            return self._failed(f"{self.name} finished but {self.settings.output.name} was not created")

        logger.debug(f"Diagram rendered: {self.settings.output}")
        return ok(self.settings.output)

    def _failed(self, message: str, **context) -> Result[Path, CkptError]:
        logger.warning(message)
        return err(
            CkptError(
                code=RENDER_FAILED,
                message=message,
                context={"renderer": self.name, **context},
            )
        )


def _executable(name: str) -> str:
    return f"{name}.cmd" if os.name == "nt" else name


class LocalBinRenderer(MmdcRenderer):
    """mmdc installed in the workspace's node_modules."""

    name = "node_modules/.bin/mmdc"

    def __init__(self, settings: RenderSettings, workspace: Path):
        super().__init__(settings)
        self.workspace = Path(workspace)

    def locate(self) -> list[str] | None:
        local = self.workspace / "node_modules" / ".bin" / _executable("mmdc")
        return [str(local)] if local.exists() else None


class PathRenderer(MmdcRenderer):
    """mmdc found on PATH."""

    name = "mmdc"

    def locate(self) -> list[str] | None:
        found = shutil.which("mmdc")
        return [found] if found else None


class BunRenderer(MmdcRenderer):
    """mmdc run through bun's package runner."""

    name = "bun x mmdc"

    def locate(self) -> list[str] | None:
        bun = shutil.which("bun")
        return [bun, "x", "mmdc"] if bun else None


class NpxRenderer(MmdcRenderer):
    """Mermaid CLI fetched on demand through npx."""

    name = "npx mmdc"

    def locate(self) -> list[str] | None:
        npx = shutil.which("npx")
        return [npx, "-y", MERMAID_CLI_PACKAGE, "mmdc"] if npx else None


def candidate_renderers(root: Path, settings: RenderSettings) -> list[MmdcRenderer]:
    """All discovery strategies, in priority order."""
    return [
        LocalBinRenderer(settings, root),
        PathRenderer(settings),
        BunRenderer(settings),
        NpxRenderer(settings),
    ]


def discover_renderer(root: Path, settings: RenderSettings) -> Renderer | None:
    """First available renderer, or None."""
    for renderer in candidate_renderers(root, settings):
        if renderer.available():
            logger.debug(f"Using renderer: {renderer.name}")
            return renderer
    logger.debug("No Mermaid renderer found")
    return None


def render_store(store: SnapshotStore, renderer: Renderer | None = None) -> Result[Path, CkptError]:
    """Regenerate graph.mmd for ``store`` and render it to graph.svg.

    The description is written first, so it exists even when rendering fails.
    """
    loaded = store.load()
    if loaded.is_err():
        return loaded
    state = loaded.unwrap()

    written = write_description(state, store.paths.graph_file)
    if written.is_err():
        return written

    if renderer is None:
        settings = RenderSettings.for_workspace(store.paths, store.config)
        renderer = discover_renderer(store.root, settings)
    if renderer is None:
        return err(
            CkptError(
                code=RENDERER_UNAVAILABLE,
                message="Unable to find Mermaid CLI (mmdc).",
                context={},
            )
        )

    return renderer.render(describe(state))
