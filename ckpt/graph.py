"""Mermaid description of the snapshot graph.

The description is a plain-text ``graph TD`` document: one node per
snapshot (short id, local timestamp, tag) followed by one edge per
parent -> child link. It is written to .ckpt/graph.mmd after every
mutating store operation, before any renderer is invoked, so the history
picture survives a failed or missing renderer.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable

from ckpt.atomic import atomic_write_text
from ckpt.config import ROOT_ID
from ckpt.errors import CkptError, Result
from ckpt.models import Snapshot, StoreState

logger = logging.getLogger(__name__)

ACTIVE_CLASS = "active"
_UNSAFE = re.compile(r"[^a-zA-Z0-9_]")


def node_id(snapshot_id: str) -> str:
    """Mermaid-safe node identifier for a snapshot id."""
    return _UNSAFE.sub("_", snapshot_id)


def _escape_label(text: str) -> str:
    return text.replace('"', "#quot;")


def _format_ts(ts: datetime) -> str:
    return ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def node_label(snapshot: Snapshot) -> str:
    parts = [
        ROOT_ID if snapshot.is_root else snapshot.id[:6],
        _format_ts(snapshot.timestamp),
        snapshot.tag or "",
    ]
    return "<br/>".join(_escape_label(p) for p in parts if p)


def to_mermaid(snapshots: Iterable[Snapshot], active_id: str | None = None) -> str:
    """Build the Mermaid description.

    Args:
        snapshots: Snapshots in creation order
        active_id: Snapshot to highlight, if any

    Returns:
        Mermaid source text (no trailing newline)
    """
    snapshots = list(snapshots)
    lines = ["graph TD"]
    for s in snapshots:
        lines.append(f'{node_id(s.id)}["{node_label(s)}"]')
    for s in snapshots:
        if s.parent:
            lines.append(f"{node_id(s.parent)} --> {node_id(s.id)}")
    if active_id is not None and any(s.id == active_id for s in snapshots):
        lines.append(f"classDef {ACTIVE_CLASS} stroke:#f5a623,stroke-width:3px")
        lines.append(f"class {node_id(active_id)} {ACTIVE_CLASS}")
    return "\n".join(lines)


def describe(state: StoreState) -> str:
    """Description of a whole store state, active snapshot highlighted."""
    return to_mermaid(state.in_order(), state.active_id)


def write_description(state: StoreState, path: Path) -> Result[Path, CkptError]:
    """Atomically (re)write the description file."""
    result = atomic_write_text(path, describe(state))
    if result.is_ok():
        logger.debug(f"Graph description updated: {path}")
    return result
