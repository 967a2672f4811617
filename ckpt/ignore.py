"""Ignore-rule discovery and matching.

Rule files (``.gitignore`` by default) may live anywhere in the workspace.
Each file's patterns are scoped to the directory that holds it: a pattern in
``pkg/.gitignore`` is matched against paths relative to ``pkg/`` and never
applies outside that subtree. Rule sets from all discovered files are merged
into one IgnoreMatcher; a path is excluded if any rule set matches it.

Discovery is a full pre-pass over the tree (only the metadata directory is
skipped) and runs before the candidate-file walk in ckpt.workspace.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import pathspec

from ckpt.config import CKPT_DIR_NAME, CkptConfig
from ckpt.errors import CkptError, Result, io_error, ok

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopedRules:
    """Patterns from one rule file, anchored at that file's directory."""

    base: str  # Workspace-relative POSIX dir, "" for the root
    spec: pathspec.PathSpec
    source: str = ""  # Rule file path, for diagnostics

    def applies_to(self, rel_path: str) -> bool:
        return not self.base or rel_path.startswith(self.base + "/")

    def matches(self, rel_path: str) -> bool:
        if not self.applies_to(rel_path):
            return False
        local = rel_path[len(self.base) + 1 :] if self.base else rel_path
        if not local or local == "/":
            return False
        return self.spec.match_file(local)


class IgnoreMatcher:
    """Union of scoped rule sets covering the whole workspace."""

    def __init__(self, rules: list[ScopedRules] | None = None):
        self.rules: list[ScopedRules] = list(rules or [])

    def __len__(self) -> int:
        return len(self.rules)

    def matches(self, rel_path: str) -> bool:
        """True if the workspace-relative file path is excluded."""
        return any(r.matches(rel_path) for r in self.rules)

    def matches_dir(self, rel_dir: str) -> bool:
        """True if everything under the directory is excluded."""
        return self.matches(rel_dir.rstrip("/") + "/")


def raise_walk_error(error: OSError) -> None:
    """os.walk error hook: an unreadable directory aborts the walk."""
    raise error


def to_posix(path: Path | str) -> str:
    """Normalize a relative path to forward slashes."""
    posix = Path(path).as_posix()
    return "" if posix == "." else posix


def discover_rule_files(root: Path, rule_file_name: str = ".gitignore") -> list[Path]:
    """Find every rule file under ``root``, skipping only the metadata dir.

    Returns:
        Absolute paths, sorted by workspace-relative path

    Raises:
        OSError: a directory could not be listed
    """
    root = Path(root)
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=raise_walk_error):
        if Path(dirpath) == root:
            dirnames[:] = [d for d in dirnames if d != CKPT_DIR_NAME]
        if rule_file_name in filenames:
            candidate = Path(dirpath) / rule_file_name
            if candidate.is_file():
                found.append(candidate)
    found.sort(key=lambda p: to_posix(p.relative_to(root)))
    return found


def load_rule_file(root: Path, rule_file: Path) -> Result[ScopedRules, CkptError]:
    """Parse one rule file into a ScopedRules anchored at its directory."""
    try:
        lines = rule_file.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        logger.error(f"Failed to read ignore file {rule_file}: {e}")
        return io_error(f"Failed to read ignore file {rule_file}: {e}", path=rule_file, exc=e)

    base = to_posix(rule_file.parent.relative_to(root))
    spec = pathspec.GitIgnoreSpec.from_lines(lines)
    return ok(ScopedRules(base=base, spec=spec, source=to_posix(rule_file.relative_to(root))))


def resolve_ignore(root: Path, config: CkptConfig | None = None) -> Result[IgnoreMatcher, CkptError]:
    """Discover and compose all ignore rules for a workspace.

    Args:
        root: Workspace root
        config: Supplies the rule file name and extra root-level patterns

    Returns:
        Ok(IgnoreMatcher), or Err(io_error) if a directory or rule file is unreadable
    """
    config = config or CkptConfig()
    root = Path(root)
    rules: list[ScopedRules] = []

    if config.extra_ignore:
        rules.append(
            ScopedRules(
                base="",
                spec=pathspec.GitIgnoreSpec.from_lines(config.extra_ignore),
                source="config:extra_ignore",
            )
        )

    try:
        rule_files = discover_rule_files(root, config.ignore_file)
    except OSError as e:
        logger.error(f"Failed to scan {root} for ignore files: {e}")
        return io_error(f"Failed to scan {root} for ignore files: {e}", path=e.filename or root, exc=e)

    for rule_file in rule_files:
        result = load_rule_file(root, rule_file)
        if result.is_err():
            return result
        rules.append(result.unwrap())

    logger.debug(f"Loaded {len(rules)} ignore rule set(s) under {root}")
    return ok(IgnoreMatcher(rules))
