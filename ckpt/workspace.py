"""Workspace capture and restore.

capture_workspace() walks the workspace, applies the composed ignore rules
and reads every surviving regular file. Reads run on a thread pool; results
are sorted by path so two captures of an unchanged tree compare equal no
matter which read finished first.

restore_workspace() is a full replace: every top-level entry except the
metadata directory is removed, then the file set is written out.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import Iterable

from ckpt.config import CKPT_DIR_NAME, CkptConfig
from ckpt.errors import CkptError, Result, io_error, ok
from ckpt.ignore import IgnoreMatcher, raise_walk_error, resolve_ignore, to_posix
from ckpt.models import FileEntry, normalize_files

logger = logging.getLogger(__name__)


def iter_candidate_files(root: Path, matcher: IgnoreMatcher) -> Iterable[str]:
    """Yield workspace-relative POSIX paths of regular, non-ignored files.

    Symlinks (to files or directories) are never followed or yielded.

    Raises:
        OSError: a directory could not be listed or a listed file vanished
    """
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root, onerror=raise_walk_error, followlinks=False):
        current = Path(dirpath)
        rel_dir = to_posix(current.relative_to(root))

        kept_dirs = []
        for d in dirnames:
            rel = f"{rel_dir}/{d}" if rel_dir else d
            if not rel_dir and d == CKPT_DIR_NAME:
                continue
            if matcher.matches_dir(rel):
                continue
            kept_dirs.append(d)
        dirnames[:] = kept_dirs

        for name in filenames:
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if matcher.matches(rel):
                continue
            mode = os.lstat(current / name).st_mode
            if stat.S_ISREG(mode):
                yield rel


def _read_entry(root: Path, rel_path: str) -> FileEntry:
    return FileEntry(path=rel_path, content=(root / rel_path).read_bytes())


def capture_workspace(
    root: Path,
    config: CkptConfig | None = None,
    matcher: IgnoreMatcher | None = None,
) -> Result[tuple[FileEntry, ...], CkptError]:
    """Capture the current file set of a workspace.

    Args:
        root: Workspace root
        config: Capture settings (ignore file name, extra patterns, workers)
        matcher: Pre-built matcher; resolved from the workspace if omitted

    Returns:
        Ok(file entries sorted by path), or Err(io_error) if any file or
        ignore rule could not be read. Partial captures are never returned.
    """
    config = config or CkptConfig()
    root = Path(root)

    if matcher is None:
        matcher_result = resolve_ignore(root, config)
        if matcher_result.is_err():
            return matcher_result
        matcher = matcher_result.unwrap()

    try:
        candidates = list(iter_candidate_files(root, matcher))
    except OSError as e:
        logger.error(f"Failed to walk workspace {root}: {e}")
        return io_error(f"Failed to walk workspace {root}: {e}", path=e.filename or root, exc=e)

    workers = max(1, int(config.read_workers))
    entries: list[FileEntry] = []
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {path: pool.submit(_read_entry, root, path) for path in candidates}
        for path, future in futures.items():
            try:
                entries.append(future.result())
            except OSError as e:
                logger.error(f"Failed to read {path}: {e}")
                for pending in futures.values():
                    pending.cancel()
                return io_error(f"Failed to read {path}: {e}", path=path, exc=e)

    files = normalize_files(entries)
    logger.debug(f"Captured {len(files)} file(s) from {root}")
    return ok(files)


def _safe_target(root: Path, rel_path: str) -> Path:
    """Resolve a stored path under ``root``, rejecting escapes."""
    parts = PurePosixPath(rel_path).parts
    if not parts or PurePosixPath(rel_path).is_absolute() or ".." in parts:
        raise ValueError(f"Refusing to restore path outside workspace: {rel_path!r}")
    if parts[0] == CKPT_DIR_NAME:
        raise ValueError(f"Refusing to restore into metadata directory: {rel_path!r}")
    return root.joinpath(*parts)


def clear_workspace(root: Path) -> None:
    """Remove every top-level entry except the metadata directory.

    Raises:
        OSError: an entry could not be removed
    """
    for entry in Path(root).iterdir():
        if entry.name == CKPT_DIR_NAME:
            continue
        if entry.is_symlink() or not entry.is_dir():
            entry.unlink()
        else:
            shutil.rmtree(entry)


def restore_workspace(root: Path, files: Iterable[FileEntry]) -> Result[int, CkptError]:
    """Replace the workspace contents with ``files``.

    Files absent from ``files`` are deleted; files present are written
    regardless of their current content. Intermediate directories are created
    as needed.

    Returns:
        Ok(number of files written), or Err(io_error)
    """
    root = Path(root)
    files = tuple(files)

    try:
        targets = [(_safe_target(root, f.path), f) for f in files]
    except ValueError as e:
        return io_error(str(e), exc=e)

    try:
        clear_workspace(root)
        for target, entry in targets:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(entry.content)
    except OSError as e:
        logger.error(f"Failed to restore workspace {root}: {e}")
        return io_error(f"Failed to restore workspace: {e}", path=getattr(e, "filename", None) or root, exc=e)

    logger.debug(f"Restored {len(targets)} file(s) into {root}")
    return ok(len(targets))
