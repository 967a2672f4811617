"""Atomic file writes for ckpt.

Every persisted artifact under .ckpt/ (db.json, graph.mmd, config.yaml) is
written with the temp file + rename pattern, which is atomic on POSIX and on
Windows via os.replace. A crash mid-write leaves either the old file or the
new one, never a truncated mix.

All functions return Result types for explicit error handling.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from ckpt.errors import SERIALIZATION_FAILED, CkptError, Err, Ok, Result, io_error

logger = logging.getLogger(__name__)


def atomic_write_bytes(
    path: Path,
    data: bytes,
    mode: int = 0o644,
) -> Result[Path, CkptError]:
    """Atomically write bytes to a file.

    The temp file is created next to the target (same filesystem, required for
    an atomic rename), flushed and fsynced, then moved over the target.

    Args:
        path: Target file path
        data: Bytes to write
        mode: File permissions applied before the rename

    Returns:
        Ok(path) on success, Err(CkptError) on failure
    """
    path = Path(path)
    temp_path: str | None = None

    try:
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.stem}_",
            suffix=f"{path.suffix}.tmp",
        )
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
        temp_path = None

        logger.debug(f"Atomic write complete: {path}")
        return Ok(path)

    except PermissionError as e:
        logger.error(f"Permission denied writing {path}: {e}")
        return io_error(f"Permission denied writing to {path}", path=path, exc=e)

    except OSError as e:
        logger.error(f"OS error writing {path}: {e}")
        return io_error(f"Failed to write {path}: {e}", path=path, exc=e)

    finally:
        _cleanup_temp(temp_path)


def atomic_write_text(
    path: Path,
    content: str,
    mode: int = 0o644,
) -> Result[Path, CkptError]:
    """Atomically write UTF-8 text to a file."""
    return atomic_write_bytes(path, content.encode("utf-8"), mode)


def atomic_write_json(
    path: Path,
    data: Any,
    mode: int = 0o644,
    indent: int | None = 2,
) -> Result[Path, CkptError]:
    """Atomically write JSON data to a file.

    Args:
        path: Target file path
        data: Data to serialize as JSON
        mode: File permissions
        indent: JSON indentation (None for compact)

    Returns:
        Ok(path) on success, Err(CkptError) on failure
    """
    try:
        content = json.dumps(data, indent=indent, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error(f"JSON serialization failed: {e}")
        return Err(
            CkptError(
                code=SERIALIZATION_FAILED,
                message=f"Failed to serialize data to JSON: {e}",
                context={"path": str(path), "error": str(e)},
            )
        )

    return atomic_write_text(path, content + "\n", mode)


def atomic_write_yaml(
    path: Path,
    data: Any,
    mode: int = 0o644,
) -> Result[Path, CkptError]:
    """Atomically write YAML data to a file.

    Uses yaml.safe_dump so only plain data types are accepted.
    """
    try:
        content = yaml.safe_dump(
            data,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
    except yaml.YAMLError as e:
        logger.error(f"YAML serialization failed: {e}")
        return Err(
            CkptError(
                code=SERIALIZATION_FAILED,
                message=f"Failed to serialize data to YAML: {e}",
                context={"path": str(path), "error": str(e)},
            )
        )

    return atomic_write_text(path, content, mode)


def _cleanup_temp(temp_path: str | None) -> None:
    """Remove a leftover temp file, ignoring errors."""
    if temp_path is None:
        return

    try:
        os.unlink(temp_path)
        logger.debug(f"Cleaned up temp file: {temp_path}")
    except OSError:
        pass
