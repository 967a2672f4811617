"""Revert engine.

revert() moves the workspace to an earlier snapshot without ever losing
work: the on-disk state (which may have drifted from the active snapshot)
is captured first as a "safety" snapshot tagged ``REV:<target>``, then the
workspace is fully replaced with the target's files. The safety snapshot
and the new active pointer are persisted together in one atomic write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ckpt.errors import NO_PARENT, CkptError, Result, err, ok
from ckpt.models import make_snapshot
from ckpt.store import SnapshotStore, not_found
from ckpt.workspace import capture_workspace, restore_workspace

logger = logging.getLogger(__name__)

SAFETY_TAG_PREFIX = "REV:"


@dataclass(frozen=True)
class RevertResult:
    """Outcome of a revert."""

    safety_id: str
    target_id: str
    restored_files: int


def safety_tag(target_id: str) -> str:
    return f"{SAFETY_TAG_PREFIX}{target_id}"


def revert(store: SnapshotStore, target_id: str | None = None) -> Result[RevertResult, CkptError]:
    """Revert the workspace to ``target_id`` (default: parent of active).

    Steps, in order:
        1. Resolve the target; fail with no_parent / not_found before any
           destructive action.
        2. Capture the current workspace as a safety snapshot (in memory).
        3. Replace the workspace with the target's file set.
        4. Commit safety snapshot + active pointer in one write.

    If the workspace replace fails, the captured files are written back and
    the store is left untouched.

    Args:
        store: Store handle for the workspace
        target_id: Snapshot to restore; None means the active snapshot's parent

    Returns:
        Ok(RevertResult) with the safety snapshot id, or Err(CkptError)
    """
    loaded = store.load()
    if loaded.is_err():
        return loaded
    state = loaded.unwrap()
    current = state.active

    if target_id is None:
        if current.parent is None:
            return err(
                CkptError(
                    code=NO_PARENT,
                    message="Already at root, nothing to revert.",
                    context={"active": current.id},
                )
            )
        target_id = current.parent

    target = state.get(target_id)
    if target is None:
        return err(not_found(target_id))

    capture = capture_workspace(store.root, store.config)
    if capture.is_err():
        return capture
    on_disk = capture.unwrap()

    safety = make_snapshot(parent=state.active_id, files=on_disk, tag=safety_tag(target.id))
    new_state = state.append(safety).with_active(target.id)

    restored = restore_workspace(store.root, target.files)
    if restored.is_err():
        logger.error(f"Workspace replace failed, putting previous files back: {restored.unwrap_err().message}")
        rollback = restore_workspace(store.root, on_disk)
        if rollback.is_err():
            logger.error(f"Rollback of workspace failed: {rollback.unwrap_err().message}")
        return restored

    committed = store.commit(new_state)
    if committed.is_err():
        logger.error("Store write failed after replace, putting previous files back")
        rollback = restore_workspace(store.root, on_disk)
        if rollback.is_err():
            logger.error(f"Rollback of workspace failed: {rollback.unwrap_err().message}")
        return committed

    logger.info(f"Workspace reverted to {target.short_id} (previous state saved as {safety.short_id})")
    return ok(RevertResult(safety_id=safety.id, target_id=target.id, restored_files=restored.unwrap()))
