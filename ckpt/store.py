"""Snapshot store for ckpt.

One JSON document (.ckpt/db.json) holds the whole history:

    {"snapshots": [{id, ts, parent, tag?, files: [...]}, ...],
     "config": {"activeId": "..."}}

SnapshotStore is the explicit handle passed to every core operation. It
caches nothing between calls: every mutating operation is one
read-modify-write cycle (load the document, build a new StoreState, write
the whole document once via temp file + rename). If any step fails the file
on disk is exactly what it was before the call.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ckpt.atomic import atomic_write_json
from ckpt.config import CKPT_DIR_NAME, CkptConfig, CkptPaths
from ckpt.errors import (
    AMBIGUOUS_ID,
    CORRUPT_STORE,
    NOT_FOUND,
    NOT_INITIALIZED,
    CkptError,
    Result,
    err,
    io_error,
    ok,
)
from ckpt.graph import write_description
from ckpt.models import Snapshot, StoreIntegrityError, StoreState, make_root, make_snapshot
from ckpt.workspace import capture_workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitResult:
    """Outcome of init(). created=False means the workspace was already initialized."""

    created: bool
    root: Snapshot | None = None
    gitignore_updated: bool = False


def not_found(snapshot_id: str) -> CkptError:
    return CkptError(
        code=NOT_FOUND,
        message=f"Snapshot {snapshot_id} not found",
        context={"id": snapshot_id},
    )


class SnapshotStore:
    """Handle to one workspace's snapshot history."""

    def __init__(self, root: Path, config: CkptConfig | None = None):
        """Create a store handle.

        Args:
            root: Workspace root (the directory holding .ckpt/)
            config: Settings; loaded from .ckpt/config.yaml when omitted
        """
        self.root = Path(root)
        self.paths = CkptPaths(self.root)
        self._config = config

    @property
    def config(self) -> CkptConfig:
        if self._config is None:
            self._config = CkptConfig.load(self.paths.ckpt_dir)
        return self._config

    def is_initialized(self) -> bool:
        return self.paths.ckpt_dir.exists()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> Result[StoreState, CkptError]:
        """Read and validate the persisted store."""
        db_file = self.paths.db_file
        if not db_file.exists():
            return err(
                CkptError(
                    code=NOT_INITIALIZED,
                    message=f"No checkpoint store in {self.root}",
                    context={"path": str(db_file)},
                )
            )

        try:
            with open(db_file, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            return err(
                CkptError(
                    code=CORRUPT_STORE,
                    message=f"Store file is not valid JSON: {e}",
                    context={"path": str(db_file)},
                )
            )
        except OSError as e:
            logger.error(f"Failed to read store {db_file}: {e}")
            return io_error(f"Failed to read store: {e}", path=db_file, exc=e)

        try:
            return ok(StoreState.from_dict(data))
        except StoreIntegrityError as e:
            return err(
                CkptError(
                    code=CORRUPT_STORE,
                    message=f"Store is corrupt: {e}",
                    context={"path": str(db_file)},
                )
            )

    def commit(self, state: StoreState) -> Result[StoreState, CkptError]:
        """Persist ``state`` in a single atomic write.

        The graph description is regenerated afterwards; a failure there is
        logged and does not affect the committed history.
        """
        result = atomic_write_json(self.paths.db_file, state.to_dict())
        if result.is_err():
            return result

        desc_result = write_description(state, self.paths.graph_file)
        if desc_result.is_err():
            logger.warning(f"Graph description not updated: {desc_result.unwrap_err().message}")

        return ok(state)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def init(self, register_gitignore: bool = False) -> Result[InitResult, CkptError]:
        """Create the metadata directory and the root snapshot "$".

        Idempotent: if .ckpt already exists nothing is touched and
        Ok(InitResult(created=False)) is returned.

        Args:
            register_gitignore: Append .ckpt to the workspace .gitignore
                once the root snapshot is recorded
        """
        if self.is_initialized():
            logger.info(f"{self.paths.ckpt_dir} already exists, nothing to do")
            return ok(InitResult(created=False))

        capture = capture_workspace(self.root, self.config)
        if capture.is_err():
            return capture

        root = make_root(capture.unwrap())
        try:
            self.paths.ckpt_dir.mkdir(parents=True)
        except OSError as e:
            return io_error(f"Failed to create {self.paths.ckpt_dir}: {e}", path=self.paths.ckpt_dir, exc=e)

        result = self.commit(StoreState.initial(root))
        if result.is_err():
            shutil.rmtree(self.paths.ckpt_dir, ignore_errors=True)
            return result

        gitignore_updated = False
        if register_gitignore:
            gitignore_updated = self._register_gitignore()

        logger.info(f"Initialized store with root snapshot ({len(root.files)} files)")
        return ok(InitResult(created=True, root=root, gitignore_updated=gitignore_updated))

    def create(self, tag: str | None = None) -> Result[Snapshot, CkptError]:
        """Capture the workspace as a new child of the active snapshot.

        The new snapshot becomes active.
        """
        loaded = self.load()
        if loaded.is_err():
            return loaded
        state = loaded.unwrap()

        capture = capture_workspace(self.root, self.config)
        if capture.is_err():
            return capture

        snapshot = make_snapshot(parent=state.active_id, files=capture.unwrap(), tag=tag or None)
        result = self.commit(state.append(snapshot).with_active(snapshot.id))
        if result.is_err():
            return result

        logger.info(f"Snapshot {snapshot.short_id} created (parent {snapshot.parent})")
        return ok(snapshot)

    def get(self, snapshot_id: str) -> Result[Snapshot, CkptError]:
        loaded = self.load()
        if loaded.is_err():
            return loaded
        snapshot = loaded.unwrap().get(snapshot_id)
        if snapshot is None:
            return err(not_found(snapshot_id))
        return ok(snapshot)

    def set_active(self, snapshot_id: str) -> Result[StoreState, CkptError]:
        """Point the store at an existing snapshot without touching files."""
        loaded = self.load()
        if loaded.is_err():
            return loaded
        state = loaded.unwrap()
        if snapshot_id not in state:
            return err(not_found(snapshot_id))
        return self.commit(state.with_active(snapshot_id))

    def list(self) -> Result[tuple[Snapshot, ...], CkptError]:
        """All snapshots in creation order."""
        loaded = self.load()
        if loaded.is_err():
            return loaded
        return ok(loaded.unwrap().in_order())

    def resolve(self, ref: str) -> Result[Snapshot, CkptError]:
        """Find a snapshot by exact id or unique id prefix."""
        loaded = self.load()
        if loaded.is_err():
            return loaded
        return resolve_ref(loaded.unwrap(), ref)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _register_gitignore(self) -> bool:
        """Make sure the workspace .gitignore lists the metadata directory."""
        gitignore = self.root / ".gitignore"
        try:
            if not gitignore.exists():
                gitignore.write_text(f"{CKPT_DIR_NAME}\n", encoding="utf-8")
                return True
            text = gitignore.read_text(encoding="utf-8")
            if CKPT_DIR_NAME in text.splitlines():
                return False
            with open(gitignore, "a", encoding="utf-8") as f:
                f.write(f"\n{CKPT_DIR_NAME}\n")
            return True
        except OSError as e:
            logger.warning(f"Could not update {gitignore}: {e}")
            return False


def resolve_ref(state: StoreState, ref: str) -> Result[Snapshot, CkptError]:
    """Exact id first, then a unique prefix."""
    exact = state.get(ref)
    if exact is not None:
        return ok(exact)

    matches = [s for s in state.in_order() if ref and s.id.startswith(ref)]
    if len(matches) == 1:
        return ok(matches[0])
    if len(matches) > 1:
        return err(
            CkptError(
                code=AMBIGUOUS_ID,
                message=f"Id prefix {ref!r} matches {len(matches)} snapshots",
                context={"id": ref, "matches": [s.id for s in matches]},
            )
        )
    return err(not_found(ref))
