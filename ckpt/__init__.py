"""ckpt: local, full-copy checkpoints for a workspace directory."""

__version__ = "0.2.0"

from ckpt.errors import CkptError, Err, Ok, Result
from ckpt.models import FileEntry, Snapshot, StoreState
from ckpt.revert import RevertResult
from ckpt.store import InitResult, SnapshotStore

__all__ = [
    "__version__",
    "CkptError",
    "Err",
    "Ok",
    "Result",
    "FileEntry",
    "Snapshot",
    "StoreState",
    "SnapshotStore",
    "InitResult",
    "RevertResult",
]
