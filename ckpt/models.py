"""Snapshot data model.

A workspace history is a forest of immutable Snapshots rooted at "$". The
StoreState record holds them in an arena: a mapping keyed by id for lookup
and a separate append-ordered tuple of ids for display. StoreState is never
mutated in place; append() and with_active() return new records, so a
failed write can never leave a half-updated state in memory.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from ckpt.config import ROOT_ID, ROOT_TAG

# 24 random bytes -> 32 URL-safe characters
_ID_BYTES = 24


class StoreIntegrityError(ValueError):
    """A store document breaks a history invariant."""


def generate_snapshot_id() -> str:
    """Generate a random, URL-safe 32-character snapshot id."""
    while True:
        snapshot_id = secrets.token_urlsafe(_ID_BYTES)
        if snapshot_id != ROOT_ID:
            return snapshot_id


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class FileEntry:
    """One captured file: workspace-relative POSIX path and raw content."""

    path: str
    content: bytes

    @property
    def text(self) -> str | None:
        """Content decoded as UTF-8, or None for binary files."""
        try:
            return self.content.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize; binary content is base64 encoded and flagged."""
        text = self.text
        if text is not None:
            return {"path": self.path, "content": text}
        return {
            "path": self.path,
            "content": base64.b64encode(self.content).decode("ascii"),
            "encoding": "base64",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileEntry:
        content = data.get("content", "")
        if data.get("encoding") == "base64":
            try:
                raw = base64.b64decode(content, validate=True)
            except (binascii.Error, ValueError) as e:
                raise StoreIntegrityError(f"Invalid base64 content for {data.get('path')}: {e}")
        else:
            raw = content.encode("utf-8")
        return cls(path=data["path"], content=raw)


def normalize_files(entries: Iterable[FileEntry]) -> tuple[FileEntry, ...]:
    """Sort a file set by path and reject duplicate paths."""
    ordered = tuple(sorted(entries, key=lambda e: e.path))
    for prev, cur in zip(ordered, ordered[1:]):
        if prev.path == cur.path:
            raise StoreIntegrityError(f"Duplicate path in file set: {cur.path}")
    return ordered


def files_as_mapping(entries: Iterable[FileEntry]) -> dict[str, bytes]:
    """Order-independent view of a file set."""
    return {e.path: e.content for e in entries}


def files_equal(a: Iterable[FileEntry], b: Iterable[FileEntry]) -> bool:
    """True if both file sets hold the same paths with the same content."""
    return files_as_mapping(a) == files_as_mapping(b)


@dataclass(frozen=True)
class Snapshot:
    """An immutable, full-copy record of the workspace at one point in time."""

    id: str
    timestamp: datetime
    parent: str | None
    files: tuple[FileEntry, ...] = ()
    tag: str | None = None

    @property
    def is_root(self) -> bool:
        return self.id == ROOT_ID

    @property
    def short_id(self) -> str:
        """Display form: "$" for the root, first 8 characters otherwise."""
        return self.id if self.is_root else self.id[:8]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "ts": self.timestamp.isoformat(),
            "parent": self.parent,
        }
        if self.tag is not None:
            data["tag"] = self.tag
        data["files"] = [f.to_dict() for f in self.files]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        return cls(
            id=data["id"],
            timestamp=_parse_timestamp(data.get("ts")),
            parent=data.get("parent"),
            tag=data.get("tag"),
            files=normalize_files(FileEntry.from_dict(f) for f in data.get("files", [])),
        )


def make_root(files: Iterable[FileEntry], timestamp: datetime | None = None) -> Snapshot:
    """Build the single root snapshot."""
    return Snapshot(
        id=ROOT_ID,
        timestamp=timestamp or utc_now(),
        parent=None,
        tag=ROOT_TAG,
        files=normalize_files(files),
    )


def make_snapshot(
    parent: str,
    files: Iterable[FileEntry],
    tag: str | None = None,
    timestamp: datetime | None = None,
) -> Snapshot:
    """Build a non-root snapshot with a fresh id."""
    return Snapshot(
        id=generate_snapshot_id(),
        timestamp=timestamp or utc_now(),
        parent=parent,
        tag=tag,
        files=normalize_files(files),
    )


def _parse_timestamp(value: Any) -> datetime:
    # Older stores wrote epoch milliseconds
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise StoreIntegrityError(f"Invalid timestamp: {value!r}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
    raise StoreIntegrityError(f"Invalid timestamp: {value!r}")


@dataclass(frozen=True)
class StoreState:
    """Snapshots plus the active pointer, as one immutable record."""

    snapshots: Mapping[str, Snapshot] = field(default_factory=dict)
    order: tuple[str, ...] = ()
    active_id: str = ROOT_ID

    @classmethod
    def initial(cls, root: Snapshot) -> StoreState:
        return cls(snapshots=MappingProxyType({root.id: root}), order=(root.id,), active_id=root.id)

    @property
    def active(self) -> Snapshot:
        return self.snapshots[self.active_id]

    def get(self, snapshot_id: str) -> Snapshot | None:
        return self.snapshots.get(snapshot_id)

    def __contains__(self, snapshot_id: object) -> bool:
        return snapshot_id in self.snapshots

    def __len__(self) -> int:
        return len(self.order)

    def in_order(self) -> tuple[Snapshot, ...]:
        """All snapshots in creation order."""
        return tuple(self.snapshots[i] for i in self.order)

    def append(self, snapshot: Snapshot) -> StoreState:
        """Return a new state with ``snapshot`` appended (active unchanged)."""
        if snapshot.id in self.snapshots:
            raise StoreIntegrityError(f"Duplicate snapshot id: {snapshot.id}")
        if snapshot.parent is None or snapshot.parent not in self.snapshots:
            raise StoreIntegrityError(
                f"Snapshot {snapshot.id} references unknown parent {snapshot.parent!r}"
            )
        snapshots = dict(self.snapshots)
        snapshots[snapshot.id] = snapshot
        return StoreState(
            snapshots=MappingProxyType(snapshots),
            order=self.order + (snapshot.id,),
            active_id=self.active_id,
        )

    def with_active(self, snapshot_id: str) -> StoreState:
        """Return a new state pointing at ``snapshot_id``."""
        if snapshot_id not in self.snapshots:
            raise KeyError(snapshot_id)
        return StoreState(snapshots=self.snapshots, order=self.order, active_id=snapshot_id)

    def ancestry(self, snapshot_id: str) -> list[str]:
        """Ids from ``snapshot_id`` up to and including the root."""
        chain = []
        current: str | None = snapshot_id
        while current is not None:
            chain.append(current)
            current = self.snapshots[current].parent
        return chain

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted document shape."""
        return {
            "snapshots": [s.to_dict() for s in self.in_order()],
            "config": {"activeId": self.active_id},
        }

    @classmethod
    def from_dict(cls, data: Any) -> StoreState:
        """Deserialize and validate a persisted document.

        Raises:
            StoreIntegrityError: the document breaks a history invariant
        """
        if not isinstance(data, dict):
            raise StoreIntegrityError("Store document must be an object")
        raw_snapshots = data.get("snapshots")
        if not isinstance(raw_snapshots, list) or not raw_snapshots:
            raise StoreIntegrityError("Store has no snapshots")

        try:
            parsed = [Snapshot.from_dict(s) for s in raw_snapshots]
        except (KeyError, TypeError, AttributeError) as e:
            raise StoreIntegrityError(f"Malformed snapshot record: {e}") from e

        root = parsed[0]
        if root.id != ROOT_ID or root.parent is not None:
            raise StoreIntegrityError('First snapshot must be the root "$" with no parent')

        state = cls.initial(root)
        for snapshot in parsed[1:]:
            if snapshot.id == ROOT_ID:
                raise StoreIntegrityError('Root id "$" appears more than once')
            # append() rejects duplicates and parents not created earlier
            state = state.append(snapshot)

        config = data.get("config") or {}
        active_id = config.get("activeId", ROOT_ID) if isinstance(config, dict) else ROOT_ID
        if active_id not in state:
            raise StoreIntegrityError(f"Active snapshot {active_id!r} does not exist")
        return state.with_active(active_id)
