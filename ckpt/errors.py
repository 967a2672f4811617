"""Error and Result types for ckpt.

Core operations never raise for expected failures. They return a Result:
either Ok(value) or Err(CkptError). Callers branch on ``result.ok`` (or
``is_ok()`` / ``is_err()``) and unwrap.

Error codes
-----------
not_found             Unknown snapshot id
ambiguous_id          Id prefix matches more than one snapshot
no_parent             Revert requested at the root with no explicit target
not_initialized       Workspace has no .ckpt directory / store file
corrupt_store         Store file is unreadable or breaks a history invariant
io_error              Filesystem read/write/permission failure
render_failed         Diagram renderer ran and failed
renderer_unavailable  No diagram renderer could be located
serialization_failed  Data could not be serialized to JSON/YAML
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, NoReturn, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")

NOT_FOUND = "not_found"
AMBIGUOUS_ID = "ambiguous_id"
NO_PARENT = "no_parent"
NOT_INITIALIZED = "not_initialized"
CORRUPT_STORE = "corrupt_store"
IO_ERROR = "io_error"
RENDER_FAILED = "render_failed"
RENDERER_UNAVAILABLE = "renderer_unavailable"
SERIALIZATION_FAILED = "serialization_failed"


@dataclass(frozen=True)
class CkptError:
    """A failure reported by a core operation."""

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)


class UnwrapError(RuntimeError):
    """Raised when unwrapping the wrong side of a Result."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> NoReturn:
        raise UnwrapError(f"Called unwrap_err() on Ok: {self.value!r}")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result."""

    error: E

    @property
    def ok(self) -> bool:
        return False

    @property
    def value(self) -> None:
        return None

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise UnwrapError(f"Called unwrap() on Err: {self.error!r}")

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T], Err[E]]


def ok(value: T) -> Ok[T]:
    """Wrap a value in Ok."""
    return Ok(value)


def err(error: E) -> Err[E]:
    """Wrap an error in Err."""
    return Err(error)


def io_error(message: str, path: Any = None, exc: BaseException | None = None) -> Err[CkptError]:
    """Build an io_error Err with the offending path in its context."""
    context: dict[str, Any] = {}
    if path is not None:
        context["path"] = str(path)
    if exc is not None:
        context["error"] = str(exc)
    return Err(CkptError(code=IO_ERROR, message=message, context=context))


def format_error(error: CkptError | None) -> str:
    """Format an error for console display."""
    if error is None:
        return "Unknown error"
    text = f"{error.message}"
    if error.code == NOT_INITIALIZED:
        text += "\n  Run 'ckpt init' first."
    elif error.code == RENDERER_UNAVAILABLE:
        text += (
            "\n  Install the Mermaid CLI, e.g.:"
            "\n    npm i -D @mermaid-js/mermaid-cli   # local project"
            "\n    npm i -g @mermaid-js/mermaid-cli   # or global"
        )
    path = error.context.get("path")
    if path and path not in text:
        text += f"\n  path: {path}"
    return text
