"""Store protocol and the result type shared by every storage layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Protocol, runtime_checkable

from marcalink.entities import is_valid_project_id


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONNECTION = "connection"
    PROTOCOL = "protocol"
    BACKEND = "backend"


@dataclass
class Result:
    """Outcome of a storage operation: ``ok`` with data/message, or ``error``."""

    status: Literal["ok", "error"]
    data: Any = None
    message: str | None = None
    kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def success(cls, data: Any = None, message: str | None = None) -> Result:
        return cls(status="ok", data=data, message=message)

    @classmethod
    def failure(cls, message: str, kind: ErrorKind = ErrorKind.BACKEND) -> Result:
        return cls(status="error", message=message, kind=kind)

    def to_payload(self) -> dict[str, Any]:
        """Success payload for the wire: ``{data?, message?}``."""
        payload: dict[str, Any] = {"data": self.data}
        if self.message is not None:
            payload["message"] = self.message
        return payload


def validate_project_id(value: Any) -> Result:
    """Check presence, trim, reject empty, enforce the id character class.

    On success ``data`` holds the trimmed id.
    """
    if value is None or value == "":
        return Result.failure(
            "Missing project ID. Please provide an ID with variable 'projectID'.",
            kind=ErrorKind.VALIDATION,
        )
    if not isinstance(value, str):
        return Result.failure("Project ID must be a string.", kind=ErrorKind.VALIDATION)
    trimmed = value.strip()
    if not trimmed:
        return Result.failure("Project ID cannot be empty.", kind=ErrorKind.VALIDATION)
    if not is_valid_project_id(trimmed):
        return Result.failure(
            "Invalid project ID. Use only letters, numbers, dots, underscores, and hyphens.",
            kind=ErrorKind.VALIDATION,
        )
    return Result.success(trimmed)


def has_identifier(record: Any) -> bool:
    """True when an entity or mapping carries a usable ``id`` (0 counts)."""
    ident = record.get("id") if isinstance(record, dict) else getattr(record, "id", None)
    if isinstance(ident, str):
        return bool(ident.strip())
    return ident is not None and ident is not False


@runtime_checkable
class Store(Protocol):
    """Protocol both persistence backends implement."""

    @property
    def name(self) -> str: ...

    @property
    def is_active(self) -> bool: ...

    async def get(self, keys: list[str] | str | None = None) -> Result: ...

    async def set(self, items: dict[str, Any]) -> Result: ...

    async def save_project(self, project: Any) -> Result: ...

    async def load_project(self, project_id: str) -> Result: ...

    async def delete_project(self, project_id: str) -> Result: ...

    async def archive_project(self, project_id: str) -> Result: ...

    async def list_projects(self) -> Result: ...

    async def open_project(self, project_id: str) -> Result: ...

    async def get_active_project(self) -> Result: ...

    async def save_paper(self, paper: Any) -> Result: ...

    async def load_paper(self, paper_id: str) -> Result: ...

    async def delete_paper(self, paper_id: str) -> Result: ...

    async def list_papers(self) -> Result: ...
