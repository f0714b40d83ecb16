"""Wire envelopes - message types + parse/format (no I/O).

Client -> Server: {"act": str, "id": str, "payload": {...}}
Server -> Client: {"act": str, "id": str | null, "status": "ok" | "error",
                   "payload"?: {...}, "message"?: str, "kind"?: str}

``id`` is a per-request correlation id echoed back verbatim, so replies
cannot be misattributed even if the transport reorders them.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from marcalink.storage.base import ErrorKind, Result

# ── Action catalog ────────────────────────────────────────────

OPEN_PROJECT = "open_project"
GET_ACTIVE_PROJECT = "get_active_project"
SAVE_PROJECT = "save_project"
LOAD_PROJECT = "load_project"
LIST_PROJECTS = "list_projects"
DELETE_PROJECT = "delete_project"
ARCHIVE_PROJECT = "archive_project"
SAVE_PAPER = "save_paper"
LOAD_PAPER = "load_paper"
DELETE_PAPER = "delete_paper"
LIST_PAPERS = "list_papers"
STORAGE_GET = "storage_get"
STORAGE_SET = "storage_set"

CONNECTED = "connected"
ERROR_ACT = "error"


class ProtocolError(ValueError):
    """Inbound text is not a well-formed envelope."""

    def __init__(self, message: str, request_id: str | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id


@dataclass
class Request:
    act: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass
class Reply:
    act: str
    status: str
    id: str | None = None
    payload: dict[str, Any] | None = None
    message: str | None = None
    kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def from_result(cls, act: str, request_id: str | None, result: Result) -> Reply:
        if result.ok:
            return cls(act=act, status="ok", id=request_id, payload=result.to_payload())
        kind = result.kind.value if result.kind else None
        return cls(act=act, status="error", id=request_id, message=result.message, kind=kind)

    def to_result(self) -> Result:
        """Unwrap a reply into the caller-facing result."""
        if self.ok:
            payload = self.payload or {}
            return Result.success(payload.get("data"), payload.get("message"))
        try:
            kind = ErrorKind(self.kind) if self.kind else ErrorKind.BACKEND
        except ValueError:
            kind = ErrorKind.BACKEND
        return Result.failure(self.message or "Request failed.", kind=kind)


def new_request_id() -> str:
    return uuid.uuid4().hex


# ── Parsing ───────────────────────────────────────────────────


def _load_object(text: str | bytes) -> dict[str, Any]:
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        raise ProtocolError("Invalid JSON") from None
    if not isinstance(data, dict):
        raise ProtocolError("Envelope must be a JSON object")
    return data


def parse_request(text: str | bytes) -> Request:
    """Parse an inbound client message. Raises ProtocolError when malformed."""
    data = _load_object(text)
    request_id = data.get("id")
    if request_id is not None and not isinstance(request_id, str):
        request_id = str(request_id)

    act = data.get("act")
    if not act or not isinstance(act, str):
        raise ProtocolError("Missing act attribute", request_id)

    payload = data.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ProtocolError("Payload must be a JSON object", request_id)

    return Request(act=act, payload=payload, id=request_id)


def parse_reply(text: str | bytes) -> Reply:
    """Parse a server reply. Raises ProtocolError when malformed."""
    data = _load_object(text)
    status = data.get("status")
    if status not in ("ok", "error"):
        raise ProtocolError(f"Invalid reply status: {status!r}")
    payload = data.get("payload")
    return Reply(
        act=data.get("act") or "",
        status=status,
        id=data.get("id"),
        payload=payload if isinstance(payload, dict) else None,
        message=data.get("message"),
        kind=data.get("kind"),
    )


# ── Formatting ────────────────────────────────────────────────


def format_request(request: Request) -> str:
    return json.dumps(
        {"act": request.act, "id": request.id, "payload": request.payload},
        ensure_ascii=False,
    )


def format_reply(reply: Reply) -> str:
    data: dict[str, Any] = {"act": reply.act, "id": reply.id, "status": reply.status}
    if reply.payload is not None:
        data["payload"] = reply.payload
    if reply.message is not None:
        data["message"] = reply.message
    if reply.kind is not None:
        data["kind"] = reply.kind
    return json.dumps(data, ensure_ascii=False)
