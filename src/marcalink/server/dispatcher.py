"""Action dispatcher - routes inbound envelopes to store handlers.

Every inbound message produces exactly one reply:
- malformed envelope / missing act      -> status=error (act "error")
- unknown act                           -> status=error
- handler returned nothing              -> status=error ("No response from server")
- handler raised                        -> status=error (logged)
- otherwise                             -> the handler's Result, as ok or error
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from marcalink import protocol
from marcalink.protocol import ProtocolError, Reply, Request
from marcalink.storage.base import ErrorKind, Result, validate_project_id

if TYPE_CHECKING:
    from marcalink.storage.filesystem import FilesystemStore

logger = logging.getLogger(__name__)

# Handler: async (payload) -> Result | None
Handler = Callable[[dict[str, Any]], Awaitable[Result | None]]


@dataclass
class _Route:
    handler: Handler
    requires_project_id: bool = False


class ActionDispatcher:
    """Server-side handler table over a filesystem store."""

    def __init__(self, store: FilesystemStore) -> None:
        self.store = store
        self._routes: dict[str, _Route] = {}
        self._register_defaults()

    def register(self, act: str, handler: Handler, *, requires_project_id: bool = False) -> None:
        """Map an action name to a handler.

        With ``requires_project_id`` the payload's ``projectID`` is validated
        and trimmed before the handler runs; a failure short-circuits it.
        """
        self._routes[act] = _Route(handler, requires_project_id)

    @property
    def actions(self) -> list[str]:
        return sorted(self._routes)

    # ── Dispatch ──────────────────────────────────────────────

    async def dispatch(self, raw: str | bytes) -> str:
        """Handle one raw inbound message and return the reply text."""
        try:
            request = protocol.parse_request(raw)
        except ProtocolError as e:
            logger.warning("Rejected envelope: %s", e)
            reply = Reply(
                act=protocol.ERROR_ACT,
                status="error",
                id=e.request_id,
                message=str(e),
                kind=ErrorKind.PROTOCOL.value,
            )
            return protocol.format_reply(reply)

        reply = await self.handle(request)
        return protocol.format_reply(reply)

    async def handle(self, request: Request) -> Reply:
        route = self._routes.get(request.act)
        if route is None:
            logger.warning("Unknown act received: %s", request.act)
            return Reply(
                act=request.act,
                status="error",
                id=request.id,
                message="Unknown act",
                kind=ErrorKind.PROTOCOL.value,
            )

        payload = dict(request.payload)
        if route.requires_project_id:
            checked = validate_project_id(payload.get("projectID"))
            if not checked.ok:
                return Reply.from_result(request.act, request.id, checked)
            payload["projectID"] = checked.data

        try:
            result = await route.handler(payload)
        except Exception:
            logger.exception("Handler for %s failed", request.act)
            result = Result.failure("Internal server error", kind=ErrorKind.BACKEND)

        if not result:
            return Reply(
                act=request.act,
                status="error",
                id=request.id,
                message="No response from server",
                kind=ErrorKind.PROTOCOL.value,
            )
        return Reply.from_result(request.act, request.id, result)

    # ── Default handler table ─────────────────────────────────

    def _register_defaults(self) -> None:
        store = self.store
        self.register(
            protocol.OPEN_PROJECT,
            lambda p: store.open_project(p["projectID"]),
            requires_project_id=True,
        )
        self.register(protocol.GET_ACTIVE_PROJECT, lambda p: store.get_active_project())
        self.register(protocol.SAVE_PROJECT, self._save_project, requires_project_id=True)
        self.register(
            protocol.LOAD_PROJECT,
            lambda p: store.load_project(p["projectID"]),
            requires_project_id=True,
        )
        self.register(protocol.LIST_PROJECTS, lambda p: store.list_projects())
        self.register(
            protocol.DELETE_PROJECT,
            lambda p: store.delete_project(p["projectID"]),
            requires_project_id=True,
        )
        self.register(
            protocol.ARCHIVE_PROJECT,
            lambda p: store.archive_project(p["projectID"]),
            requires_project_id=True,
        )
        self.register(protocol.SAVE_PAPER, self._save_paper)
        self.register(protocol.LOAD_PAPER, lambda p: store.load_paper(p.get("paperId")))
        self.register(protocol.DELETE_PAPER, lambda p: store.delete_paper(p.get("paperId")))
        self.register(protocol.LIST_PAPERS, lambda p: store.list_papers())
        self.register(protocol.STORAGE_GET, lambda p: store.get(p.get("keys")))
        self.register(protocol.STORAGE_SET, self._storage_set)

    async def _save_project(self, payload: dict[str, Any]) -> Result:
        data = payload.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            return Result.failure("Project data must be an object.", kind=ErrorKind.VALIDATION)
        # The validated projectID is authoritative; ids are immutable.
        return await self.store.save_project({**data, "id": payload["projectID"]})

    async def _save_paper(self, payload: dict[str, Any]) -> Result:
        data = payload.get("data")
        if not isinstance(data, dict):
            return Result.failure("Paper data must be an object.", kind=ErrorKind.VALIDATION)
        doc = dict(data)
        if payload.get("paperId") not in (None, ""):
            doc["id"] = payload["paperId"]
        if payload.get("projectID") and not doc.get("projectID"):
            doc["projectID"] = payload["projectID"]
        return await self.store.save_paper(doc)

    async def _storage_set(self, payload: dict[str, Any]) -> Result:
        items = payload.get("items")
        if not isinstance(items, dict):
            return Result.failure("Items must be an object.", kind=ErrorKind.VALIDATION)
        return await self.store.set(items)
