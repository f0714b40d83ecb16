"""Remote store - every storage operation as a request over the connection.

Used by clients without disk access. Writes made while the connection is
down go to the local cache and are resubmitted as one ``storage_set`` the
next time the connection opens.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from marcalink import protocol
from marcalink.entities import Paper, Project
from marcalink.storage.base import ErrorKind, Result

if TYPE_CHECKING:
    from marcalink.storage.cache import BackupQueue, LocalCache
    from marcalink.storage.connection import Connection

logger = logging.getLogger(__name__)

DEFAULT_OPEN_TIMEOUT = 5.0


class RemoteStore:
    """Client-side backend speaking the wire protocol."""

    def __init__(
        self,
        connection: Connection,
        cache: LocalCache,
        queue: BackupQueue,
        *,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
    ) -> None:
        self.connection = connection
        self.cache = cache
        self.queue = queue
        self.open_timeout = open_timeout
        self._started = False
        connection.add_open_listener(self.sync_backup)

    @property
    def name(self) -> str:
        return "remote"

    @property
    def is_active(self) -> bool:
        return self.connection.is_open

    async def start(self) -> None:
        """Hook resync onto every connection open and flush anything left from last run."""
        if self._started:
            return
        self._started = True
        await self.connection.start()
        if self.connection.is_open:
            await self.sync_backup()

    async def close(self) -> None:
        await self.connection.close()
        self._started = False

    # ── Request/response ──────────────────────────────────────

    async def _send(self, act: str, payload: dict[str, Any]) -> Result:
        if not await self.connection.wait_open(self.open_timeout):
            return Result.failure("WebSocket not connected", kind=ErrorKind.CONNECTION)
        try:
            reply = await self.connection.request(act, payload)
        except ConnectionError as e:
            return Result.failure(str(e), kind=ErrorKind.CONNECTION)
        return reply.to_result()

    # ── Settings with offline buffering ───────────────────────

    async def get(self, keys: list[str] | str | None = None) -> Result:
        """Remote read; falls back to the local cache instead of failing."""
        result = await self._send(protocol.STORAGE_GET, {"keys": keys})
        if result.ok:
            return Result.success(result.data if isinstance(result.data, dict) else {})
        logger.debug("storage_get unavailable (%s), reading local cache", result.message)
        return Result.success(self.cache.get(keys))

    async def set(self, items: dict[str, Any]) -> Result:
        if not isinstance(items, dict):
            return Result.failure("Items must be an object.", kind=ErrorKind.VALIDATION)
        if not self.connection.is_open:
            return self._backup(items)

        result = await self._send(protocol.STORAGE_SET, {"items": items})
        if result.kind is ErrorKind.CONNECTION:
            return self._backup(items)
        return result

    def _backup(self, items: dict[str, Any]) -> Result:
        try:
            self.cache.set(items)
            self.queue.record(list(items))
        except OSError as e:
            logger.error("Offline backup failed: %s", e)
            return Result.failure(str(e))
        logger.info("Offline: buffered %d key(s) for resync", len(items))
        return Result.success(message="Data saved as backup (offline).")

    async def sync_backup(self) -> Result:
        """Resubmit buffered keys as one remote set. Clears the queue only on success."""
        if not self.queue.pending:
            return Result.success(message="Nothing to sync.")

        keys = self.queue.keys
        items = self.cache.get(keys) if keys else {}
        if not items:
            self.queue.clear()
            return Result.success(message="Nothing to sync.")

        result = await self._send(protocol.STORAGE_SET, {"items": items})
        if result.ok:
            self.queue.clear()
            logger.info("Resynced %d backed-up key(s)", len(items))
        else:
            logger.warning("Backup resync failed, keeping %d key(s): %s", len(items), result.message)
        return result

    # ── Projects ──────────────────────────────────────────────

    async def save_project(self, project: Project, fields: Iterable[str] | None = None) -> Result:
        """Send the project document; with ``fields``, only those keys (plus id).

        The server shallow-merges the document over the stored one.
        """
        if not isinstance(project, Project):
            return Result.failure(
                "Object to save must be a Project instance.", kind=ErrorKind.VALIDATION
            )
        data = project.to_dict()
        if fields is not None:
            keep = set(fields) | {"id"}
            data = {k: v for k, v in data.items() if k in keep}
        return await self._send(protocol.SAVE_PROJECT, {"projectID": project.id, "data": data})

    async def load_project(self, project_id: str) -> Result:
        result = await self._send(protocol.LOAD_PROJECT, {"projectID": project_id})
        if not result.ok:
            return result
        trimmed = project_id.strip() if isinstance(project_id, str) else None
        return Result.success(_decode_project(result.data, trimmed or None))

    async def open_project(self, project_id: str) -> Result:
        return await self._send(protocol.OPEN_PROJECT, {"projectID": project_id})

    async def get_active_project(self) -> Result:
        result = await self._send(protocol.GET_ACTIVE_PROJECT, {})
        if not result.ok:
            return result
        return Result.success(_decode_project(result.data))

    async def delete_project(self, project_id: str) -> Result:
        return await self._send(protocol.DELETE_PROJECT, {"projectID": project_id})

    async def archive_project(self, project_id: str) -> Result:
        return await self._send(protocol.ARCHIVE_PROJECT, {"projectID": project_id})

    async def list_projects(self) -> Result:
        result = await self._send(protocol.LIST_PROJECTS, {})
        if not result.ok:
            return result
        return Result.success(result.data if isinstance(result.data, list) else [])

    # ── Papers ────────────────────────────────────────────────

    async def save_paper(self, paper: Paper) -> Result:
        if not isinstance(paper, Paper):
            return Result.failure("Object to save must be a Paper instance.", kind=ErrorKind.VALIDATION)
        return await self._send(protocol.SAVE_PAPER, {"paperId": paper.id, "data": paper.to_dict()})

    async def load_paper(self, paper_id: str) -> Result:
        result = await self._send(protocol.LOAD_PAPER, {"paperId": paper_id})
        if not result.ok:
            return result
        return Result.success(_decode_paper(result.data))

    async def delete_paper(self, paper_id: str) -> Result:
        return await self._send(protocol.DELETE_PAPER, {"paperId": paper_id})

    async def list_papers(self) -> Result:
        result = await self._send(protocol.LIST_PAPERS, {})
        if not result.ok:
            return result
        if not isinstance(result.data, list):
            return Result.success([])
        try:
            return Result.success([Paper.from_dict(p) for p in result.data])
        except (TypeError, ValueError) as e:
            logger.warning("Undecodable paper list: %s", e)
            return Result.success([])


def _decode_project(data: Any, project_id: str | None = None) -> Project | None:
    if not data:
        return None
    try:
        return Project.from_dict(data, project_id)
    except (TypeError, ValueError) as e:
        logger.warning("Undecodable project document: %s", e)
        return None


def _decode_paper(data: Any) -> Paper | None:
    if not data:
        return None
    try:
        return Paper.from_dict(data)
    except (TypeError, ValueError) as e:
        logger.warning("Undecodable paper document: %s", e)
        return None
