"""Storage facade - the single entry point application code talks to.

A ``Storage`` is constructed once at startup and passed to its consumers.
``init()`` binds exactly one backend for the object's lifetime, chosen
explicitly (injected store, or ``config.backend``), never by inspecting the
runtime environment.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from marcalink.entities import Paper, Project
from marcalink.storage.base import ErrorKind, Result, Store, has_identifier

if TYPE_CHECKING:
    from marcalink.config import MarcalinkConfig

logger = logging.getLogger(__name__)

BACKENDS = ("filesystem", "remote")


class Storage:
    """Facade over the filesystem or remote store."""

    def __init__(self, config: MarcalinkConfig, backend: Store | None = None) -> None:
        self.config = config
        self._backend: Store | None = backend
        self._initialized = False

    @property
    def backend(self) -> Store | None:
        return self._backend

    @property
    def backend_name(self) -> str | None:
        return self._backend.name if self._backend else None

    @property
    def is_online(self) -> bool:
        """False while a remote backend has no open connection ("offline" indicator)."""
        return bool(self._backend and self._backend.is_active)

    # ── Lifecycle ─────────────────────────────────────────────

    async def init(self) -> None:
        """Bind and start the backend. Idempotent; the binding never changes."""
        if self._initialized:
            return
        if self._backend is None:
            self._backend = self._build_backend(self.config.backend)
        start = getattr(self._backend, "start", None)
        if start and callable(start):
            await start()
        self._initialized = True
        logger.info("Storage initialized (backend=%s)", self._backend.name)

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        close = getattr(self._backend, "close", None)
        if close and callable(close):
            await close()
        self._initialized = False
        logger.info("Storage shut down")

    def _build_backend(self, name: str) -> Store:
        if name == "filesystem":
            from marcalink.storage.filesystem import FilesystemStore

            return FilesystemStore(self.config.data_dir)
        if name == "remote":
            from marcalink.storage.cache import CACHE_FILE, QUEUE_FILE, BackupQueue, LocalCache
            from marcalink.storage.connection import Connection
            from marcalink.storage.remote import RemoteStore

            connection = Connection(
                self.config.client.url,
                reconnect_delay=self.config.client.reconnect_delay,
            )
            return RemoteStore(
                connection,
                LocalCache(self.config.cache_dir / CACHE_FILE),
                BackupQueue(self.config.cache_dir / QUEUE_FILE),
                open_timeout=self.config.client.open_timeout,
            )
        raise ValueError(f"Unknown storage backend: {name!r} (expected one of {BACKENDS})")

    def _require(self) -> Store | None:
        return self._backend if self._initialized else None

    # ── Settings ──────────────────────────────────────────────

    async def get(self, keys: list[str] | str | None = None) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.get(keys)

    async def set(self, items: dict[str, Any]) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        if not isinstance(items, dict):
            return Result.failure("Items must be an object.", kind=ErrorKind.VALIDATION)
        return await backend.set(items)

    # ── Projects ──────────────────────────────────────────────

    async def save_project(self, project: Project | dict[str, Any]) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        if not project or not has_identifier(project):
            return Result.failure("Project JSON must include an id.", kind=ErrorKind.VALIDATION)
        try:
            value = self._for_backend(backend, project, Project)
        except (TypeError, ValueError) as e:
            return Result.failure(str(e), kind=ErrorKind.VALIDATION)
        if backend.name == "remote" and isinstance(project, dict):
            # Partial mapping: only the caller's keys reach the merge.
            return await backend.save_project(value, fields=list(project))
        return await backend.save_project(value)

    async def load_project(self, project_id: str) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.load_project(project_id)

    async def delete_project(self, project_id: str) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.delete_project(project_id)

    async def archive_project(self, project_id: str) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.archive_project(project_id)

    async def list_projects(self) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.list_projects()

    async def open_project(self, project_id: str) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.open_project(project_id)

    async def get_active_project(self) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.get_active_project()

    # ── Papers ────────────────────────────────────────────────

    async def save_paper(self, paper: Paper | dict[str, Any]) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        if not paper or not has_identifier(paper):
            return Result.failure("Paper JSON must include an id.", kind=ErrorKind.VALIDATION)
        try:
            value = self._for_backend(backend, paper, Paper)
        except (TypeError, ValueError) as e:
            return Result.failure(str(e), kind=ErrorKind.VALIDATION)
        return await backend.save_paper(value)

    async def load_paper(self, paper_id: str) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.load_paper(paper_id)

    async def delete_paper(self, paper_id: str) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.delete_paper(paper_id)

    async def list_papers(self) -> Result:
        backend = self._require()
        if backend is None:
            return _not_initialized()
        return await backend.list_papers()

    # ── Internal ──────────────────────────────────────────────

    @staticmethod
    def _for_backend(backend: Store, record: Any, entity_type: type) -> Any:
        """Remote wants entity values; the filesystem store wants documents."""
        if backend.name == "remote":
            return record if isinstance(record, entity_type) else entity_type.from_dict(record)
        return record.to_dict() if isinstance(record, entity_type) else record


def _not_initialized() -> Result:
    return Result.failure("Storage is not initialized.", kind=ErrorKind.BACKEND)
