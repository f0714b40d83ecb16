"""Tests for the Storage facade."""

from pathlib import Path

import pytest

from marcalink.config import MarcalinkConfig
from marcalink.entities import Paper, Project
from marcalink.storage import ErrorKind, Result, Storage, Store
from marcalink.storage.filesystem import FilesystemStore
from marcalink.storage.remote import RemoteStore


class RecordingBackend:
    """Store double that records calls and what values it was handed."""

    def __init__(self, name: str = "remote") -> None:
        self._name = name
        self.calls: list[tuple[str, object]] = []
        self.started = False
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_active(self) -> bool:
        return self.started and not self.closed

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def _ok(self, op: str, arg: object = None) -> Result:
        self.calls.append((op, arg))
        return Result.success()

    async def get(self, keys=None):
        return await self._ok("get", keys)

    async def set(self, items):
        return await self._ok("set", items)

    async def save_project(self, project, fields=None):
        self.fields = fields
        return await self._ok("save_project", project)

    async def load_project(self, project_id):
        return await self._ok("load_project", project_id)

    async def delete_project(self, project_id):
        return await self._ok("delete_project", project_id)

    async def archive_project(self, project_id):
        return await self._ok("archive_project", project_id)

    async def list_projects(self):
        return await self._ok("list_projects")

    async def open_project(self, project_id):
        return await self._ok("open_project", project_id)

    async def get_active_project(self):
        return await self._ok("get_active_project")

    async def save_paper(self, paper):
        return await self._ok("save_paper", paper)

    async def load_paper(self, paper_id):
        return await self._ok("load_paper", paper_id)

    async def delete_paper(self, paper_id):
        return await self._ok("delete_paper", paper_id)

    async def list_papers(self):
        return await self._ok("list_papers")


@pytest.fixture
def config(tmp_path: Path):
    return MarcalinkConfig(data_dir=tmp_path / "user_data", cache_dir=tmp_path / "cache")


class TestBinding:
    def test_backend_double_satisfies_protocol(self):
        assert isinstance(RecordingBackend(), Store)

    @pytest.mark.asyncio
    async def test_filesystem_by_config(self, config):
        storage = Storage(config)
        await storage.init()
        assert isinstance(storage.backend, FilesystemStore)
        assert storage.backend_name == "filesystem"
        assert storage.is_online

    @pytest.mark.asyncio
    async def test_remote_by_config(self, config):
        config.backend = "remote"
        storage = Storage(config)
        storage._backend = storage._build_backend(config.backend)
        assert isinstance(storage.backend, RemoteStore)
        assert storage.backend.open_timeout == config.client.open_timeout

    @pytest.mark.asyncio
    async def test_unknown_backend(self, config):
        config.backend = "cloud"
        storage = Storage(config)
        with pytest.raises(ValueError, match="Unknown storage backend"):
            await storage.init()

    @pytest.mark.asyncio
    async def test_binding_is_stable(self, config):
        backend = RecordingBackend()
        storage = Storage(config, backend=backend)
        await storage.init()
        await storage.init()
        assert storage.backend is backend
        assert backend.started

    @pytest.mark.asyncio
    async def test_shutdown_closes_backend(self, config):
        backend = RecordingBackend()
        storage = Storage(config, backend=backend)
        await storage.init()
        await storage.shutdown()
        assert backend.closed

    @pytest.mark.asyncio
    async def test_calls_before_init_fail(self, config):
        storage = Storage(config, backend=RecordingBackend())
        result = await storage.list_projects()
        assert not result.ok
        assert result.message == "Storage is not initialized."


class TestIdentifierChecks:
    @pytest.mark.asyncio
    async def test_save_project_without_id_not_delegated(self, config):
        backend = RecordingBackend()
        storage = Storage(config, backend=backend)
        await storage.init()
        result = await storage.save_project({"name": "No id"})
        assert result.kind is ErrorKind.VALIDATION
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_save_paper_without_id_not_delegated(self, config):
        backend = RecordingBackend()
        storage = Storage(config, backend=backend)
        await storage.init()
        result = await storage.save_paper(Paper(title="No id"))
        assert result.kind is ErrorKind.VALIDATION
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_set_requires_mapping(self, config):
        backend = RecordingBackend()
        storage = Storage(config, backend=backend)
        await storage.init()
        result = await storage.set(["not", "a", "dict"])
        assert result.kind is ErrorKind.VALIDATION


class TestConversion:
    @pytest.mark.asyncio
    async def test_remote_receives_entities(self, config):
        backend = RecordingBackend("remote")
        storage = Storage(config, backend=backend)
        await storage.init()
        await storage.save_project({"id": "p1", "name": "One"})
        await storage.save_paper({"id": "abc"})
        assert isinstance(backend.calls[0][1], Project)
        assert isinstance(backend.calls[1][1], Paper)

    @pytest.mark.asyncio
    async def test_remote_mapping_sends_only_given_keys(self, config):
        backend = RecordingBackend("remote")
        storage = Storage(config, backend=backend)
        await storage.init()
        await storage.save_project({"id": "p1", "name": "Renamed"})
        assert backend.fields == ["id", "name"]

    @pytest.mark.asyncio
    async def test_remote_entity_sends_whole_document(self, config):
        backend = RecordingBackend("remote")
        storage = Storage(config, backend=backend)
        await storage.init()
        await storage.save_project(Project(id="p1"))
        assert backend.fields is None

    @pytest.mark.asyncio
    async def test_remote_rejects_undecodable_project(self, config):
        backend = RecordingBackend("remote")
        storage = Storage(config, backend=backend)
        await storage.init()
        result = await storage.save_project({"id": "bad id"})
        assert result.kind is ErrorKind.VALIDATION
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_filesystem_receives_documents(self, config):
        backend = RecordingBackend("filesystem")
        storage = Storage(config, backend=backend)
        await storage.init()
        await storage.save_project(Project(id="p1"))
        assert backend.calls[0][1]["id"] == "p1"


class TestEndToEndFilesystem:
    @pytest.mark.asyncio
    async def test_project_and_papers(self, config):
        storage = Storage(config)
        await storage.init()

        assert (await storage.save_project(Project(id="p1", name="One"))).ok
        assert (await storage.open_project("p1")).ok
        assert (await storage.save_paper(Paper(id="abc", title="T"))).ok

        papers = (await storage.list_papers()).data
        assert [p["id"] for p in papers] == ["abc"]

        assert (await storage.delete_project("p1")).ok
        assert (await storage.list_projects()).data == []
        await storage.shutdown()
