"""Tests for the remote store against an in-memory connection double."""

from pathlib import Path

import pytest

from marcalink.entities import Paper, Project
from marcalink.protocol import Reply
from marcalink.storage.base import ErrorKind
from marcalink.storage.cache import BackupQueue, LocalCache
from marcalink.storage.remote import RemoteStore


class FakeConnection:
    """Answers requests from a canned table and records what was sent."""

    def __init__(self, *, is_open: bool = True) -> None:
        self.is_open = is_open
        self.sent: list[tuple[str, dict]] = []
        self.replies: dict[str, Reply] = {}
        self.listeners = []
        self.raise_on_request: Exception | None = None
        self.started = False
        self.closed = False

    def add_open_listener(self, listener) -> None:
        self.listeners.append(listener)

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True
        self.started = False

    async def wait_open(self, timeout: float = 5.0) -> bool:
        return self.is_open

    async def request(self, act: str, payload: dict | None = None) -> Reply:
        self.sent.append((act, payload or {}))
        if self.raise_on_request is not None:
            raise self.raise_on_request
        return self.replies.get(act, Reply(act=act, status="ok", payload={"data": None}))

    async def open(self) -> None:
        """Simulate the socket opening: run every listener."""
        self.is_open = True
        for listener in self.listeners:
            await listener()


def ok(act: str, data=None, message=None) -> Reply:
    payload = {"data": data}
    if message is not None:
        payload["message"] = message
    return Reply(act=act, status="ok", payload=payload)


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def store(conn, tmp_path: Path):
    return RemoteStore(
        conn,
        LocalCache(tmp_path / "local_cache.json"),
        BackupQueue(tmp_path / "backup_queue.json"),
        open_timeout=0.01,
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_registers_resync(self, store, conn):
        await store.start()
        await store.start()
        assert conn.started
        assert conn.listeners == [store.sync_backup]

    @pytest.mark.asyncio
    async def test_close(self, store, conn):
        await store.close()
        assert conn.closed

    @pytest.mark.asyncio
    async def test_restart_after_close(self, store, conn):
        await store.start()
        await store.close()
        await store.start()
        assert conn.started
        assert conn.listeners == [store.sync_backup]

    def test_is_active_follows_connection(self, store, conn):
        assert store.is_active
        conn.is_open = False
        assert not store.is_active


class TestSettings:
    @pytest.mark.asyncio
    async def test_get_online(self, store, conn):
        conn.replies["storage_get"] = ok("storage_get", {"theme": "dark"})
        result = await store.get(["theme"])
        assert result.data == {"theme": "dark"}
        assert conn.sent == [("storage_get", {"keys": ["theme"]})]

    @pytest.mark.asyncio
    async def test_get_offline_reads_cache(self, store, conn):
        conn.is_open = False
        store.cache.set({"theme": "light"})
        result = await store.get(["theme"])
        assert result.ok
        assert result.data == {"theme": "light"}
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_get_offline_without_cache_is_empty(self, store, conn):
        conn.is_open = False
        result = await store.get(["theme"])
        assert result.ok
        assert result.data == {}

    @pytest.mark.asyncio
    async def test_set_online(self, store, conn):
        result = await store.set({"theme": "dark"})
        assert result.ok
        assert conn.sent == [("storage_set", {"items": {"theme": "dark"}})]
        assert not store.queue.pending

    @pytest.mark.asyncio
    async def test_set_offline_buffers(self, store, conn):
        conn.is_open = False
        result = await store.set({"theme": "dark"})
        assert result.ok
        assert "offline" in result.message
        assert store.cache.get() == {"theme": "dark"}
        assert store.queue.keys == ["theme"]
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_set_buffers_when_connection_drops(self, store, conn):
        conn.raise_on_request = ConnectionError("Connection lost")
        result = await store.set({"theme": "dark"})
        assert result.ok
        assert store.queue.pending

    @pytest.mark.asyncio
    async def test_set_server_error_not_buffered(self, store, conn):
        conn.replies["storage_set"] = Reply(act="storage_set", status="error", message="disk full")
        result = await store.set({"theme": "dark"})
        assert not result.ok
        assert result.message == "disk full"
        assert not store.queue.pending


class TestResync:
    @pytest.mark.asyncio
    async def test_resync_on_open(self, store, conn):
        conn.is_open = False
        await store.start()
        await store.set({"theme": "dark"})
        await store.set({"lang": "pt"})

        await conn.open()

        assert conn.sent == [("storage_set", {"items": {"theme": "dark", "lang": "pt"}})]
        assert not store.queue.pending

    @pytest.mark.asyncio
    async def test_failed_resync_keeps_queue(self, store, conn):
        conn.is_open = False
        await store.set({"theme": "dark"})
        conn.is_open = True
        conn.replies["storage_set"] = Reply(act="storage_set", status="error", message="boom")

        result = await store.sync_backup()

        assert not result.ok
        assert store.queue.pending
        assert store.queue.keys == ["theme"]

    @pytest.mark.asyncio
    async def test_nothing_to_sync(self, store, conn):
        result = await store.sync_backup()
        assert result.ok
        assert conn.sent == []


class TestEntities:
    @pytest.mark.asyncio
    async def test_save_project_requires_entity(self, store, conn):
        result = await store.save_project({"id": "p1"})
        assert result.kind is ErrorKind.VALIDATION
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_save_project_envelope(self, store, conn):
        await store.save_project(Project(id="p1", name="One"))
        act, payload = conn.sent[0]
        assert act == "save_project"
        assert payload["projectID"] == "p1"
        assert payload["data"]["name"] == "One"

    @pytest.mark.asyncio
    async def test_save_project_limited_to_fields(self, store, conn):
        await store.save_project(Project(id="p1", name="Renamed"), fields=["name"])
        _, payload = conn.sent[0]
        assert payload["data"] == {"id": "p1", "name": "Renamed"}

    @pytest.mark.asyncio
    async def test_save_paper_requires_entity(self, store):
        result = await store.save_paper({"id": "abc"})
        assert result.kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_load_project_decodes(self, store, conn):
        conn.replies["load_project"] = ok("load_project", {"id": "p1", "name": "One"})
        result = await store.load_project("p1")
        assert isinstance(result.data, Project)
        assert result.data.name == "One"

    @pytest.mark.asyncio
    async def test_load_project_untrimmed_id(self, store, conn):
        conn.replies["load_project"] = ok("load_project", {"id": "p1", "name": "One"})
        result = await store.load_project(" p1 ")
        assert result.data.id == "p1"

    @pytest.mark.asyncio
    async def test_load_project_undecodable_is_none(self, store, conn):
        conn.replies["load_project"] = ok("load_project", ["garbage"])
        result = await store.load_project("p1")
        assert result.ok
        assert result.data is None

    @pytest.mark.asyncio
    async def test_load_paper_absent(self, store, conn):
        result = await store.load_paper("abc")
        assert result.ok
        assert result.data is None

    @pytest.mark.asyncio
    async def test_list_papers_decodes(self, store, conn):
        conn.replies["list_papers"] = ok("list_papers", [{"id": "a"}, {"id": "b", "status": "included"}])
        result = await store.list_papers()
        assert [p.id for p in result.data] == ["a", "b"]
        assert all(isinstance(p, Paper) for p in result.data)

    @pytest.mark.asyncio
    async def test_list_papers_undecodable_is_empty(self, store, conn):
        conn.replies["list_papers"] = ok("list_papers", "nope")
        result = await store.list_papers()
        assert result.data == []

    @pytest.mark.asyncio
    async def test_offline_entity_call_is_connection_error(self, store, conn):
        conn.is_open = False
        result = await store.list_projects()
        assert not result.ok
        assert result.kind is ErrorKind.CONNECTION

    @pytest.mark.asyncio
    async def test_server_error_passed_through(self, store, conn):
        conn.replies["open_project"] = Reply(
            act="open_project", status="error", message="Invalid project ID.", kind="validation"
        )
        result = await store.open_project("bad id")
        assert result.kind is ErrorKind.VALIDATION
        assert result.message == "Invalid project ID."
