"""Tests for the command-line entry point."""

from pathlib import Path

import pytest

from marcalink.__main__ import _track, main
from marcalink.config import MarcalinkConfig
from marcalink.entities import Project
from marcalink.storage.filesystem import FilesystemStore


@pytest.fixture
def config(tmp_path: Path):
    return MarcalinkConfig(data_dir=tmp_path / "user_data")


class TestMain:
    def test_usage_on_unknown_command(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["marcalink", "bogus"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert "Usage" in capsys.readouterr().out

    def test_call_rejects_bad_json(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["marcalink", "call", "list_projects", "{bad"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 2
        assert "Invalid JSON" in capsys.readouterr().err


class TestTrack:
    @pytest.mark.asyncio
    async def test_mark_and_unmark(self, config, capsys):
        await FilesystemStore(config.data_dir).save_project(Project(id="review"))

        assert await _track(config, "review", "https://doi.org/10.1/abc", "Seed") == 0
        out = capsys.readouterr().out
        assert "pending" in out and "seed" in out

        assert await _track(config, "review", "https://doi.org/10.1/abc", None) == 0

    @pytest.mark.asyncio
    async def test_missing_project(self, config, capsys):
        assert await _track(config, "ghost", "https://doi.org/10.1/abc", "Seed") == 1
        assert "Cannot open project" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_unmark_unknown(self, config, capsys):
        await FilesystemStore(config.data_dir).save_project(Project(id="review"))
        assert await _track(config, "review", "https://nowhere.example", None) == 1
