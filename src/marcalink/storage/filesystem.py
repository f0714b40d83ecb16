"""Filesystem store - durable JSON documents under a base directory.

Layout:
    <base_dir>/
    ├── config.json                    # {"projects": [{id, name, researchers}], ...settings}
    └── <project_id>/
        ├── project.json               # Project document
        └── papers/
            └── <paper_id>.json        # One document per paper

The active project pointer lives in process memory only.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any

from marcalink.entities import Paper, Project, is_valid_project_id
from marcalink.storage.base import ErrorKind, Result, validate_project_id

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
PROJECT_FILE = "project.json"
PAPERS_DIR = "papers"
REGISTRY_KEY = "projects"

_NO_PROJECT_OPEN = "No project is currently open."


class FilesystemStore:
    """Durable backend. Always active once constructed."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.active_project_id: str | None = None
        self.active_project_data: dict[str, Any] | None = None

    @property
    def name(self) -> str:
        return "filesystem"

    @property
    def is_active(self) -> bool:
        return True

    # ── JSON helpers ──────────────────────────────────────────

    def _read_json(self, rel_path: Path | str) -> Any:
        """Read a document relative to base_dir. Absent or unreadable -> None."""
        full = self.base_dir / rel_path
        if not full.is_file():
            return None
        try:
            return json.loads(full.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable document %s: %s", full, e)
            return None

    def _write_json(self, rel_path: Path | str, obj: Any) -> None:
        full = self.base_dir / rel_path
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")

    def _read_registry(self) -> dict[str, Any]:
        cfg = self._read_json(CONFIG_FILE)
        if not isinstance(cfg, dict):
            cfg = {}
        if not isinstance(cfg.get(REGISTRY_KEY), list):
            cfg[REGISTRY_KEY] = []
        return cfg

    def _paper_path(self, project_id: str, paper_id: Any) -> Path | None:
        # Paper ids become file names, so they share the project id charset.
        if paper_id is None or isinstance(paper_id, bool):
            return None
        pid = str(paper_id)
        if not is_valid_project_id(pid):
            return None
        return Path(project_id) / PAPERS_DIR / f"{pid}.json"

    # ── Settings bag ──────────────────────────────────────────

    async def get(self, keys: list[str] | str | None = None) -> Result:
        """Read settings. No keys -> the whole bag (registry list excluded)."""
        cfg = self._read_registry()
        settings = {k: v for k, v in cfg.items() if k != REGISTRY_KEY}
        if not keys:
            return Result.success(settings)
        if isinstance(keys, str):
            keys = [keys]
        return Result.success({k: settings[k] for k in keys if k in settings})

    async def set(self, items: dict[str, Any]) -> Result:
        if not isinstance(items, dict):
            return Result.failure("Items must be an object.", kind=ErrorKind.VALIDATION)
        if REGISTRY_KEY in items:
            return Result.failure(
                f"'{REGISTRY_KEY}' is reserved for the project registry.",
                kind=ErrorKind.VALIDATION,
            )
        try:
            cfg = self._read_registry()
            cfg.update(items)
            self._write_json(CONFIG_FILE, cfg)
        except OSError as e:
            logger.error("Failed to write settings: %s", e)
            return Result.failure(str(e))
        return Result.success(message="Data saved.")

    # ── Projects ──────────────────────────────────────────────

    async def save_project(self, project: Project | dict[str, Any]) -> Result:
        """Shallow-merge the incoming document over the stored one, then update the registry."""
        incoming = project.to_dict() if isinstance(project, Project) else dict(project or {})
        checked = validate_project_id(incoming.get("id"))
        if not checked.ok:
            return checked
        project_id = checked.data
        incoming["id"] = project_id
        rel_path = Path(project_id) / PROJECT_FILE

        try:
            existing = self._read_json(rel_path)
            merged = {**(existing if isinstance(existing, dict) else {}), **incoming}
            merged.pop("isCurrent", None)
            self._write_json(rel_path, merged)

            cfg = self._read_registry()
            entries = cfg[REGISTRY_KEY]
            row = next((p for p in entries if isinstance(p, dict) and p.get("id") == project_id), None)
            if row is None:
                entries.append(
                    {
                        "id": project_id,
                        "name": merged.get("name"),
                        "researchers": merged.get("researchers"),
                    }
                )
            else:
                if merged.get("name"):
                    row["name"] = merged["name"]
                if merged.get("researchers"):
                    row["researchers"] = merged["researchers"]
            self._write_json(CONFIG_FILE, cfg)
        except OSError as e:
            logger.error("Failed to save project %s: %s", project_id, e)
            return Result.failure(str(e))

        if self.active_project_id == project_id:
            self.active_project_data = merged
        logger.info("Project saved: %s", project_id)
        return Result.success(message="Project saved.")

    async def load_project(self, project_id: str) -> Result:
        if not is_valid_project_id(project_id):
            return Result.failure("Invalid project ID.", kind=ErrorKind.VALIDATION)
        return Result.success(self._read_json(Path(project_id) / PROJECT_FILE))

    async def open_project(self, project_id: str) -> Result:
        """Load the project and keep it in memory as the active one."""
        if not is_valid_project_id(project_id):
            return Result.failure("Invalid project ID.", kind=ErrorKind.VALIDATION)
        data = self._read_json(Path(project_id) / PROJECT_FILE)
        if not isinstance(data, dict):
            return Result.failure("Project not found.", kind=ErrorKind.NOT_FOUND)
        self.active_project_id = project_id
        self.active_project_data = data
        logger.info("Project opened: %s", project_id)
        return Result.success(data)

    async def get_active_project(self) -> Result:
        return Result.success(self.active_project_data)

    async def archive_project(self, project_id: str) -> Result:
        """Drop the project from the registry; files stay on disk."""
        try:
            cfg = self._read_registry()
            cfg[REGISTRY_KEY] = [
                p for p in cfg[REGISTRY_KEY] if not (isinstance(p, dict) and p.get("id") == project_id)
            ]
            self._write_json(CONFIG_FILE, cfg)
        except OSError as e:
            logger.error("Failed to archive project %s: %s", project_id, e)
            return Result.failure(str(e))
        logger.info("Project archived: %s", project_id)
        return Result.success(message="Project archived.")

    async def delete_project(self, project_id: str) -> Result:
        """Archive first; remove the directory only once the registry no longer lists it."""
        if not is_valid_project_id(project_id):
            return Result.failure("Invalid project ID.", kind=ErrorKind.VALIDATION)
        archived = await self.archive_project(project_id)
        full = self.base_dir / project_id
        if not archived.ok or not full.is_dir():
            return Result.failure("Project not found.", kind=ErrorKind.NOT_FOUND)
        try:
            shutil.rmtree(full)
        except OSError as e:
            logger.error("Failed to delete project %s: %s", project_id, e)
            return Result.failure(str(e))
        if self.active_project_id == project_id:
            self.active_project_id = None
            self.active_project_data = None
        logger.info("Project deleted: %s", project_id)
        return Result.success(message="Project deleted.")

    async def list_projects(self) -> Result:
        """Registry rows with ``isCurrent`` recomputed from the active pointer."""
        cfg = self._read_registry()
        projects = []
        for p in cfg[REGISTRY_KEY]:
            if not isinstance(p, dict):
                continue
            row = dict(p)
            row["isCurrent"] = row.get("id") == self.active_project_id
            projects.append(row)
        return Result.success(projects)

    # ── Papers (scoped to the active project) ─────────────────

    async def save_paper(self, paper: Paper | dict[str, Any]) -> Result:
        doc = paper.to_dict() if isinstance(paper, Paper) else dict(paper or {})
        if doc.get("id") in (None, ""):
            return Result.failure("Paper JSON must include an id.", kind=ErrorKind.VALIDATION)
        inline_project = doc.pop("projectID", None)
        project_id = self.active_project_id or inline_project
        if not project_id:
            return Result.failure(_NO_PROJECT_OPEN, kind=ErrorKind.VALIDATION)
        checked = validate_project_id(project_id)
        if not checked.ok:
            return checked
        rel_path = self._paper_path(checked.data, doc["id"])
        if rel_path is None:
            return Result.failure("Invalid paper ID.", kind=ErrorKind.VALIDATION)
        try:
            self._write_json(rel_path, doc)
        except OSError as e:
            logger.error("Failed to save paper %s: %s", doc["id"], e)
            return Result.failure(str(e))
        return Result.success(message="Paper saved.")

    async def load_paper(self, paper_id: str) -> Result:
        if not self.active_project_id:
            return Result.failure(_NO_PROJECT_OPEN, kind=ErrorKind.VALIDATION)
        rel_path = self._paper_path(self.active_project_id, paper_id)
        if rel_path is None:
            return Result.failure("Invalid paper ID.", kind=ErrorKind.VALIDATION)
        return Result.success(self._read_json(rel_path))

    async def delete_paper(self, paper_id: str) -> Result:
        if not self.active_project_id:
            return Result.failure(_NO_PROJECT_OPEN, kind=ErrorKind.VALIDATION)
        rel_path = self._paper_path(self.active_project_id, paper_id)
        if rel_path is None:
            return Result.failure("Invalid paper ID.", kind=ErrorKind.VALIDATION)
        full = self.base_dir / rel_path
        if not full.is_file():
            return Result.failure("Paper not found.", kind=ErrorKind.NOT_FOUND)
        try:
            full.unlink()
        except OSError as e:
            return Result.failure(str(e))
        return Result.success(message="Paper deleted.")

    async def list_papers(self) -> Result:
        """Every paper of the active project, id taken from the file name."""
        if not self.active_project_id:
            return Result.failure(_NO_PROJECT_OPEN, kind=ErrorKind.VALIDATION)
        papers_dir = self.base_dir / self.active_project_id / PAPERS_DIR
        if not papers_dir.is_dir():
            return Result.success([])
        papers = []
        for json_file in sorted(papers_dir.glob("*.json")):
            data = self._read_json(json_file.relative_to(self.base_dir))
            if not isinstance(data, dict):
                continue
            papers.append({**data, "id": json_file.stem})
        return Result.success(papers)
