"""Snowballing workflow - mark links as papers and move them through screening.

Every operation that changes a paper appends exactly one history entry and
saves the paper through the storage facade. History is only ever trimmed
from the oldest end, and only past ``history_limit``.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import TYPE_CHECKING, Any

from marcalink.entities import ORIGINS, STATUSES, Paper
from marcalink.storage.base import ErrorKind, Result

if TYPE_CHECKING:
    from marcalink.storage.facade import Storage

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: dict[str, str] = {
    "Seed": "#4CAF50",
    "Backward": "#2196F3",
    "Forward": "#9C27B0",
    "Included": "#2E7D32",
    "Excluded": "#D32F2F",
    "Duplicate": "#757575",
    "Pending": "#FBC02D",
}

HISTORY_LIMIT = 200

_SESSION_TOKEN = re.compile(r"[?&]casa_token=\S+", re.IGNORECASE)

# Fields update_field/bulk_set may change, mapped to Paper attributes
_EDITABLE_FIELDS = {
    "title": "title",
    "url": "url",
    "year": "year",
    "origin": "origin",
    "status": "status",
    "tags": "tags",
    "authorsRaw": "authors_raw",
    "iterationId": "iteration_id",
    "criteriaId": "criteria_id",
    "visited": "visited",
}


def strip_session_token(url: str) -> str:
    return _SESSION_TOKEN.sub("", url or "")


def paper_id_for_url(url: str) -> str:
    """Stable id for a link: same URL (minus session tokens) -> same id."""
    normalized = strip_session_token(url).strip()
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def infer_from_category(category: str) -> tuple[str, str]:
    """Map a marking category to (origin, status)."""
    key = (category or "").strip().lower()
    if key in ("seed", "backward", "forward"):
        return key, "pending"
    if key in STATUSES:
        return "unknown", key
    return "unknown", "pending"


def summarize(papers: list[Paper]) -> dict[str, int]:
    """Counts by status and origin."""
    counts = {"total": len(papers)}
    for status in STATUSES:
        counts[status] = sum(1 for p in papers if p.status == status)
    for origin in ORIGINS:
        if origin != "unknown":
            counts[origin] = sum(1 for p in papers if p.origin == origin)
    return counts


def _coerce_field(field_name: str, value: Any) -> Any:
    if field_name == "year":
        try:
            return int(value) if value not in (None, "") else None
        except (TypeError, ValueError):
            return None
    if field_name == "tags":
        if isinstance(value, str):
            return [t.strip() for t in re.split(r"[;,]", value) if t.strip()]
        return list(value or [])
    if field_name == "visited":
        return bool(value)
    return value


class PaperTracker:
    """Paper-level workflow on top of a ``Storage``."""

    def __init__(self, storage: Storage, history_limit: int = HISTORY_LIMIT) -> None:
        self.storage = storage
        self.history_limit = history_limit

    # ── Settings ──────────────────────────────────────────────

    async def ensure_default_categories(self) -> Result:
        """Merge any missing default categories into the ``categories`` setting."""
        current = await self.storage.get(["categories"])
        categories = (current.data or {}).get("categories") if current.ok else None

        if isinstance(categories, list):
            converted: dict[str, str] = {}
            for item in categories:
                if isinstance(item, str):
                    converted[item] = DEFAULT_CATEGORIES.get(item, "yellow")
                elif isinstance(item, dict) and item.get("name"):
                    converted[item["name"]] = item.get("color") or "yellow"
            return await self.storage.set({"categories": {**DEFAULT_CATEGORIES, **converted}})

        categories = categories if isinstance(categories, dict) else {}
        missing = {k: v for k, v in DEFAULT_CATEGORIES.items() if k not in categories}
        if not missing:
            return Result.success(categories)
        return await self.storage.set({"categories": {**categories, **missing}})

    # ── Loading ───────────────────────────────────────────────

    async def get_paper(self, paper_id: str) -> Paper | None:
        result = await self.storage.load_paper(paper_id)
        if not result.ok or not result.data:
            return None
        if isinstance(result.data, Paper):
            return result.data
        try:
            return Paper.from_dict(result.data)
        except (TypeError, ValueError):
            logger.warning("Stored paper %s is not decodable", paper_id)
            return None

    async def _commit(self, paper: Paper) -> Result:
        paper.trim_history(self.history_limit)
        result = await self.storage.save_paper(paper)
        if result.ok:
            result.data = paper
        return result

    # ── Marking ───────────────────────────────────────────────

    async def mark_link(
        self,
        url: str,
        category: str,
        *,
        title: str | None = None,
        authors_raw: str = "",
        year: int | None = None,
        iteration_id: str = "I1",
    ) -> Result:
        """Create or update the paper behind ``url`` from a marking category."""
        clean_url = strip_session_token(url)
        if not clean_url:
            return Result.failure("A link URL is required.", kind=ErrorKind.VALIDATION)
        paper_id = paper_id_for_url(clean_url)
        origin, status = infer_from_category(category)

        paper = await self.get_paper(paper_id)
        prev_status = paper.status if paper else "new"
        if paper is None:
            paper = Paper(id=paper_id, url=clean_url, origin=origin)
        elif origin != "unknown":
            paper.origin = origin

        paper.title = title or paper.title or clean_url
        paper.authors_raw = authors_raw or paper.authors_raw
        paper.year = year if year is not None else paper.year
        paper.status = status
        paper.iteration_id = iteration_id
        paper.tags = [category]
        paper.visited = True
        paper.record(
            "mark",
            category=category,
            origin=paper.origin,
            status=status,
            prevStatus=prev_status,
        )
        return await self._commit(paper)

    async def unmark_link(self, url: str) -> Result:
        """Set ``visited=False`` and keep the paper (audit trail)."""
        paper = await self.get_paper(paper_id_for_url(url))
        if paper is None:
            return Result.failure("Paper not found.", kind=ErrorKind.NOT_FOUND)
        paper.visited = False
        paper.record("unmark", visited=False)
        return await self._commit(paper)

    # ── Screening ─────────────────────────────────────────────

    async def set_status(self, paper_id: str, status: str, *, via: str = "table") -> Result:
        if status not in STATUSES:
            return Result.failure(f"Unknown status: {status}", kind=ErrorKind.VALIDATION)
        paper = await self.get_paper(paper_id)
        if paper is None:
            return Result.failure("Paper not found.", kind=ErrorKind.NOT_FOUND)
        prev = paper.status or "pending"
        paper.status = status
        paper.record("status_change", **{"from": prev, "to": status, "via": via})
        return await self._commit(paper)

    async def update_field(self, paper_id: str, field_name: str, value: Any) -> Result:
        if field_name == "status":
            return await self.set_status(paper_id, value)
        attr = _EDITABLE_FIELDS.get(field_name)
        if attr is None:
            return Result.failure(f"Field is not editable: {field_name}", kind=ErrorKind.VALIDATION)
        if field_name == "origin" and value not in ORIGINS:
            return Result.failure(f"Unknown origin: {value}", kind=ErrorKind.VALIDATION)
        paper = await self.get_paper(paper_id)
        if paper is None:
            return Result.failure("Paper not found.", kind=ErrorKind.NOT_FOUND)
        prev = getattr(paper, attr)
        new = _coerce_field(field_name, value)
        setattr(paper, attr, new)
        paper.record("update_field", **{"field": field_name, "from": prev, "to": new})
        return await self._commit(paper)

    async def bulk_set(self, paper_ids: list[str], field_name: str, value: Any) -> Result:
        """Apply one field change to many papers; one history entry per paper."""
        attr = _EDITABLE_FIELDS.get(field_name)
        if attr is None:
            return Result.failure(f"Field is not editable: {field_name}", kind=ErrorKind.VALIDATION)
        if field_name == "status" and value not in STATUSES:
            return Result.failure(f"Unknown status: {value}", kind=ErrorKind.VALIDATION)
        if field_name == "origin" and value not in ORIGINS:
            return Result.failure(f"Unknown origin: {value}", kind=ErrorKind.VALIDATION)

        updated: list[str] = []
        for paper_id in paper_ids:
            paper = await self.get_paper(paper_id)
            if paper is None:
                continue
            prev = getattr(paper, attr)
            new = _coerce_field(field_name, value)
            setattr(paper, attr, new)
            if field_name == "status":
                paper.record("status_change", **{"from": prev or "pending", "to": new, "via": "bulk"})
            else:
                paper.record("bulk_update", **{"field": field_name, "from": prev, "to": new})
            result = await self._commit(paper)
            if not result.ok:
                return result
            updated.append(paper_id)
        return Result.success(updated, message=f"Updated {len(updated)} paper(s).")
