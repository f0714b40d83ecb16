"""Research-tracking records and their JSON document form (no I/O).

Documents use camelCase keys so they stay readable by any client that
speaks the wire protocol:
- encode: entity -> dict (``to_dict``)
- decode: dict -> entity (``from_dict``), tolerant of missing/legacy fields
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

Origin = Literal["seed", "backward", "forward", "unknown"]
Status = Literal["pending", "included", "excluded", "duplicate"]

ORIGINS: tuple[str, ...] = ("seed", "backward", "forward", "unknown")
STATUSES: tuple[str, ...] = ("pending", "included", "excluded", "duplicate")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def is_valid_project_id(value: Any) -> bool:
    """Ids double as directory names, so the dot-only names are refused too."""
    if not isinstance(value, str) or value in (".", ".."):
        return False
    return PROJECT_ID_PATTERN.fullmatch(value) is not None


def slugify(text: str) -> str:
    """Lowercase ASCII slug: runs of other characters collapse to a hyphen."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else []


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


# ── Nested value objects ──────────────────────────────────────


@dataclass
class Category:
    """Screening category with its inclusion rules."""

    title: str = ""
    label: str = ""
    description: str = ""
    color: str | None = None
    phases: list[str] = field(default_factory=list)
    at_least_one: list[str] = field(default_factory=list)
    required: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.label = self.label or slugify(self.title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "label": self.label,
            "description": self.description,
            "color": self.color,
            "phases": list(self.phases),
            "criteria": {"atLeastOne": list(self.at_least_one), "all": list(self.required)},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Category:
        data = _as_dict(data)
        criteria = _as_dict(data.get("criteria"))
        return cls(
            title=data.get("title") or "",
            label=data.get("label") or "",
            description=data.get("description") or "",
            color=data.get("color"),
            phases=_as_list(data.get("phases")),
            at_least_one=_as_list(criteria.get("atLeastOne")),
            required=_as_list(criteria.get("all")),
        )


@dataclass
class Criterion:
    """Inclusion/exclusion criterion applied during given phases."""

    title: str = ""
    label: str = ""
    description: str = ""
    phases: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.label = self.label or slugify(self.title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "label": self.label,
            "description": self.description,
            "phases": list(self.phases),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Criterion:
        data = _as_dict(data)
        return cls(
            title=data.get("title") or "",
            label=data.get("label") or "",
            description=data.get("description") or "",
            phases=_as_list(data.get("phases")),
        )


@dataclass
class Phase:
    """One screening iteration and the papers that moved through it."""

    title: str = ""
    label: str = ""
    description: str = ""
    completed: bool = False
    categories: list[str] = field(default_factory=list)
    criteria: list[str] = field(default_factory=list)
    inherited: list[str] = field(default_factory=list)
    new: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    selected: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.label = self.label or slugify(self.title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "label": self.label,
            "description": self.description,
            "completed": self.completed,
            "categories": list(self.categories),
            "criteria": list(self.criteria),
            "papers": {
                "inherited": list(self.inherited),
                "new": list(self.new),
                "removed": list(self.removed),
                "selected": list(self.selected),
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Phase:
        data = _as_dict(data)
        papers = _as_dict(data.get("papers"))
        return cls(
            title=data.get("title") or "",
            label=data.get("label") or "",
            description=data.get("description") or "",
            completed=bool(data.get("completed")),
            categories=_as_list(data.get("categories")),
            criteria=_as_list(data.get("criteria")),
            inherited=_as_list(papers.get("inherited")),
            new=_as_list(papers.get("new")),
            removed=_as_list(papers.get("removed")),
            selected=_as_list(papers.get("selected")),
        )


@dataclass
class HistoryEntry:
    """A single state transition recorded on a paper."""

    timestamp: str
    action: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "action": self.action, "details": dict(self.details)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        data = _as_dict(data)
        return cls(
            timestamp=data.get("timestamp") or data.get("ts") or "",
            action=data.get("action") or "",
            details=_as_dict(data.get("details")),
        )


# ── Paper ─────────────────────────────────────────────────────


@dataclass
class Paper:
    """A tracked reference with screening status and an append-only history."""

    id: str | None = None
    url: str = ""
    title: str = ""
    authors: list[str] = field(default_factory=list)
    authors_raw: str = ""
    year: int | None = None
    origin: Origin = "unknown"
    status: Status = "pending"
    iteration_id: str | None = None
    criteria_id: str | None = None
    tags: list[str] = field(default_factory=list)
    visited: bool = False
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    history: list[HistoryEntry] = field(default_factory=list)

    def record(self, action: str, **details: Any) -> HistoryEntry:
        """Append one history entry and bump ``updated_at``.

        Timestamps never go backwards relative to the last entry, so the
        log stays ordered even if the wall clock steps back.
        """
        ts = now_iso()
        if self.history and self.history[-1].timestamp > ts:
            ts = self.history[-1].timestamp
        entry = HistoryEntry(timestamp=ts, action=action, details=details)
        self.history.append(entry)
        self.updated_at = ts
        return entry

    def trim_history(self, limit: int) -> int:
        """Drop the oldest entries beyond ``limit``. Returns how many were dropped."""
        excess = len(self.history) - limit
        if limit <= 0 or excess <= 0:
            return 0
        del self.history[:excess]
        return excess

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "authors": list(self.authors),
            "authorsRaw": self.authors_raw,
            "year": self.year,
            "origin": self.origin,
            "status": self.status,
            "iterationId": self.iteration_id,
            "criteriaId": self.criteria_id,
            "tags": list(self.tags),
            "visited": self.visited,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "history": [h.to_dict() for h in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Paper:
        if not isinstance(data, dict):
            raise TypeError(f"Paper document must be an object, got {type(data).__name__}")
        year = data.get("year")
        origin = data.get("origin")
        status = data.get("status")
        return cls(
            id=data.get("id"),
            url=data.get("url") or "",
            title=data.get("title") or "",
            authors=_as_list(data.get("authors")),
            authors_raw=data.get("authorsRaw") or "",
            year=int(year) if year not in (None, "") else None,
            origin=origin if origin in ORIGINS else "unknown",
            status=status if status in STATUSES else "pending",
            iteration_id=data.get("iterationId"),
            criteria_id=data.get("criteriaId"),
            tags=_as_list(data.get("tags")),
            visited=bool(data.get("visited")),
            created_at=data.get("createdAt") or now_iso(),
            updated_at=data.get("updatedAt") or now_iso(),
            history=[HistoryEntry.from_dict(h) for h in _as_list(data.get("history"))],
        )


# ── Project ───────────────────────────────────────────────────


@dataclass
class Project:
    """Top-level research project. ``id`` doubles as its storage directory name."""

    id: str
    name: str = ""
    description: str = ""
    researchers: list[str] = field(default_factory=list)
    objective: str = ""
    criteria: str = ""
    categories: list[Category] = field(default_factory=list)
    selection_criteria: list[Criterion] = field(default_factory=list)
    phases: list[Phase] = field(default_factory=list)
    papers: list[Paper] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    is_current: bool = False

    def __post_init__(self) -> None:
        if not is_valid_project_id(self.id):
            raise ValueError(
                f"Invalid project id {self.id!r}: use only letters, numbers, dots, "
                "underscores, and hyphens."
            )

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__ and value != self.__dict__["id"]:
            raise AttributeError("Project id is immutable once assigned")
        super().__setattr__(name, value)

    def add_paper(self, paper: Paper | dict[str, Any]) -> Paper:
        p = paper if isinstance(paper, Paper) else Paper.from_dict(paper)
        self.papers.append(p)
        return p

    def touch(self) -> None:
        self.updated_at = now_iso()

    def to_dict(self) -> dict[str, Any]:
        """Encode for storage. ``is_current`` is transient and never written."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "researchers": list(self.researchers),
            "objective": self.objective,
            "criteria": self.criteria,
            "categories": [c.to_dict() for c in self.categories],
            "selectionCriteria": [c.to_dict() for c in self.selection_criteria],
            "phases": [p.to_dict() for p in self.phases],
            "papers": [p.to_dict() for p in self.papers],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], project_id: str | None = None) -> Project:
        """Decode a project document; ``project_id`` wins over any id inside it."""
        if not isinstance(data, dict):
            raise TypeError(f"Project document must be an object, got {type(data).__name__}")
        pid = project_id if project_id is not None else data.get("id")
        return cls(
            id=pid,
            name=data.get("name") or "",
            description=data.get("description") or "",
            researchers=_as_list(data.get("researchers")),
            objective=data.get("objective") or "",
            criteria=data.get("criteria") if isinstance(data.get("criteria"), str) else "",
            categories=[Category.from_dict(c) for c in _as_list(data.get("categories"))],
            selection_criteria=[
                Criterion.from_dict(c) for c in _as_list(data.get("selectionCriteria"))
            ],
            phases=[Phase.from_dict(p) for p in _as_list(data.get("phases"))],
            papers=[Paper.from_dict(p) for p in _as_list(data.get("papers"))],
            created_at=data.get("createdAt") or now_iso(),
            updated_at=data.get("updatedAt") or now_iso(),
            is_current=bool(data.get("isCurrent")),
        )
