"""Session data model and the snapshot exchanged across transports.

The wire shape is camelCase JSON::

    {"session": {"phase": "Running", "startedAt": 1700000000000,
                 "endedAt": null, "assignments": {"AAPL": "Alice"}},
     "catalog": [{"id": "AAPL", "name": "...", "category": "...", "hint": "..."}],
     "updatedAt": 1700000000000}

``Snapshot.from_dict`` accepts whatever a backend hands back and never raises.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionPhase(Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    ENDED = "Ended"

    @classmethod
    def parse(cls, value: Any) -> "SessionPhase":
        for phase in cls:
            if phase.value == value:
                return phase
        return cls.IDLE


@dataclass(frozen=True)
class CatalogEntry:
    """One claimable box. ``id`` doubles as the display symbol."""
    id: str
    name: str = ""
    category: str = ""
    hint: str = ""

    @property
    def symbol(self) -> str:
        return self.id

    def to_dict(self) -> dict[str, str]:
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'hint': self.hint,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CatalogEntry | None":
        if not isinstance(data, dict):
            return None
        entry_id = data.get('id')
        if entry_id is None or str(entry_id).strip() == "":
            return None
        return cls(
            id=str(entry_id),
            name=str(data.get('name') or ""),
            category=str(data.get('category') or ""),
            hint=str(data.get('hint') or ""),
        )


def _timestamp(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


@dataclass
class GameSession:
    phase: SessionPhase = SessionPhase.IDLE
    started_at: int | None = None
    ended_at: int | None = None
    assignments: dict[str, str] = field(default_factory=dict)

    def owner_of(self, entry_id: str) -> str | None:
        return self.assignments.get(entry_id)

    def entry_of(self, claimant_name: str) -> str | None:
        """Entry held by ``claimant_name``, if any."""
        for entry_id, owner in self.assignments.items():
            if owner == claimant_name:
                return entry_id
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            'phase': self.phase.value,
            'startedAt': self.started_at,
            'endedAt': self.ended_at,
            'assignments': dict(self.assignments),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "GameSession":
        if not isinstance(data, dict):
            return cls()
        raw_assignments = data.get('assignments')
        assignments = {}
        if isinstance(raw_assignments, dict):
            assignments = {str(k): str(v) for k, v in raw_assignments.items() if v is not None}
        return cls(
            phase=SessionPhase.parse(data.get('phase')),
            started_at=_timestamp(data.get('startedAt')),
            ended_at=_timestamp(data.get('endedAt')),
            assignments=assignments,
        )


@dataclass
class Snapshot:
    session: GameSession = field(default_factory=GameSession)
    catalog: list[CatalogEntry] = field(default_factory=list)
    updated_at: int = 0

    def entry_ids(self) -> set[str]:
        return {entry.id for entry in self.catalog}

    def with_session(self, session: GameSession) -> "Snapshot":
        """Copy carrying ``session`` and a fresh ``updatedAt``."""
        return replace(self, session=session, updated_at=now_ms())

    def to_dict(self) -> dict[str, Any]:
        return {
            'session': self.session.to_dict(),
            'catalog': [entry.to_dict() for entry in self.catalog],
            'updatedAt': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        if not isinstance(data, dict):
            return cls()
        catalog = []
        raw_catalog = data.get('catalog')
        if isinstance(raw_catalog, list):
            for item in raw_catalog:
                entry = CatalogEntry.from_dict(item)
                if entry is not None:
                    catalog.append(entry)
        session = GameSession.from_dict(data.get('session'))
        if session.phase is SessionPhase.IDLE:
            session.assignments = {}
        elif catalog:
            known = {entry.id for entry in catalog}
            session.assignments = {k: v for k, v in session.assignments.items() if k in known}
        return cls(
            session=session,
            catalog=catalog,
            updated_at=_timestamp(data.get('updatedAt')) or 0,
        )
