"""
Migration result types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class MigrationStats:
    """Counts copied by one legacy -> native migration.

    ``embeddings`` is lower than ``records`` when the legacy store holds
    orphan rows without a vec0 entry; those are copied with a NULL
    embedding.
    """

    projects: int = 0
    records: int = 0
    embeddings: int = 0

    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def counts(self) -> dict[str, int]:
        return {"projects": self.projects, "records": self.records, "embeddings": self.embeddings}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            **self.counts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }
