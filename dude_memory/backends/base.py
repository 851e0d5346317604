"""
Abstract base class and data model for memory store backends.

Both backends (legacy sqlite-vec, native libSQL) implement this interface,
so callers never know which engine holds their records.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import numpy as np
from numpy.typing import NDArray

from ..config import StoreConfig
from ..embeddings import EmbeddingProvider
from ..exceptions import NotInitializedError, ValidationError
from ..logging_utils import StorageLoggerAdapter, get_storage_logger
from ..search.ranking import as_vector

KINDS = ("issue", "spec", "arch", "update")
STATUSES = ("open", "resolved", "archived")

# list_records() filter values
ALL = "all"
CURRENT_PROJECT = "current"
ANY_PROJECT = "*"

DEFAULT_SEARCH_LIMIT = 5
RECENT_RECORDS_LIMIT = 10


def now_iso() -> str:
    """Current UTC time as ``2025-06-01T12:00:00.000Z``."""
    return format_timestamp(datetime.now(UTC))


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def recency_cutoff(hours: float) -> str:
    """Timestamp ``hours`` before now, in the stored format."""
    return format_timestamp(datetime.now(UTC) - timedelta(hours=hours))


@dataclass
class Project:
    """A repository-or-directory identity owning records."""

    id: int
    name: str
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Record:
    """A stored memory record (issue, spec, arch note or update)."""

    id: int
    project_id: int
    project: str  # owning project name
    kind: str
    title: str
    body: str
    status: str
    created_at: str
    updated_at: str
    similarity: float | None = None  # set by search only

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used by the tool and HTTP surfaces."""
        data: dict[str, Any] = {
            "id": self.id,
            "project": self.project,
            "kind": self.kind,
            "title": self.title,
            "body": self.body,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.similarity is not None:
            data["similarity"] = self.similarity
        return data

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> Record:
        """Build from a row selected with ``RECORD_COLUMNS``."""
        return cls(
            id=row[0],
            project_id=row[1],
            project=row[2],
            kind=row[3],
            title=row[4],
            body=row[5],
            status=row[6],
            created_at=row[7],
            updated_at=row[8],
        )


# Columns matching Record.from_row; queries alias record as r and project as p
RECORD_COLUMNS = (
    "r.id, r.project_id, p.name, r.kind, r.title, r.body, r.status, r.created_at, r.updated_at"
)


@dataclass
class RecordDraft:
    """Write-side input for ``upsert``."""

    kind: str
    title: str
    body: str = ""
    status: str = "open"
    id: int | None = None  # explicit update target
    project_id: int | None = None  # defaults to the current project

    def validate(self) -> None:
        """Reject values the tables would refuse, before any SQL runs."""
        if self.kind not in KINDS:
            raise ValidationError("kind", f"must be one of {', '.join(KINDS)}", self.kind)
        if self.status not in STATUSES:
            raise ValidationError("status", f"must be one of {', '.join(STATUSES)}", self.status)
        if not self.title or not self.title.strip():
            raise ValidationError("title", "must not be empty")
        if self.body is None:
            self.body = ""

    @property
    def text(self) -> str:
        """Text that is embedded for this record."""
        return f"{self.title} {self.body}".strip()


class StorageAdapter(ABC):
    """
    Abstract base for memory store backends.

    Implementations must support:
    - Project resolution for the working directory, with legacy-name merge
    - Record CRUD with kind/status validation
    - Nearest-neighbour search with project boost and relevance floor
    - Upsert with dedup against the nearest same-project, same-kind record

    Search and upsert take precomputed embeddings. ``search_text`` and
    ``upsert_text`` embed with the configured provider first.
    """

    backend_name: str  # "legacy" or "native", also the logger suffix

    def __init__(
        self,
        config: StoreConfig,
        embedding_provider: EmbeddingProvider | None = None,
    ):
        self.config = config
        self.embedding_provider = embedding_provider
        self._project: Project | None = None
        self._initialized = False
        self.log = StorageLoggerAdapter(
            get_storage_logger(self.backend_name), {"backend": self.backend_name}
        )

    @classmethod
    async def create(
        cls,
        config: StoreConfig | None = None,
        embedding_provider: EmbeddingProvider | None = None,
    ) -> StorageAdapter:
        """Create and initialize an adapter."""
        if config is None:
            config = StoreConfig.from_env()

        adapter = cls(config, embedding_provider)
        await adapter.initialize()
        return adapter

    @abstractmethod
    async def initialize(self) -> None:
        """Open the database, run schema steps and resolve the current project."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the database handle. Safe to call more than once."""
        pass

    async def __aenter__(self) -> StorageAdapter:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # =========================================================================
    # Projects
    # =========================================================================

    async def get_current_project(self) -> Project:
        """Project resolved for the working directory at initialize()."""
        return self._current_project("get_current_project")

    @abstractmethod
    async def list_projects(self) -> list[Project]:
        """All projects ordered by name."""
        pass

    # =========================================================================
    # Records
    # =========================================================================

    @abstractmethod
    async def search(
        self,
        embedding: Sequence[float] | NDArray,
        kind: str | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[Record]:
        """
        Rank stored records by similarity to a query embedding.

        Args:
            embedding: Unit-length query vector
            kind: Optional kind filter
            limit: Maximum number of results

        Returns:
            Records with ``similarity`` set, best first; empty when nothing
            clears the relevance floor
        """
        pass

    @abstractmethod
    async def upsert(
        self,
        draft: RecordDraft,
        embedding: Sequence[float] | NDArray,
    ) -> Record | None:
        """
        Insert a record, or update the explicit id or near-duplicate.

        Args:
            draft: Record fields; ``draft.id`` forces an in-place update
            embedding: Unit-length embedding of the record text

        Returns:
            The saved record, or None when ``draft.id`` does not exist
        """
        pass

    @abstractmethod
    async def get(self, record_id: int) -> Record | None:
        """Fetch one record by id."""
        pass

    @abstractmethod
    async def list_records(
        self,
        kind: str | None = None,
        status: str | None = None,
        project: str | None = None,
    ) -> list[Record]:
        """
        List records, most recently updated first.

        Args:
            kind: Kind filter; None or "all" for every kind
            status: Status filter; None or "all" for every status
            project: None or "current" for the current project, "*" for
                every project, otherwise a project name
        """
        pass

    @abstractmethod
    async def delete(self, record_id: int) -> bool:
        """Delete a record. Returns False when it did not exist."""
        pass

    @abstractmethod
    async def get_recent_records(self, project_id: int, hours: float = 1) -> list[Record]:
        """Up to 10 records of a project updated within the last ``hours``."""
        pass

    # =========================================================================
    # Text helpers
    # =========================================================================

    async def search_text(
        self,
        query: str,
        kind: str | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[Record]:
        """Embed ``query`` with the configured provider, then search."""
        embedding = await self._embed("search_text", query)
        return await self.search(embedding, kind=kind, limit=limit)

    async def upsert_text(self, draft: RecordDraft) -> Record | None:
        """Embed the draft's title and body with the configured provider, then upsert."""
        draft.validate()
        embedding = await self._embed("upsert_text", draft.text)
        return await self.upsert(draft, embedding)

    async def _embed(self, operation: str, text: str) -> NDArray:
        if self.embedding_provider is None:
            raise ValueError(f"{operation} requires an embedding provider")
        return self._validate_embedding(await self.embedding_provider.embed_text(text))

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def _bind_project(self, name: str) -> None:
        """Stamp every later log line with the resolved project name."""
        self.log = StorageLoggerAdapter(
            self.log.logger, {"backend": self.backend_name, "project": name}
        )

    def _current_project(self, operation: str) -> Project:
        if not self._initialized or self._project is None:
            raise NotInitializedError(operation)
        return self._project

    def _validate_embedding(self, embedding: Sequence[float] | NDArray) -> NDArray:
        try:
            return as_vector(embedding, self.config.vector_dimensions)
        except ValueError as e:
            raise ValidationError("embedding", str(e)) from None

    @staticmethod
    def _validate_filters(kind: str | None, status: str | None) -> tuple[str | None, str | None]:
        """Normalize list filters: "all" means no filter."""
        kind = None if kind in (None, ALL) else kind
        status = None if status in (None, ALL) else status
        if kind is not None and kind not in KINDS:
            raise ValidationError("kind", f"must be one of {', '.join(KINDS)}", kind)
        if status is not None and status not in STATUSES:
            raise ValidationError("status", f"must be one of {', '.join(STATUSES)}", status)
        return kind, status

    @staticmethod
    def _validate_limit(limit: int) -> int:
        if isinstance(limit, bool) or not isinstance(limit, (int, np.integer)) or limit < 1:
            raise ValidationError("limit", "must be a positive integer", str(limit))
        return int(limit)
