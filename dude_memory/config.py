"""
Store configuration.

The configuration bag every adapter is constructed from. Values come from
(lowest to highest precedence) dataclass defaults, the ``storage`` section
of ``~/.dude-claude/settings.yaml``, and ``DUDE_*`` environment variables.

Example settings.yaml:

```yaml
storage:
  db_path: ~/.dude-claude/dude-libsql.db
  sync_url: libsql://memory-acme.turso.io
  auth_token: "..."
  sync_interval: 60000   # milliseconds
  recency_hours: 2
  context_limit: 8
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ValidationError

DEFAULT_DATA_DIR = Path.home() / ".dude-claude"
NATIVE_DB_NAME = "dude-libsql.db"
LEGACY_DB_NAME = "dude.db"
SETTINGS_FILE_NAME = "settings.yaml"

VECTOR_DIMENSIONS = 384  # all-MiniLM-L6-v2

# env var -> (field, converter)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "DUDE_DATA_DIR": ("data_dir", "path"),
    "DUDE_DB_PATH": ("db_path", "path"),
    "DUDE_DB_URL": ("url", "str"),
    "DUDE_LEGACY_DB_PATH": ("legacy_db_path", "path"),
    "DUDE_TURSO_URL": ("sync_url", "str"),
    "DUDE_TURSO_TOKEN": ("auth_token", "str"),
    "DUDE_SYNC_INTERVAL": ("sync_interval", "int"),
    "DUDE_PROJECT": ("project_name", "str"),
    "DUDE_RECENCY_HOURS": ("recency_hours", "float"),
    "DUDE_CONTEXT_LIMIT": ("context_limit", "int"),
}


def _convert(name: str, raw: Any, kind: str) -> Any:
    if raw is None:
        return None
    if kind == "path":
        return Path(str(raw)).expanduser()
    if kind == "str":
        return str(raw)
    try:
        return int(raw) if kind == "int" else float(raw)
    except (TypeError, ValueError):
        raise ValidationError(name, f"expected {kind}", str(raw)) from None


@dataclass
class StoreConfig:
    """Configuration for a memory store (both backends)."""

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    db_path: Path | None = None  # native store file
    url: str | None = None  # libSQL URL; wins over db_path
    legacy_db_path: Path | None = None
    sync_url: str | None = None
    auth_token: str | None = None
    sync_interval: int | None = None  # milliseconds between replica syncs
    vector_dimensions: int = VECTOR_DIMENSIONS
    project_name: str | None = None  # overrides git detection
    cwd: Path | None = None

    # Consumed by hooks/CLIs, carried here so they are resolved in one place
    recency_hours: float = 1.0
    context_limit: int = 5

    def __post_init__(self) -> None:
        if self.vector_dimensions <= 0:
            raise ValidationError(
                "vector_dimensions", "must be positive", str(self.vector_dimensions)
            )
        if self.sync_interval is not None and self.sync_interval <= 0:
            raise ValidationError("sync_interval", "must be positive", str(self.sync_interval))

    @property
    def native_path(self) -> Path | None:
        """Local file of the native store, or None for a remote-only URL."""
        if self.url:
            if self.url.startswith("file:"):
                return Path(self.url[len("file:"):]).expanduser()
            return None
        return self.db_path or self.data_dir / NATIVE_DB_NAME

    @property
    def legacy_path(self) -> Path:
        return self.legacy_db_path or self.data_dir / LEGACY_DB_NAME

    @property
    def is_remote(self) -> bool:
        return self.native_path is None

    @property
    def working_dir(self) -> Path:
        return self.cwd or Path.cwd()

    @classmethod
    def from_env(cls, base: StoreConfig | None = None) -> StoreConfig:
        """Create config from environment variables.

        Args:
            base: Config whose values are used where no env var is set.
        """
        values = _as_kwargs(base) if base else {}
        for env_name, (field_name, kind) in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw:
                values[field_name] = _convert(env_name, raw, kind)
        return cls(**values)

    @classmethod
    def from_settings(cls, path: Path | None = None) -> StoreConfig:
        """Create config from the YAML settings file, then apply env overrides.

        A missing file is not an error; defaults and env vars still apply.
        """
        data_dir = Path(os.environ.get("DUDE_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()
        settings_path = path or data_dir / SETTINGS_FILE_NAME

        storage: dict[str, Any] = {}
        if settings_path.exists():
            with open(settings_path) as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValidationError(str(settings_path), "settings file must be a mapping")
            storage = loaded.get("storage") or {}

        known = {f.name: f for f in fields(cls)}
        kinds = {field_name: kind for field_name, kind in _ENV_FIELDS.values()}
        kinds["vector_dimensions"] = "int"
        kinds["cwd"] = "path"

        values: dict[str, Any] = {}
        for key, raw in storage.items():
            if key not in known:
                raise ValidationError(f"storage.{key}", "unknown setting")
            values[key] = _convert(f"storage.{key}", raw, kinds.get(key, "str"))

        return cls.from_env(base=cls(**values))


def _as_kwargs(config: StoreConfig) -> dict[str, Any]:
    return {f.name: getattr(config, f.name) for f in fields(config)}
