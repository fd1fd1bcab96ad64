"""Per-instance configuration for a reload loop."""

import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from treeloader.errors import ConfigurationError

# Used when the entry itself has no suffix to infer the native extension from
DEFAULT_EXTENSION = ".py"
DEFAULT_MAX_DEPTH = 100


def normalize_extensions(values: list[str] | str | None) -> list[str]:
    """Normalize an extension allow-list to a de-duplicated ".ext" form.

    Accepts comma-separated items, so ["py,json", "toml"] and "py,json,toml"
    both normalize to [".py", ".json", ".toml"].
    """
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]

    normalized: list[str] = []
    for value in values:
        for item in value.split(","):
            ext = item.strip()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            if ext not in normalized:
                normalized.append(ext)
    return normalized


class LoaderConfig(BaseModel):
    """Configuration for a single watch loop."""

    entry: str
    extensions: list[str] = Field(default_factory=list)
    verbose: bool = False

    # Dependency resolution
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=0)
    allow_cycles: bool = True
    search_paths: list[str] = Field(default_factory=list)

    # Spawned command
    interpreter: str | None = None
    args: list[str] = Field(default_factory=list)
    cwd: str | None = None

    # Reload policy; 0 disables debouncing
    debounce_seconds: float = Field(default=0.0, ge=0.0)

    # Channel capacities between actors
    event_queue_size: int = Field(default=256, ge=1)
    request_queue_size: int = Field(default=64, ge=1)
    error_queue_size: int = Field(default=64, ge=1)

    @field_validator("extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> list[str]:
        return normalize_extensions(value)

    @classmethod
    def build(cls, **kwargs: Any) -> "LoaderConfig":
        """Build and check a config, raising ConfigurationError on any problem."""
        try:
            config = cls(**kwargs)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        config.check()
        return config

    def check(self) -> None:
        """Validate the entry path.

        Raises:
            ConfigurationError: If the entry is empty or not an existing file.
        """
        if not self.entry or not self.entry.strip():
            raise ConfigurationError("Must include an entry program")
        path = self.entry_path
        if not path.exists():
            raise ConfigurationError(f"Entry program not found: {path}")
        if not path.is_file():
            raise ConfigurationError(f"Entry program is not a file: {path}")

    @property
    def entry_path(self) -> Path:
        """Absolute path to the entry program."""
        return Path(self.entry).expanduser().absolute()

    @property
    def python(self) -> str:
        """Interpreter used to run the entry program."""
        return self.interpreter or sys.executable

    def watched_extensions(self, native: str = DEFAULT_EXTENSION) -> frozenset[str]:
        """Extensions whose writes trigger a reload.

        Defaults to the entry program's own source extension.
        """
        if self.extensions:
            return frozenset(self.extensions)
        return frozenset([self.entry_path.suffix or native])
