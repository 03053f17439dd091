"""Run configuration, with tunable defaults loaded from environment variables."""

from __future__ import annotations

import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import ConfigurationError
from .utils import get_ledger_name

__all__ = [
    "Destination",
    "MigrationConfig",
]

# 2.5 MiB of serialized nodes per output document
DEFAULT_FLUSH_SIZE = int(2.5 * 1024 * 1024)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _default_spill_dir() -> Path:
    return Path(
        os.getenv(
            "LEDGERMIGRATE_SPILL_DIR",
            os.path.join(tempfile.gettempdir(), "ledgermigrate-spill"),
        )
    )


class Destination(str, Enum):
    """Where transformed documents go; exactly one per run."""

    PRINT = "print"
    FILES = "files"
    REMOTE = "remote"


class MigrationConfig(BaseModel):
    """Every setting of one migration run."""

    source_url: str = Field(..., description="Source ledger URL (…/fdb/network/db)")
    source_credential: Optional[str] = None
    output_dir: Optional[Path] = Field(None, description="Write numbered files here")
    target_url: Optional[str] = Field(None, description="Transact into this server")
    target_credential: Optional[str] = None
    create_ledger: bool = False
    ledger: Optional[str] = Field(None, description="network/db override")

    base: Optional[str] = None
    vocab: Optional[str] = None
    namespace: Optional[str] = None
    context: dict[str, str] = Field(default_factory=dict)
    shacl: bool = False
    closed_shapes: bool = False

    page_size: int = Field(
        default_factory=lambda: _env_int("LEDGERMIGRATE_PAGE_SIZE", 5_000), gt=0,
    )
    spill_threshold: int = Field(
        default_factory=lambda: _env_int("LEDGERMIGRATE_SPILL_THRESHOLD", 12_500), gt=0,
    )
    max_concurrency: int = Field(
        default_factory=lambda: _env_int("LEDGERMIGRATE_MAX_CONCURRENCY", 10), gt=0,
    )
    flush_size: int = Field(DEFAULT_FLUSH_SIZE, gt=0)
    retry_attempts: int = Field(
        default_factory=lambda: _env_int("LEDGERMIGRATE_RETRY_ATTEMPTS", 5), gt=0,
    )
    retry_backoff: float = Field(
        default_factory=lambda: _env_float("LEDGERMIGRATE_RETRY_BACKOFF", 15.0), ge=0,
    )
    request_timeout: float = 300.0
    spill_dir: Path = Field(default_factory=_default_spill_dir)
    interactive: bool = True

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_consistency(self) -> MigrationConfig:
        if self.output_dir is not None and self.target_url is not None:
            raise ConfigurationError(
                "An output directory and a target ledger are mutually exclusive"
            )
        if self.namespace and not self.context:
            raise ConfigurationError(
                "You must specify a context when using a namespace\n\n"
                "Example: -c schema=http://schema.org/ -n schema"
            )
        return self

    @property
    def destination(self) -> Destination:
        if self.target_url is not None:
            return Destination.REMOTE
        if self.output_dir is not None:
            return Destination.FILES
        return Destination.PRINT

    @property
    def prefix(self) -> str:
        """IRI prefix for new classes and properties (``"ns:"`` or empty)."""
        return f"{self.namespace}:" if self.namespace else ""

    def ledger_name(self, url: Optional[str] = None) -> Optional[str]:
        """Explicit ledger, else ``network/db`` from *url* (default: the source url)."""
        if self.ledger:
            return self.ledger
        try:
            return get_ledger_name(url or self.source_url)
        except ValueError:
            return None
