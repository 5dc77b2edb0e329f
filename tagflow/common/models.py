"""Data passed between build, validation, promotion and cleanup steps."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


@dataclass(frozen=True)
class StagingTag:
    """A commit-scoped image produced by one build. Never mutated once created."""

    reference: str
    family: str
    version_tag: str
    stage: Optional[str]
    context: str
    registry: str
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    dry_run: bool = False

    @property
    def tag(self) -> str:
        return self.reference.rsplit(":", 1)[1]


@dataclass
class StableTagSet:
    """Stable tags published for one (family, stage) pair, all on one digest."""

    family: str
    stage: Optional[str]
    source: str
    tags: List[str]
    digest: Optional[str] = None


@dataclass(frozen=True)
class RegistryRepository:
    """Container repository as reported by the registry API."""

    id: int
    name: str
    path: str


@dataclass(frozen=True)
class RegistryTag:
    """Tag entry inside a registry repository. ``name`` is None for dangling manifests."""

    name: Optional[str]
    digest: Optional[str] = None
    total_size: int = 0

    @property
    def dangling(self) -> bool:
        return not self.name
