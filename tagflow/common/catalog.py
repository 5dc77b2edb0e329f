"""Image family catalog models and loader."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "images.yaml"

KNOWN_STAGES = ("prod", "dev", "test")


class ToolAssertion(BaseModel):
    """Runtime expectation about a tool inside a built stage image."""

    model_config = ConfigDict(frozen=True)

    tool: str = Field(description="Human readable tool name (e.g., 'xdebug', 'composer').")
    command: List[str] = Field(description="Command executed inside an ephemeral container.")
    expect: Literal["present", "absent"] = Field(description="Whether the tool must be present or absent.")
    match: Literal["output", "exit_code"] = Field(
        default="output",
        description="'output': tool name appears in stdout (case-insensitive); 'exit_code': command success means present.",
    )
    severity: Literal["error", "warning"] = Field(
        default="error",
        description="Severity reported when the expectation is violated.",
    )

    @field_validator("command")
    @classmethod
    def _validate_command(cls, command: List[str]) -> List[str]:
        if not command:
            raise ValueError("Assertion command cannot be empty.")
        return command


class StageSpec(BaseModel):
    """One build target inside a multi-stage Dockerfile."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Build target name (prod, dev, test).")
    assertions: List[ToolAssertion] = Field(default_factory=list)
    expected_user: Optional[str] = Field(
        default=None,
        description="User the image is expected to run as; a mismatch is only a warning.",
    )

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Stage name cannot be empty.")
        return value


class ImageFamily(BaseModel):
    """A product line built from one Dockerfile, optionally with several stages."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Registry repository name (e.g., 'php', 'database').")
    version: str = Field(description="Technical version tag (e.g., '8.3', 'mysql-8.0').")
    path: str = Field(description="Build context path relative to the images directory.")
    stages: List[StageSpec] = Field(default_factory=list)
    mirror_as: Optional[str] = Field(
        default=None,
        description="Docker Hub repository:tag for single-stage images (e.g., 'mysql:8.0').",
    )

    @field_validator("name", "version", "path")
    @classmethod
    def _strip_whitespace(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Image family fields cannot be empty.")
        return value

    @model_validator(mode="after")
    def _ensure_unique_stages(self) -> "ImageFamily":
        names = [stage.name for stage in self.stages]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate stage names in family {self.key}: {names}")
        return self

    @property
    def key(self) -> str:
        return f"{self.name}:{self.version}"

    @property
    def is_multi_stage(self) -> bool:
        return bool(self.stages)

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def stage(self, name: str) -> StageSpec:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(f"Family {self.key} has no stage '{name}'")

    def staging_tag_name(self, suffix: str, stage: Optional[str] = None) -> str:
        """Tag name of a commit-scoped build, e.g. ``8.3-abc123-prod``."""
        stage_part = f"-{stage}" if stage else ""
        return f"{self.version}{suffix}{stage_part}"

    def staging_reference(self, registry: str, suffix: str, stage: Optional[str] = None) -> str:
        return f"{registry}/{self.name}:{self.staging_tag_name(suffix, stage)}"


class ImageCatalog(BaseModel):
    """Ordered set of image families handled by the pipeline."""

    families: List[ImageFamily] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ensure_unique_families(self) -> "ImageCatalog":
        seen = set()
        for family in self.families:
            if family.key in seen:
                raise ValueError(f"Duplicate image family detected: {family.key}")
            seen.add(family.key)
        return self

    @property
    def staged_families(self) -> List[ImageFamily]:
        return [family for family in self.families if family.is_multi_stage]

    def get(self, name: str, version: Optional[str] = None) -> ImageFamily:
        for family in self.families:
            if family.name == name and (version is None or family.version == version):
                return family
        label = f"{name}:{version}" if version else name
        raise KeyError(f"Unknown image family: {label}")

    def select(self, keys: Optional[List[str]] = None) -> List[ImageFamily]:
        """Return families matching ``name`` or ``name:version`` selectors, in catalog order."""
        if not keys:
            return list(self.families)
        selected = [
            family
            for family in self.families
            if family.name in keys or family.key in keys
        ]
        if not selected:
            raise KeyError(f"No image family matches {keys}")
        return selected


def load_catalog(path: str | Path | None = None) -> ImageCatalog:
    """Load image families from a YAML or JSON file (the packaged catalog by default)."""
    path = Path(path) if path else DEFAULT_CATALOG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Image catalog file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    elif suffix == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ValueError(f"Unsupported image catalog format: {suffix}")

    if data is None:
        raise ValueError(f"Image catalog file {path} is empty.")

    return ImageCatalog.model_validate(data)


__all__ = [
    "KNOWN_STAGES",
    "ToolAssertion",
    "StageSpec",
    "ImageFamily",
    "ImageCatalog",
    "load_catalog",
]
