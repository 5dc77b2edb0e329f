"""Immutable pipeline configuration resolved once from the CI environment."""

import os
import shlex
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigurationError
from .retry import RetryPolicy

CacheMode = Literal["disabled", "enabled", "default"]
StageCheckMode = Literal["registry", "local"]

# Field name -> environment variable it is read from.
ENV_NAMES: Dict[str, str] = {
    "registry_image": "CI_REGISTRY_IMAGE",
    "image_suffix": "IMAGE_SUFFIX",
    "promoted_version": "PROMOTED_VERSION",
    "project_id": "CI_PROJECT_ID",
    "registry_token": "CI_REGISTRY_PASSWORD",
    "registry_api_url": "REGISTRY_API_URL",
    "auth_header": "REGISTRY_AUTH_HEADER",
    "images_dir": "IMAGES_DIR",
    "platform": "PLATFORM",
    "push": "PUSH_TO_REGISTRY",
    "dry_run": "DRY_RUN",
    "build_args": "BUILD_ARGS",
    "pipeline_id": "CI_PIPELINE_ID",
    "commit_sha": "CI_COMMIT_SHORT_SHA",
    "commit_tag": "CI_COMMIT_TAG",
    "dockerhub_username": "DOCKERHUB_USERNAME",
    "dockerhub_token": "DOCKERHUB_TOKEN",
    "dockerhub_namespace": "DOCKERHUB_NAMESPACE",
    "rollback_tag": "ROLLBACK_TAG",
    "stage_check_mode": "STAGE_CHECK_MODE",
    "retry_attempts": "RETRY_ATTEMPTS",
    "retry_delay": "RETRY_DELAY",
    "catalog_path": "IMAGE_CATALOG",
    "size_report_path": "OUTPUT_FILE",
}


def _env(field_name: str, default: str = "") -> str:
    return os.environ.get(ENV_NAMES[field_name], default)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_cache_mode() -> CacheMode:
    if _env_bool("NO_CACHE"):
        return "disabled"
    if _env_bool("CACHE_ENABLED"):
        return "enabled"
    return "default"


class PipelineConfig(BaseModel):
    """Configuration shared by every pipeline component.

    Each field falls back to its CI environment variable, so ``PipelineConfig()``
    inside a CI job picks up the job's settings while tests pass values explicitly.
    """

    model_config = ConfigDict(frozen=True)

    # Registry settings
    registry_image: str = Field(default_factory=lambda: _env("registry_image") or os.environ.get("DOCKER_REGISTRY", ""))
    image_suffix: str = Field(default_factory=lambda: _env("image_suffix"))
    project_id: str = Field(default_factory=lambda: _env("project_id"))
    registry_token: str = Field(default_factory=lambda: _env("registry_token"), repr=False)
    registry_api_url: Optional[str] = Field(default_factory=lambda: _env("registry_api_url") or None)
    auth_header: str = Field(default_factory=lambda: _env("auth_header", "PRIVATE-TOKEN"))

    # Build settings
    images_dir: str = Field(default_factory=lambda: _env("images_dir", "images"))
    platform: str = Field(default_factory=lambda: _env("platform", "linux/amd64"))
    cache_mode: CacheMode = Field(default_factory=_env_cache_mode)
    push: bool = Field(default_factory=lambda: _env_bool(ENV_NAMES["push"], True))
    dry_run: bool = Field(default_factory=lambda: _env_bool(ENV_NAMES["dry_run"]))
    build_args: List[str] = Field(default_factory=lambda: shlex.split(_env("build_args")))
    pipeline_id: str = Field(default_factory=lambda: _env("pipeline_id") or str(os.getpid()))
    commit_sha: str = Field(default_factory=lambda: _env("commit_sha", "local"))
    commit_tag: str = Field(default_factory=lambda: _env("commit_tag", "N/A"))

    # Release settings
    promoted_version: str = Field(default_factory=lambda: _env("promoted_version"))
    rollback_tag: str = Field(default_factory=lambda: _env("rollback_tag"))
    stage_check_mode: Optional[StageCheckMode] = Field(default_factory=lambda: _env("stage_check_mode") or None)

    # Docker Hub mirror settings
    dockerhub_username: str = Field(default_factory=lambda: _env("dockerhub_username"))
    dockerhub_token: str = Field(default_factory=lambda: _env("dockerhub_token"), repr=False)
    dockerhub_namespace: Optional[str] = Field(default_factory=lambda: _env("dockerhub_namespace") or None)

    # Retry settings
    retry_attempts: int = Field(default_factory=lambda: int(_env("retry_attempts", "3")))
    retry_delay: float = Field(default_factory=lambda: float(_env("retry_delay", "5")))

    # Reporting
    catalog_path: Optional[str] = Field(default_factory=lambda: _env("catalog_path") or None)
    size_report_path: str = Field(default_factory=lambda: _env("size_report_path", "image-sizes.txt"))
    size_threshold_mb: int = 100

    @field_validator("registry_image")
    @classmethod
    def _strip_registry(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("retry_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("retry_attempts must be >= 1")
        return value

    @property
    def registry_host(self) -> str:
        return self.registry_image.split("/", 1)[0]

    @property
    def project_path(self) -> str:
        parts = self.registry_image.split("/", 1)
        return parts[1] if len(parts) > 1 else ""

    @property
    def api_url(self) -> str:
        """Registry management API root, e.g. ``https://gitlab.com/api/v4``."""
        if self.registry_api_url:
            return self.registry_api_url.rstrip("/")
        host = self.registry_host
        if host.startswith("registry."):
            host = host[len("registry."):]
        return f"https://{host}/api/v4"

    @property
    def local_suffix(self) -> str:
        """Staging suffix for commands that also run outside CI."""
        return self.image_suffix or "-local"

    @property
    def stage_check(self) -> StageCheckMode:
        """Where stage existence is checked; images built with --load only exist locally."""
        if self.stage_check_mode:
            return self.stage_check_mode
        return "registry" if self.push else "local"

    @property
    def mirror_namespace(self) -> str:
        return self.dockerhub_namespace or self.dockerhub_username

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.retry_attempts, base_delay=self.retry_delay)

    def require(self, *fields: str) -> None:
        """Raise ConfigurationError naming every required setting that is unset."""
        missing = [ENV_NAMES.get(name, name) for name in fields if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {' '.join(missing)}")

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Return a copy with explicitly provided (non-None) values replaced."""
        values = {key: value for key, value in overrides.items() if value is not None}
        if not values:
            return self
        return PipelineConfig.model_validate({**self.model_dump(), **values})
