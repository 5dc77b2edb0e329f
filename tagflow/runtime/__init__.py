"""Wrappers around the external container tooling and registry API."""

from .builder import BuilderHandle, BuilderManager, builder_name
from .build import BuildResult, MultiStageBuildExecutor, parse_image_tag
from .docker import DockerClient, extract_push_digest
from .registry_api import RegistryApiClient, match_repository

__all__ = [
    "BuilderHandle",
    "BuilderManager",
    "builder_name",
    "BuildResult",
    "MultiStageBuildExecutor",
    "parse_image_tag",
    "DockerClient",
    "extract_push_digest",
    "RegistryApiClient",
    "match_repository",
]
