"""Removal of commit-scoped staging tags and dangling manifests after promotion."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from tagflow.common.catalog import ImageCatalog, ImageFamily
from tagflow.common.config import PipelineConfig
from tagflow.common.errors import ConfigurationError, RegistryApiError
from tagflow.common.issues import PipelineIssue
from tagflow.common.logs import log_section
from tagflow.common.models import RegistryRepository, RegistryTag
from tagflow.runtime.registry_api import RegistryApiClient, match_repository

MB = 1024 * 1024


@dataclass
class CleanupResult:
    """Counters and warnings from one garbage collection run."""

    deleted: int = 0
    skipped: int = 0
    dangling_deleted: int = 0
    repository_count: int = 0
    total_size_bytes: int = 0
    deleted_tags: List[str] = field(default_factory=list)
    issues: List[PipelineIssue] = field(default_factory=list)

    @property
    def total_size_mb(self) -> int:
        return self.total_size_bytes // MB


class StagingGarbageCollector:
    """Delete staging tags through the registry API. Every failure here is non-fatal."""

    def __init__(
        self,
        api: RegistryApiClient,
        config: PipelineConfig,
        catalog: Union[ImageCatalog, Sequence[ImageFamily]],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api = api
        self.config = config
        self.families = catalog.families if isinstance(catalog, ImageCatalog) else list(catalog)
        self.logger = logger or logging.getLogger(__name__)

    def cleanup_staging_tags(self, suffix: str) -> CleanupResult:
        if not suffix:
            raise ConfigurationError("Refusing to clean up staging tags without a staging suffix")

        result = CleanupResult()
        log_section(self.logger, f"Cleaning up staging tags with suffix: {suffix}")
        self.logger.info("Registry: %s", self.config.registry_host)
        self.logger.info("Project: %s", self.config.project_path)

        repositories = self._list_repositories(result)
        result.repository_count = len(repositories)

        for family in self.families:
            stages: List[Optional[str]] = list(family.stage_names) if family.is_multi_stage else [None]
            for stage in stages:
                self._delete_staging_tag(repositories, family, family.staging_tag_name(suffix, stage), result)

        remaining = self._sweep_dangling(repositories, result)
        self._report_usage(remaining, result)

        self.logger.info(
            "Cleanup finished: %d deleted, %d skipped, %d dangling manifests removed, %d warnings",
            result.deleted,
            result.skipped,
            result.dangling_deleted,
            len(result.issues),
        )
        return result

    def _repository_path(self, family: ImageFamily) -> str:
        project_path = self.config.project_path
        return f"{project_path}/{family.name}" if project_path else family.name

    def _delete_staging_tag(
        self,
        repositories: List[RegistryRepository],
        family: ImageFamily,
        tag: str,
        result: CleanupResult,
    ) -> None:
        path = self._repository_path(family)
        repository = match_repository(repositories, path)
        if repository is None:
            self.logger.warning("Repository not found: %s", path)
            result.skipped += 1
            return

        try:
            self.logger.info("Deleting tag: %s:%s", path, tag)
            if self.api.delete_tag(repository.id, tag):
                self.logger.info("  ✓ Deleted %s:%s", path, tag)
                result.deleted += 1
                result.deleted_tags.append(f"{path}:{tag}")
            else:
                self.logger.info("  - %s:%s already absent", path, tag)
                result.skipped += 1
        except RegistryApiError as exc:
            self.logger.warning("  ✗ Failed to delete %s:%s: %s", path, tag, exc)
            result.issues.append(
                PipelineIssue(
                    code="TAG_DELETE_FAILED",
                    message=str(exc),
                    severity="warning",
                    subject=f"{path}:{tag}",
                )
            )

    def _list_repositories(self, result: CleanupResult) -> List[RegistryRepository]:
        try:
            return self.api.list_repositories()
        except RegistryApiError as exc:
            self.logger.warning("Could not list registry repositories: %s", exc)
            result.issues.append(
                PipelineIssue(code="REPOSITORY_LIST_FAILED", message=str(exc), severity="warning")
            )
            return []

    def _sweep_dangling(
        self, repositories: List[RegistryRepository], result: CleanupResult
    ) -> Dict[str, List[RegistryTag]]:
        """Delete untagged digests and return the tags left in each repository that could be listed."""
        log_section(self.logger, "Cleaning up untagged images")
        remaining: Dict[str, List[RegistryTag]] = {}
        for repository in repositories:
            self.logger.info("Checking repository %s (ID %s) for untagged images…", repository.path, repository.id)
            try:
                kept: List[RegistryTag] = []
                remaining[repository.path] = kept
                for tag in self.api.list_tags(repository.id):
                    if not tag.dangling or not tag.digest:
                        kept.append(tag)
                        continue
                    self.logger.info("Deleting untagged digest: %s", tag.digest)
                    if self.api.delete_tag(repository.id, tag.digest):
                        result.dangling_deleted += 1
                    else:
                        kept.append(tag)
            except RegistryApiError as exc:
                self.logger.warning("Failed to clean untagged images in %s: %s", repository.path, exc)
                result.issues.append(
                    PipelineIssue(
                        code="DANGLING_CLEANUP_FAILED",
                        message=str(exc),
                        severity="warning",
                        subject=repository.path,
                    )
                )
        return remaining

    def _report_usage(self, remaining: Dict[str, List[RegistryTag]], result: CleanupResult) -> None:
        log_section(self.logger, "Registry Statistics")
        for tags in remaining.values():
            result.total_size_bytes += sum(tag.total_size for tag in tags)
        self.logger.info("Total repositories: %d", result.repository_count)
        self.logger.info("Total registry size: %d MB", result.total_size_mb)
