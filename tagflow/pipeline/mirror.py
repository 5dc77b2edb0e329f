"""Mirror stable images from the primary registry to Docker Hub."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from tagflow.common.catalog import ImageCatalog, ImageFamily
from tagflow.common.config import PipelineConfig
from tagflow.common.issues import PipelineIssue
from tagflow.common.logs import log_section
from tagflow.runtime.docker import DockerClient

DOCKER_HUB = "docker.io"


def mirror_mappings(
    families: Union[ImageCatalog, Sequence[ImageFamily]],
    namespace: str,
) -> List[Tuple[str, str]]:
    """
    ``(primary tag, docker hub reference)`` pairs for every stable image.

    ``php:8.3-prod`` -> ``ns/php:8.3-prod`` (and ``latest-prod``);
    ``database:mysql-8.0`` -> ``ns/mysql:8.0`` via ``mirror_as``.
    """
    if isinstance(families, ImageCatalog):
        families = families.families

    mappings: List[Tuple[str, str]] = []
    for family in families:
        if family.is_multi_stage:
            for prefix in (family.version, "latest"):
                for stage in family.stage_names:
                    tag = f"{family.name}:{prefix}-{stage}"
                    mappings.append((tag, f"{namespace}/{tag}"))
        else:
            hub_name = family.mirror_as or f"{family.name}:{family.version}"
            mappings.append((f"{family.name}:{family.version}", f"{namespace}/{hub_name}"))
    return mappings


@dataclass
class MirrorResult:
    synced: List[str] = field(default_factory=list)
    issues: List[PipelineIssue] = field(default_factory=list)
    logged_in: bool = True

    @property
    def failed(self) -> int:
        return sum(1 for issue in self.issues if issue.code != "MIRROR_LOGIN_FAILED")

    @property
    def success(self) -> bool:
        return self.logged_in


class DockerHubMirror:
    """Best-effort copy of stable tags to Docker Hub; only a failed login is fatal."""

    def __init__(
        self,
        docker: DockerClient,
        config: PipelineConfig,
        catalog: Union[ImageCatalog, Sequence[ImageFamily]],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.docker = docker
        self.config = config
        self.families = catalog.families if isinstance(catalog, ImageCatalog) else list(catalog)
        self.logger = logger or logging.getLogger(__name__)

    def sync(self) -> MirrorResult:
        result = MirrorResult()
        log_section(self.logger, "Mirroring Images to Docker Hub")
        self.logger.info("Primary registry: %s", self.config.registry_image)
        self.logger.info("Docker Hub namespace: %s", self.config.mirror_namespace)

        self.logger.info("→ Logging in to Docker Hub…")
        login = self.docker.login(DOCKER_HUB, self.config.dockerhub_username, self.config.dockerhub_token)
        if not login.succeeded():
            self.logger.error("Failed to login to Docker Hub: %s", login.error_output())
            result.logged_in = False
            result.issues.append(
                PipelineIssue(code="MIRROR_LOGIN_FAILED", message="Failed to login to Docker Hub", subject=DOCKER_HUB)
            )
            return result

        try:
            mappings = mirror_mappings(self.families, self.config.mirror_namespace)
            self.logger.info("→ Syncing %d images to Docker Hub…", len(mappings))
            for primary_tag, hub_reference in mappings:
                self._sync_one(f"{self.config.registry_image}/{primary_tag}", hub_reference, result)
        finally:
            self.logger.info("→ Logging out from Docker Hub…")
            self.docker.logout(DOCKER_HUB)

        log_section(self.logger, "Docker Hub Sync Summary")
        if result.failed:
            self.logger.warning("⚠️ %d images synced, %d failed", len(result.synced), result.failed)
        else:
            self.logger.info("✅ All %d images mirrored to Docker Hub", len(result.synced))
        return result

    def _sync_one(self, source: str, hub_reference: str, result: MirrorResult) -> None:
        self.logger.info("Syncing %s → %s", source, hub_reference)
        steps = (
            ("pull", lambda: self.docker.pull(source)),
            ("tag", lambda: self.docker.tag(source, hub_reference)),
            ("push", lambda: self.docker.push(hub_reference)),
        )
        for step, action in steps:
            outcome = action()
            if not outcome.succeeded():
                self.logger.warning("  ✗ Failed to %s %s", step, hub_reference)
                result.issues.append(
                    PipelineIssue(
                        code=f"MIRROR_{step.upper()}_FAILED",
                        message=f"Failed to {step} {hub_reference}: {outcome.error_output()[:200]}",
                        severity="warning",
                        subject=hub_reference,
                    )
                )
                return
        self.logger.info("  ✓ %s synced", hub_reference)
        result.synced.append(hub_reference)
