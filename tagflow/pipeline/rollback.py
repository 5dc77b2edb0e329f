"""Manual disaster-recovery rollback of the ``latest`` stable tags."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from tagflow.common.catalog import ImageCatalog, ImageFamily
from tagflow.common.config import PipelineConfig
from tagflow.common.errors import ConfigurationError
from tagflow.common.issues import PipelineIssue
from tagflow.common.logs import log_section
from tagflow.runtime.docker import DockerClient


@dataclass
class RollbackResult:
    target_tag: str
    rolled_back: List[str] = field(default_factory=list)
    issues: List[PipelineIssue] = field(default_factory=list)
    aborted: bool = False

    @property
    def success(self) -> bool:
        return not self.aborted and not any(issue.is_error() for issue in self.issues)

    @property
    def failed(self) -> Dict[str, str]:
        return {issue.subject or "": issue.message for issue in self.issues if issue.is_error()}


class DisasterRecovery:
    """Re-point ``{family}:{version}-latest`` at a previously published tag."""

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

    @property
    def representative(self) -> ImageFamily:
        """First multi-stage family, or the first family when none is multi-stage."""
        if not self.families:
            raise ConfigurationError("No image families configured for rollback")
        for family in self.families:
            if family.is_multi_stage:
                return family
        return self.families[0]

    def base(self, family: ImageFamily) -> str:
        return f"{self.config.registry_image}/{family.name}:{family.version}"

    def rollback(self, target_tag: str) -> RollbackResult:
        """
        Roll every family back to ``{base}-{target_tag}``.

        The target is verified on a representative family before anything is
        changed. After that each family is independent: a failure is recorded
        and the remaining families are still attempted.
        """
        target_tag = (target_tag or "").strip()
        if not target_tag:
            raise ConfigurationError("Rollback target tag is required")
        if target_tag == "latest":
            raise ConfigurationError("Cannot roll back 'latest' onto itself")
        suffix = self.config.image_suffix
        if suffix and suffix.strip("-") and suffix.strip("-") in target_tag:
            raise ConfigurationError(f"Refusing to roll back to staging tag {target_tag}")

        result = RollbackResult(target_tag=target_tag)
        log_section(self.logger, "Disaster Recovery - Manual Rollback")
        self.logger.warning("This will rollback images to %s", target_tag)
        self.logger.warning("This is a MANUAL operation that should only be run in emergencies")

        self.logger.info("Verifying rollback target…")
        candidate = f"{self.base(self.representative)}-{target_tag}"
        if not self.docker.manifest_exists(candidate):
            self.logger.error("Rollback tag %s not found!", target_tag)
            result.aborted = True
            result.issues.append(
                PipelineIssue(
                    code="ROLLBACK_TARGET_NOT_FOUND",
                    message=f"Rollback tag {target_tag} not found",
                    subject=candidate,
                )
            )
            return result
        self.logger.info("Rollback target verified")

        log_section(self.logger, "Rolling Back Images")
        for family in self.families:
            issue = self._rollback_family(family, target_tag)
            if issue:
                result.issues.append(issue)
            else:
                result.rolled_back.append(family.key)

        log_section(self.logger, "Rollback Complete")
        if result.success:
            self.logger.info("Disaster recovery rollback complete!")
        else:
            self.logger.error("Rollback finished with %d failed families", len(result.failed))
        self.logger.warning("Action required: Verify services are working correctly")
        return result

    def _rollback_family(self, family: ImageFamily, target_tag: str) -> Optional[PipelineIssue]:
        base = self.base(family)
        source = f"{base}-{target_tag}"
        target = f"{base}-latest"
        self.logger.info("Rolling back: %s ← %s", target, source)

        if not self.docker.pull(source).succeeded():
            self.logger.error("Failed to pull %s", source)
            return PipelineIssue(code="ROLLBACK_PULL_FAILED", message=f"Failed to pull {source}", subject=family.key)

        tag_result = self.docker.tag(source, target)
        if not tag_result.succeeded():
            self.logger.error("Failed to tag %s", target)
            return PipelineIssue(
                code="ROLLBACK_TAG_FAILED",
                message=f"Failed to tag {target}: {tag_result.error_output()}",
                subject=family.key,
            )

        if not self.docker.push(target).succeeded():
            self.logger.error("Failed to push %s", target)
            return PipelineIssue(code="ROLLBACK_PUSH_FAILED", message=f"Failed to push {target}", subject=family.key)

        self.logger.info("Rolled back: %s", target)
        return None
