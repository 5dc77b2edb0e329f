"""Promotion of validated staging images to stable tag names."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from tagflow.common.catalog import ImageCatalog, ImageFamily
from tagflow.common.config import PipelineConfig
from tagflow.common.errors import InvalidTransitionError
from tagflow.common.issues import PipelineIssue
from tagflow.common.logs import log_section
from tagflow.common.models import StableTagSet
from tagflow.common.version import ReleaseVersion
from tagflow.runtime.docker import DockerClient, extract_push_digest


class PromotionState(Enum):
    """Lifecycle of one (family, stage) pair during promotion."""
    STAGED = "staged"
    VALIDATED = "validated"
    PROMOTING = "promoting"
    PROMOTED = "promoted"
    FAILED = "failed"


_TRANSITIONS = {
    PromotionState.STAGED: {PromotionState.VALIDATED, PromotionState.FAILED},
    PromotionState.VALIDATED: {PromotionState.PROMOTING, PromotionState.FAILED},
    PromotionState.PROMOTING: {PromotionState.PROMOTED, PromotionState.FAILED},
    PromotionState.PROMOTED: set(),
    PromotionState.FAILED: set(),
}


def compute_stable_tags(family: ImageFamily, stage: Optional[str], release: ReleaseVersion) -> List[str]:
    """
    Stable tag names in push order: technical version, release version, latest.

    ``php`` 8.3 / prod / v1.1.0 -> ``8.3-prod``, ``1.1.0-prod``, ``latest-prod``;
    single-stage ``mysql-8.0`` -> ``mysql-8.0``, ``mysql-8.0-1.1.0``, ``mysql-8.0-latest``.
    """
    if stage:
        return [f"{family.version}-{stage}", f"{release.full}-{stage}", f"latest-{stage}"]
    return [family.version, f"{family.version}-{release.full}", f"{family.version}-latest"]


@dataclass
class StagePromotion:
    """State machine for promoting one staging image to its stable tag set."""

    family: str
    stage: Optional[str]
    source: str
    targets: List[str]
    state: PromotionState = PromotionState.STAGED
    pushed: List[str] = field(default_factory=list)
    digest: Optional[str] = None
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.family}[{self.stage}]" if self.stage else self.family

    @property
    def partial(self) -> bool:
        """Some, but not all, stable tags now point at the new image."""
        return self.state == PromotionState.FAILED and 0 < len(self.pushed) < len(self.targets)

    def transition(self, new_state: PromotionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"{self.label}: cannot move from {self.state.value} to {new_state.value}"
            )
        if new_state == PromotionState.PROMOTED and self.pushed != self.targets:
            raise InvalidTransitionError(
                f"{self.label}: only {len(self.pushed)}/{len(self.targets)} tags pushed, cannot mark promoted"
            )
        self.state = new_state

    def fail(self, error: str) -> None:
        self.error = error
        self.transition(PromotionState.FAILED)

    def record_push(self, target: str, digest: Optional[str]) -> None:
        if self.state != PromotionState.PROMOTING:
            raise InvalidTransitionError(f"{self.label}: pushes are only recorded while promoting")
        self.pushed.append(target)
        if digest and not self.digest:
            self.digest = digest

    def to_tag_set(self) -> StableTagSet:
        return StableTagSet(
            family=self.family,
            stage=self.stage,
            source=self.source,
            tags=list(self.targets),
            digest=self.digest,
        )


@dataclass
class FamilyPromotion:
    """Outcome of promoting every stage of one image family."""

    family: str
    stages: List[StagePromotion] = field(default_factory=list)
    issues: List[PipelineIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return (
            bool(self.stages)
            and all(stage.state == PromotionState.PROMOTED for stage in self.stages)
            and not any(issue.is_error() for issue in self.issues)
        )

    @property
    def tag_sets(self) -> List[StableTagSet]:
        return [stage.to_tag_set() for stage in self.stages if stage.state == PromotionState.PROMOTED]


@dataclass
class PromotionReport:
    """Per-family promotion outcomes for one pipeline run."""

    release: ReleaseVersion
    families: Dict[str, FamilyPromotion] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return all(outcome.success for outcome in self.families.values())

    @property
    def failed_families(self) -> List[str]:
        return [key for key, outcome in self.families.items() if not outcome.success]


class TagPromoter:
    """Re-tag validated staging images under stable names and push them."""

    def __init__(
        self,
        docker: DockerClient,
        config: PipelineConfig,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.docker = docker
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def plan(
        self,
        family: ImageFamily,
        suffix: str,
        release: ReleaseVersion,
        stages: Optional[Sequence[str]] = None,
    ) -> List[StagePromotion]:
        """Build the state machines for each requested stage (all stages by default)."""
        registry = self.config.registry_image
        if not family.is_multi_stage:
            stage_names: List[Optional[str]] = [None]
        else:
            stage_names = list(stages) if stages else family.stage_names
            unknown = [name for name in stage_names if name not in family.stage_names]
            if unknown:
                raise KeyError(f"Family {family.key} has no stage(s): {', '.join(unknown)}")

        return [
            StagePromotion(
                family=family.key,
                stage=stage,
                source=family.staging_reference(registry, suffix, stage),
                targets=[f"{registry}/{family.name}:{tag}" for tag in compute_stable_tags(family, stage, release)],
            )
            for stage in stage_names
        ]

    def promote(
        self,
        family: ImageFamily,
        suffix: str,
        release: Union[ReleaseVersion, str],
        stages: Optional[Sequence[str]] = None,
    ) -> FamilyPromotion:
        """
        Promote every stage of a family, aborting on the first failed tag push.

        A family is promoted only once all of its stages are. Stages after a
        failure are left untouched in the STAGED state.
        """
        if isinstance(release, str):
            release = ReleaseVersion.parse(release)

        outcome = FamilyPromotion(family=family.key, stages=self.plan(family, suffix, release, stages))
        log_section(self.logger, f"Promoting {family.key} images")

        for promotion in outcome.stages:
            self._promote_stage(promotion, outcome.issues)
            if promotion.state != PromotionState.PROMOTED:
                self.logger.error("Failed to promote %s images", family.key)
                break

        if outcome.success:
            self.logger.info("✅ Promoted %s to %s", family.key, release)
        return outcome

    def promote_catalog(
        self,
        catalog: Union[ImageCatalog, Sequence[ImageFamily]],
        suffix: str,
        release: Union[ReleaseVersion, str],
    ) -> PromotionReport:
        """Promote each family independently; one failing family does not block the others."""
        if isinstance(release, str):
            release = ReleaseVersion.parse(release)
        families = catalog.families if isinstance(catalog, ImageCatalog) else list(catalog)

        self.logger.info("Promoting images to version: %s", release)
        self.logger.info("Version tags: %s, %s, %s", release.full, release.major_minor, release.major_str)

        report = PromotionReport(release=release)
        for family in families:
            report.families[family.key] = self.promote(family, suffix, release)

        if report.success:
            self.logger.info("All images promoted successfully to version %s", release)
        else:
            self.logger.error("Promotion failed for: %s", ", ".join(report.failed_families))
        return report

    def _promote_stage(self, promotion: StagePromotion, issues: List[PipelineIssue]) -> None:
        self.logger.info("Promoting %s…", promotion.source)

        source_id = self._resolve_source(promotion.source)
        if source_id is None:
            promotion.fail("source image not found")
            issues.append(
                PipelineIssue(
                    code="SOURCE_NOT_FOUND",
                    message=f"Staging image not found locally or in the registry: {promotion.source}",
                    subject=promotion.label,
                )
            )
            return

        promotion.transition(PromotionState.VALIDATED)
        promotion.transition(PromotionState.PROMOTING)

        for target in promotion.targets:
            self.logger.info("  → %s", target)
            issue = self._publish(promotion, target, source_id)
            if issue is None:
                continue

            promotion.fail(issue.message)
            issues.append(issue)
            if promotion.pushed:
                issues.append(
                    PipelineIssue(
                        code="PARTIAL_PROMOTION",
                        message=(
                            f"Tag set is inconsistent: {len(promotion.pushed)}/{len(promotion.targets)} tags "
                            f"already point at the new image ({', '.join(promotion.pushed)})"
                        ),
                        subject=promotion.label,
                    )
                )
                self.logger.error(
                    "❌ PARTIAL PROMOTION of %s: %s updated, %s unchanged",
                    promotion.label,
                    ", ".join(promotion.pushed),
                    ", ".join(promotion.targets[len(promotion.pushed):]),
                )
            return

        promotion.transition(PromotionState.PROMOTED)
        self.logger.info("  ✓ %s promoted (%s)", promotion.label, promotion.digest or "digest unknown")

    def _resolve_source(self, source: str) -> Optional[str]:
        if self.docker.image_exists(source):
            self.logger.info("Found local image: %s", source)
        else:
            self.logger.info("Source image not found locally, pulling %s", source)
            if not self.docker.pull(source).succeeded():
                self.logger.error("Source image not found: %s", source)
                return None
        return self.docker.image_id(source)

    def _publish(self, promotion: StagePromotion, target: str, source_id: str) -> Optional[PipelineIssue]:
        tag_result = self.docker.tag(promotion.source, target)
        if not tag_result.succeeded():
            return PipelineIssue(
                code="TAG_FAILED",
                message=f"Failed to tag {target}: {tag_result.error_output()}",
                subject=promotion.label,
            )

        target_id = self.docker.image_id(target)
        if target_id != source_id:
            return PipelineIssue(
                code="DIGEST_MISMATCH",
                message=f"{target} resolves to {target_id}, expected {source_id}",
                subject=promotion.label,
            )

        push_result = self.docker.push(target)
        if not push_result.succeeded():
            self.logger.error("Failed to push tag: %s", target)
            return PipelineIssue(
                code="PUSH_FAILED",
                message=f"Failed to push tag: {target}",
                subject=promotion.label,
                details=push_result.error_output(),
            )

        digest = extract_push_digest(push_result.stdout)
        if digest and promotion.digest and digest != promotion.digest:
            return PipelineIssue(
                code="DIGEST_MISMATCH",
                message=f"{target} was pushed as {digest}, other tags in the set use {promotion.digest}",
                subject=promotion.label,
            )

        promotion.record_push(target, digest)
        return None
