from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from tagflow.common.catalog import ImageCatalog, ImageFamily
from tagflow.common.command_runner import CommandRunner
from tagflow.common.config import PipelineConfig
from tagflow.common.errors import BuilderError, ConfigurationError
from tagflow.common.issues import PipelineIssue
from tagflow.common.logs import log_section
from tagflow.common.models import StagingTag
from tagflow.common.version import ReleaseVersion
from tagflow.runtime.build import MultiStageBuildExecutor
from tagflow.runtime.builder import BuilderManager, builder_name
from tagflow.runtime.docker import DockerClient
from tagflow.runtime.registry_api import RegistryApiClient

from .cleanup import StagingGarbageCollector
from .integrity import StageIntegrityValidator
from .mirror import DockerHubMirror, mirror_mappings
from .promotion import FamilyPromotion, TagPromoter


@dataclass(slots=True)
class PipelineContext:
    """Static runtime context that is shared across pipeline steps."""

    config: PipelineConfig
    catalog: ImageCatalog
    command_runner: CommandRunner
    docker: DockerClient
    logger: logging.Logger
    registry_api: Optional[RegistryApiClient] = None

    @property
    def suffix(self) -> str:
        return self.config.local_suffix


@dataclass(slots=True)
class FamilyState:
    """Mutable state that flows through the steps for one image family."""

    family: ImageFamily
    staging_tags: List[StagingTag] = field(default_factory=list)
    issues: List[PipelineIssue] = field(default_factory=list)
    promotion: Optional[FamilyPromotion] = None
    completed_steps: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failed_step is None and not any(issue.is_error() for issue in self.issues)


@dataclass(slots=True)
class StepResult:
    """Outcome of executing a single pipeline step."""

    issues: List[PipelineIssue] = field(default_factory=list)
    continue_pipeline: bool = True
    metadata: Optional[Dict[str, object]] = None


class FamilyStep(Protocol):
    """Step executed once per image family."""

    name: str

    def run(self, state: FamilyState, context: PipelineContext) -> StepResult:
        ...


class RunStep(Protocol):
    """Best-effort step executed once after every family has been processed."""

    name: str

    def run(self, states: Sequence[FamilyState], context: PipelineContext) -> StepResult:
        ...


@dataclass(slots=True)
class PipelineRunResult:
    """Aggregate result returned by the pipeline runner."""

    families: List[FamilyState]
    run_step_issues: Dict[str, List[PipelineIssue]] = field(default_factory=dict)
    run_step_metadata: Dict[str, Dict[str, object]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        # Best-effort run steps (cleanup, mirroring) never affect the outcome.
        return all(state.success for state in self.families)

    @property
    def failed_families(self) -> List[str]:
        return [state.family.key for state in self.families if not state.success]


class BuildStep:
    """Build every stage of the family under its commit-scoped staging tag."""

    name = "build"

    def run(self, state: FamilyState, context: PipelineContext) -> StepResult:
        family = state.family
        executor = MultiStageBuildExecutor(context.command_runner, context.config, logger=context.logger)
        builders = BuilderManager(context.command_runner, dry_run=context.config.dry_run, logger=context.logger)
        version_tag = f"{family.version}{context.suffix}"
        issues: List[PipelineIssue] = []

        stages: List[Optional[str]] = list(family.stage_names) if family.is_multi_stage else [None]
        for stage in stages:
            name = builder_name(family.name, stage, context.config.pipeline_id)
            try:
                with builders.session(name):
                    result = executor.build(family.path, family.name, version_tag, stage, builder=name)
            except BuilderError as exc:
                context.logger.error("Failed to create buildx builder: %s", exc)
                issues.append(PipelineIssue(code="BUILDER_FAILED", message=str(exc), subject=name))
                break

            issues.extend(result.issues)
            if not result.success:
                context.logger.error("Build failed: %s", result.image_name)
                break
            state.staging_tags.append(result.staging_tag)

        continue_pipeline = not any(issue.is_error() for issue in issues)
        return StepResult(
            issues=issues,
            continue_pipeline=continue_pipeline,
            metadata={"built": [tag.reference for tag in state.staging_tags]},
        )


class IntegrityStep:
    """Validate stage completeness and runtime expectations before promotion."""

    name = "validate"

    def run(self, state: FamilyState, context: PipelineContext) -> StepResult:
        family = state.family
        validator = StageIntegrityValidator(context.docker, context.config, logger=context.logger)

        if family.is_multi_stage:
            report = validator.validate_family(family, context.suffix)
            return StepResult(issues=list(report.issues), continue_pipeline=report.success)

        reference = family.staging_reference(context.config.registry_image, context.suffix)
        if validator.reference_exists(reference):
            context.logger.info("  ✓ Found %s", reference)
            return StepResult()
        return StepResult(
            issues=[PipelineIssue(code="IMAGE_MISSING", message="Staging image not found", subject=reference)],
            continue_pipeline=False,
        )


class PromoteStep:
    """Publish the validated staging images under stable tags."""

    name = "promote"

    def __init__(self, release: ReleaseVersion) -> None:
        self.release = release

    def run(self, state: FamilyState, context: PipelineContext) -> StepResult:
        promoter = TagPromoter(context.docker, context.config, logger=context.logger)
        if context.config.dry_run:
            for promotion in promoter.plan(state.family, context.suffix, self.release):
                context.logger.warning("[DRY-RUN] Would promote: %s", promotion.source)
                for target in promotion.targets:
                    context.logger.info("  → %s", target)
            return StepResult(metadata={"dry_run": True})

        state.promotion = promoter.promote(state.family, context.suffix, self.release)
        return StepResult(issues=list(state.promotion.issues), continue_pipeline=state.promotion.success)


class CleanupStep:
    """Delete staging tags once every family has been promoted."""

    name = "cleanup"

    def run(self, states: Sequence[FamilyState], context: PipelineContext) -> StepResult:
        if not all(state.success for state in states):
            context.logger.warning("Skipping staging tag cleanup: not every family was promoted")
            return StepResult(metadata={"skipped": True})
        if context.registry_api is None:
            context.logger.warning("Skipping staging tag cleanup: registry API is not configured")
            return StepResult(metadata={"skipped": True})
        if context.config.dry_run:
            context.logger.warning("[DRY-RUN] Would delete staging tags with suffix %s", context.suffix)
            return StepResult(metadata={"skipped": True, "dry_run": True})

        families = [state.family for state in states]
        collector = StagingGarbageCollector(context.registry_api, context.config, families, logger=context.logger)
        result = collector.cleanup_staging_tags(context.suffix)
        return StepResult(
            issues=list(result.issues),
            metadata={
                "deleted": result.deleted,
                "skipped": result.skipped,
                "dangling_deleted": result.dangling_deleted,
                "total_size_mb": result.total_size_mb,
            },
        )


class MirrorStep:
    """Copy the promoted stable tags to Docker Hub."""

    name = "mirror"

    def run(self, states: Sequence[FamilyState], context: PipelineContext) -> StepResult:
        promoted = [state.family for state in states if state.success]
        if not promoted:
            return StepResult(metadata={"skipped": True})
        if context.config.dry_run:
            for source, hub_reference in mirror_mappings(promoted, context.config.mirror_namespace):
                context.logger.warning("[DRY-RUN] Would mirror %s → %s", source, hub_reference)
            return StepResult(metadata={"skipped": True, "dry_run": True})
        result = DockerHubMirror(context.docker, context.config, promoted, logger=context.logger).sync()
        issues = list(result.issues)
        # A failed login is fatal for the mirror command, not for the pipeline run.
        for issue in issues:
            issue.severity = "warning"
        return StepResult(issues=issues, metadata={"synced": len(result.synced), "failed": result.failed})


class PipelineRunner:
    """Coordinate ordered execution of family steps, then best-effort run steps."""

    def __init__(self, family_steps: Sequence[FamilyStep], run_steps: Sequence[RunStep] = ()) -> None:
        self.family_steps = list(family_steps)
        self.run_steps = list(run_steps)

    def run(self, families: Sequence[ImageFamily], context: PipelineContext) -> PipelineRunResult:
        states: List[FamilyState] = []

        for family in families:
            state = FamilyState(family=family)
            states.append(state)
            log_section(context.logger, f"Processing {family.key}")

            for step in self.family_steps:
                context.logger.debug("Running step %s for %s", step.name, family.key)
                result = step.run(state, context)
                state.issues.extend(result.issues)
                if not result.continue_pipeline:
                    state.failed_step = step.name
                    context.logger.error("❌ %s failed at step %s", family.key, step.name)
                    break
                state.completed_steps.append(step.name)

        run_result = PipelineRunResult(families=states)
        for step in self.run_steps:
            result = step.run(states, context)
            warnings = list(result.issues)
            run_result.run_step_issues[step.name] = warnings
            if result.metadata is not None:
                run_result.run_step_metadata[step.name] = result.metadata
            for issue in warnings:
                context.logger.warning("%s: %s", step.name, issue)

        self._log_summary(run_result, context)
        return run_result

    def _log_summary(self, run_result: PipelineRunResult, context: PipelineContext) -> None:
        log_section(context.logger, "Pipeline Summary")
        for state in run_result.families:
            if state.success:
                context.logger.info("✅ %s: %s", state.family.key, ", ".join(state.completed_steps) or "nothing to do")
            else:
                context.logger.error("❌ %s: failed at %s", state.family.key, state.failed_step or "unknown step")
                for issue in state.issues:
                    if issue.is_error():
                        context.logger.error("   %s", issue)
        if run_result.success:
            context.logger.info("Pipeline succeeded for %d families", len(run_result.families))
        else:
            context.logger.error("Pipeline failed for: %s", ", ".join(run_result.failed_families))


def build_pipeline(
    config: PipelineConfig,
    *,
    build: bool = True,
    validate: bool = True,
    promote: bool = True,
    cleanup: bool = True,
    mirror: bool = False,
) -> PipelineRunner:
    """Assemble the standard step sequence: build -> validate -> promote -> (cleanup, mirror)."""
    family_steps: List[FamilyStep] = []
    run_steps: List[RunStep] = []

    if build:
        family_steps.append(BuildStep())
    if validate:
        family_steps.append(IntegrityStep())
    if promote:
        config.require("promoted_version")
        family_steps.append(PromoteStep(ReleaseVersion.parse(config.promoted_version)))
        if cleanup:
            run_steps.append(CleanupStep())
        if mirror:
            config.require("dockerhub_username", "dockerhub_token")
            run_steps.append(MirrorStep())
    elif cleanup or mirror:
        raise ConfigurationError("Cleanup and mirroring only run after promotion")

    return PipelineRunner(family_steps, run_steps)
