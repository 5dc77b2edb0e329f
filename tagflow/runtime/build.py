"""Multi-stage image builds with buildx, staged under commit-scoped tags."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from tagflow.common.catalog import KNOWN_STAGES
from tagflow.common.command_runner import CommandResult, CommandRunner
from tagflow.common.config import PipelineConfig
from tagflow.common.issues import PipelineIssue
from tagflow.common.models import StagingTag

BUILD_TIMEOUT = 3600


@dataclass(slots=True)
class BuildResult:
    """Outcome of building one image."""

    image_name: str
    issues: List[PipelineIssue] = field(default_factory=list)
    staging_tag: Optional[StagingTag] = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.staging_tag is not None and not any(issue.is_error() for issue in self.issues)


def parse_image_tag(image_tag: str) -> Tuple[str, Optional[str]]:
    """
    Split a requested image tag into version tag and stage.

    ``8.3-prod`` -> (``8.3``, ``prod``); ``mysql-8.0`` -> (``mysql-8.0``, None).
    """
    for stage in KNOWN_STAGES:
        marker = f"-{stage}"
        if image_tag.endswith(marker) and len(image_tag) > len(marker):
            return image_tag[: -len(marker)], stage
    return image_tag, None


class MultiStageBuildExecutor:
    """Build one image from one Dockerfile, optionally targeting a named stage."""

    def __init__(
        self,
        command_runner: CommandRunner,
        config: PipelineConfig,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.command_runner = command_runner
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def full_tag(self, family_name: str, version_tag: str, stage: Optional[str] = None) -> str:
        tag_suffix = f"-{stage}" if stage else ""
        return f"{self.config.registry_image}/{family_name}:{version_tag}{tag_suffix}"

    def build_command(
        self,
        dockerfile: Path,
        context: Path,
        family_name: str,
        version_tag: str,
        stage: Optional[str] = None,
        builder: Optional[str] = None,
    ) -> List[str]:
        full_tag = self.full_tag(family_name, version_tag, stage)
        command = ["docker", "buildx", "build"]
        if builder:
            command.extend(["--builder", builder])
        command += [
            "--platform",
            self.config.platform,
            "--file",
            str(dockerfile),
            "--tag",
            full_tag,
        ]

        if stage:
            command.extend(["--target", stage])

        if self.config.cache_mode == "disabled":
            self.logger.debug("  Cache: disabled (--no-cache)")
            command.append("--no-cache")
        elif self.config.cache_mode == "enabled":
            self.logger.debug("  Cache: enabled (inline + registry)")
            tag_suffix = f"-{stage}" if stage else ""
            for cache_tag in (full_tag, f"{self.config.registry_image}/{family_name}:latest{tag_suffix}"):
                command.extend(["--cache-from", cache_tag])
            command.extend(["--build-arg", "BUILDKIT_INLINE_CACHE=1"])

        command.extend(self.config.build_args)
        command.append("--push" if self.config.push else "--load")
        command.append(str(context))
        return command

    def build(
        self,
        family_path: str,
        family_name: str,
        version_tag: str,
        stage: Optional[str] = None,
        builder: Optional[str] = None,
    ) -> BuildResult:
        """
        Build ``{registry}/{family_name}:{version_tag}[-{stage}]`` from ``{images_dir}/{family_path}``.

        ``builder`` names the buildx instance to build with; the daemon's default
        builder is never switched.

        Builds are never retried: a failure points at a source or configuration defect.
        """
        context = Path(self.config.images_dir) / family_path
        dockerfile = context / "Dockerfile"
        full_tag = self.full_tag(family_name, version_tag, stage)
        issues: List[PipelineIssue] = []

        if not dockerfile.is_file():
            self.logger.error("Dockerfile not found: %s", dockerfile)
            issues.append(
                PipelineIssue(
                    code="BUILD_DOCKERFILE_NOT_FOUND",
                    message=f"Dockerfile not found: {dockerfile}",
                    subject=full_tag,
                )
            )
            return BuildResult(image_name=full_tag, issues=issues)

        self.logger.info("Building %s…", full_tag)
        self.logger.debug("  Dockerfile: %s", dockerfile)
        self.logger.debug("  Context: %s", context)
        self.logger.debug("  Platform: %s", self.config.platform)
        if stage:
            self.logger.debug("  Target: %s", stage)

        staging_tag = StagingTag(
            reference=full_tag,
            family=family_name,
            version_tag=version_tag,
            stage=stage,
            context=str(context),
            registry=self.config.registry_image,
            dry_run=self.config.dry_run,
        )

        command = self.build_command(dockerfile, context, family_name, version_tag, stage, builder)

        if self.config.dry_run:
            self.logger.warning("[DRY-RUN] Would build: %s", full_tag)
            self.logger.debug("[DRY-RUN] %s", " ".join(command))
            return BuildResult(image_name=full_tag, staging_tag=staging_tag)

        result = self.command_runner.run(command, timeout=BUILD_TIMEOUT)
        issues.extend(self._handle_build_result(result, full_tag))
        if any(issue.is_error() for issue in issues):
            return BuildResult(image_name=full_tag, issues=issues, duration=result.duration)

        self.logger.info("Built %s in %.1fs", full_tag, result.duration)
        return BuildResult(image_name=full_tag, issues=issues, staging_tag=staging_tag, duration=result.duration)

    def _handle_build_result(self, build_result: CommandResult, full_tag: str) -> List[PipelineIssue]:
        issues: List[PipelineIssue] = []

        if build_result.timed_out:
            issues.append(
                PipelineIssue(
                    code="BUILD_TIMEOUT",
                    message=f"Docker buildx build timed out after {BUILD_TIMEOUT}s",
                    subject=full_tag,
                )
            )
            return issues

        if not build_result.tool_available:
            issues.append(
                PipelineIssue(
                    code="DOCKER_NOT_FOUND",
                    message="Docker buildx not available - install Docker with buildx support",
                    subject=full_tag,
                )
            )
            return issues

        if (build_result.return_code or 0) != 0:
            error_msg = build_result.error_output("Unknown buildx error")
            issues.append(
                PipelineIssue(
                    code="BUILD_FAILED",
                    message=f"Failed to build {full_tag}",
                    subject=full_tag,
                    details="\n".join(part for part in (build_result.stdout, build_result.stderr) if part),
                )
            )
            self.logger.error("Docker buildx failed for %s: %s", full_tag, error_msg[-2000:])

        return issues
