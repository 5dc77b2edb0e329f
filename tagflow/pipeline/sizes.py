"""Image size tracking report for the images built in one pipeline run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

from tagflow.common.catalog import ImageCatalog, ImageFamily
from tagflow.common.config import PipelineConfig
from tagflow.common.issues import PipelineIssue
from tagflow.common.logs import log_section
from tagflow.runtime.docker import DockerClient

MB = 1024 * 1024
SEPARATOR = "=" * 40


@dataclass
class ImageSize:
    reference: str
    size_bytes: int
    stage: Optional[str] = None

    @property
    def size_mb(self) -> int:
        return self.size_bytes // MB


@dataclass
class SizeReport:
    pipeline_id: str
    commit: str
    tag: str
    images: List[ImageSize] = field(default_factory=list)
    issues: List[PipelineIssue] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)

    def render(self) -> str:
        lines = [
            SEPARATOR,
            "IMAGE SIZES",
            SEPARATOR,
            f"Generated: {self.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            f"Pipeline: {self.pipeline_id}",
            f"Commit: {self.commit}",
            f"Tag: {self.tag}",
            SEPARATOR,
            "",
        ]
        width = max((len(image.reference) for image in self.images), default=0)
        for image in self.images:
            lines.append(f"{image.reference.ljust(width)}  {image.size_mb:>6} MB")
        lines.extend(["", SEPARATOR, f"TOTAL IMAGES: {len(self.images)}", SEPARATOR])
        return "\n".join(lines) + "\n"

    def write(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(), encoding="utf-8")
        return path


class ImageSizeReporter:
    """Collect sizes of locally built staging images and flag oversized production images."""

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

    def collect(self, suffix: str) -> SizeReport:
        log_section(self.logger, "Tracking Docker Image Sizes")
        report = SizeReport(
            pipeline_id=self.config.pipeline_id,
            commit=self.config.commit_sha,
            tag=self.config.commit_tag,
        )

        for family in self.families:
            stages: List[Optional[str]] = list(family.stage_names) if family.is_multi_stage else [None]
            for stage in stages:
                reference = family.staging_reference(self.config.registry_image, suffix, stage)
                size = self.docker.image_size(reference)
                if size is None:
                    self.logger.error("  ✗ Not found locally: %s", reference)
                    report.issues.append(
                        PipelineIssue(code="IMAGE_NOT_FOUND", message="Image not found locally", subject=reference)
                    )
                    continue
                report.images.append(ImageSize(reference=reference, size_bytes=size, stage=stage))

        threshold = self.config.size_threshold_mb
        for image in report.images:
            if image.stage == "prod" and image.size_mb > threshold:
                self.logger.warning(
                    "%s is larger than expected: %d MB (threshold: %d MB)",
                    image.reference,
                    image.size_mb,
                    threshold,
                )
                report.issues.append(
                    PipelineIssue(
                        code="IMAGE_TOO_LARGE",
                        message=f"{image.size_mb} MB exceeds {threshold} MB",
                        severity="warning",
                        subject=image.reference,
                    )
                )

        if report.success:
            self.logger.info("All %d images found locally", len(report.images))
        else:
            self.logger.error("Some images were not found - make sure builds completed on the same runner")
        return report
