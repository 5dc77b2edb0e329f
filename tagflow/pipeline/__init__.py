"""Validation, promotion, cleanup, rollback and mirroring of built images."""

from .cleanup import CleanupResult, StagingGarbageCollector
from .driver import (
    BuildStep,
    CleanupStep,
    FamilyState,
    IntegrityStep,
    MirrorStep,
    PipelineContext,
    PipelineRunner,
    PipelineRunResult,
    PromoteStep,
    StepResult,
    build_pipeline,
)
from .integrity import IntegrityReport, StageIntegrityValidator
from .mirror import DockerHubMirror, MirrorResult, mirror_mappings
from .promotion import (
    FamilyPromotion,
    PromotionReport,
    PromotionState,
    StagePromotion,
    TagPromoter,
    compute_stable_tags,
)
from .rollback import DisasterRecovery, RollbackResult
from .sizes import ImageSize, ImageSizeReporter, SizeReport

__all__ = [
    "CleanupResult",
    "StagingGarbageCollector",
    "BuildStep",
    "CleanupStep",
    "FamilyState",
    "IntegrityStep",
    "MirrorStep",
    "PipelineContext",
    "PipelineRunner",
    "PipelineRunResult",
    "PromoteStep",
    "StepResult",
    "build_pipeline",
    "IntegrityReport",
    "StageIntegrityValidator",
    "DockerHubMirror",
    "MirrorResult",
    "mirror_mappings",
    "FamilyPromotion",
    "PromotionReport",
    "PromotionState",
    "StagePromotion",
    "TagPromoter",
    "compute_stable_tags",
    "DisasterRecovery",
    "RollbackResult",
    "ImageSize",
    "ImageSizeReporter",
    "SizeReport",
]
