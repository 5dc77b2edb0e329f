"""Stage integrity checks for multi-stage images before they are promoted."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from tagflow.common.catalog import ImageFamily, ToolAssertion
from tagflow.common.config import PipelineConfig
from tagflow.common.issues import PipelineIssue
from tagflow.common.logs import log_section
from tagflow.runtime.docker import DockerClient

MB = 1024 * 1024


@dataclass(slots=True)
class IntegrityReport:
    """Result of validating the stages of one image family."""

    family: str
    issues: List[PipelineIssue] = field(default_factory=list)
    verified_stages: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)

    @property
    def warnings(self) -> List[PipelineIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]


class StageIntegrityValidator:
    """Confirm that every expected stage exists and behaves like its stage."""

    def __init__(
        self,
        docker: DockerClient,
        config: PipelineConfig,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.docker = docker
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def stage_reference(self, family_name: str, version_tag: str, stage: str) -> str:
        return f"{self.config.registry_image}/{family_name}:{version_tag}-{stage}"

    def validate_stages(
        self,
        family_name: str,
        version_tag: str,
        expected_stages: Sequence[str],
    ) -> IntegrityReport:
        """
        Check that ``{family}:{version_tag}-{stage}`` exists for every stage.

        Stops at the first missing stage so an incomplete set is never validated further.
        """
        report = IntegrityReport(family=family_name)
        self.logger.info("Validating stages for %s:%s…", family_name, version_tag)

        for stage in expected_stages:
            reference = self.stage_reference(family_name, version_tag, stage)
            if self.reference_exists(reference):
                self.logger.info("  ✓ Stage exists: %s", stage)
                report.verified_stages.append(stage)
                continue

            self.logger.error("  ✗ Stage missing: %s", stage)
            report.issues.append(
                PipelineIssue(
                    code="STAGE_MISSING",
                    message=f"Stage '{stage}' was not found",
                    subject=reference,
                )
            )
            return report

        self.logger.info("All stages validated for %s:%s", family_name, version_tag)
        return report

    def assert_tool_present(self, reference: str, assertion: ToolAssertion) -> Optional[PipelineIssue]:
        return self._assert_tool(reference, assertion, expect_present=True)

    def assert_tool_absent(self, reference: str, assertion: ToolAssertion) -> Optional[PipelineIssue]:
        return self._assert_tool(reference, assertion, expect_present=False)

    def check_assertion(self, reference: str, assertion: ToolAssertion) -> Optional[PipelineIssue]:
        if assertion.expect == "present":
            return self.assert_tool_present(reference, assertion)
        return self.assert_tool_absent(reference, assertion)

    def assert_expected_user(self, reference: str, expected_user: str) -> Optional[PipelineIssue]:
        result = self.docker.run_ephemeral(reference, ["whoami"])
        actual = result.stdout.strip() if result.succeeded() else "unknown"
        if actual == expected_user:
            self.logger.info("  ✓ %s runs as user '%s'", reference, expected_user)
            return None
        self.logger.warning("  ⚠️ %s runs as user '%s' (expected: %s)", reference, actual, expected_user)
        return PipelineIssue(
            code="UNEXPECTED_USER",
            message=f"Image runs as user '{actual}' (expected: {expected_user})",
            severity="warning",
            subject=reference,
        )

    def assert_size_ordering(self, references: Sequence[str]) -> List[PipelineIssue]:
        """
        Require image sizes to strictly increase along ``references``.

        Build nondeterminism can invert the order without a real defect, so
        violations are warnings only.
        """
        issues: List[PipelineIssue] = []
        sizes: List[int] = []

        for reference in references:
            size = self.docker.image_size(reference)
            if size is None:
                issues.append(
                    PipelineIssue(
                        code="SIZE_UNAVAILABLE",
                        message="Could not read image size",
                        severity="warning",
                        subject=reference,
                    )
                )
                return issues
            self.logger.info("  %s: %d MB", reference, size // MB)
            sizes.append(size)

        if all(smaller < larger for smaller, larger in zip(sizes, sizes[1:])):
            self.logger.info("  ✓ Image sizes follow expected progression")
        else:
            self.logger.warning("  ⚠️ Image sizes don't follow expected progression")
            issues.append(
                PipelineIssue(
                    code="SIZE_ORDER",
                    message="Image sizes don't follow expected progression: "
                    + " < ".join(f"{ref.rsplit(':', 1)[-1]}={size // MB}MB" for ref, size in zip(references, sizes)),
                    severity="warning",
                    subject=references[0] if references else None,
                )
            )
        return issues

    def validate_family(self, family: ImageFamily, suffix: str) -> IntegrityReport:
        """Existence first, then per-stage runtime assertions, then size ordering."""
        log_section(self.logger, f"Verifying {family.key} stage integrity")
        version_tag = f"{family.version}{suffix}"
        report = self.validate_stages(family.name, version_tag, family.stage_names)
        if not report.success:
            return report

        references = []
        for stage in family.stages:
            reference = self.stage_reference(family.name, version_tag, stage.name)
            references.append(reference)
            for assertion in stage.assertions:
                issue = self.check_assertion(reference, assertion)
                if issue:
                    report.issues.append(issue)
            if stage.expected_user:
                issue = self.assert_expected_user(reference, stage.expected_user)
                if issue:
                    report.issues.append(issue)

        if len(references) > 1:
            report.issues.extend(self.assert_size_ordering(references))

        if report.success:
            self.logger.info("✅ Multi-stage integrity verified for %s", family.key)
        else:
            self.logger.error("❌ Multi-stage integrity failed for %s", family.key)
        return report

    def reference_exists(self, reference: str) -> bool:
        """Existence check honouring the configured mode (registry manifest or local daemon)."""
        if self.config.stage_check == "local":
            return self.docker.image_exists(reference)
        return self.docker.manifest_exists(reference)

    def _assert_tool(
        self,
        reference: str,
        assertion: ToolAssertion,
        *,
        expect_present: bool,
    ) -> Optional[PipelineIssue]:
        wording = "present" if expect_present else "absent"
        self.logger.info("→ Checking %s in %s (should be %s)…", assertion.tool, reference, wording)

        result = self.docker.run_ephemeral(reference, assertion.command)
        if assertion.match == "exit_code":
            found = result.succeeded()
        else:
            found = result.succeeded() and assertion.tool.lower() in result.stdout.lower()

        if found == expect_present:
            self.logger.info("  ✓ %s correctly %s", assertion.tool, wording)
            return None

        message = f"{assertion.tool} {'not found' if expect_present else 'found'} (expected {wording})"
        if assertion.severity == "error":
            self.logger.error("  ❌ %s in %s", message, reference)
        else:
            self.logger.warning("  ⚠️ %s in %s", message, reference)
        return PipelineIssue(
            code="TOOL_UNEXPECTEDLY_ABSENT" if expect_present else "TOOL_UNEXPECTEDLY_PRESENT",
            message=message,
            severity=assertion.severity,
            subject=reference,
            details=result.stdout.strip() or None,
        )
