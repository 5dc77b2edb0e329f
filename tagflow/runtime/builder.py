"""Isolated buildx builder instances, one per image family, stage and pipeline run."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from tagflow.common.command_runner import CommandRunner
from tagflow.common.errors import BuilderError

BUILDX_TIMEOUT = 120


def builder_name(family: str, stage: Optional[str], run_id: str) -> str:
    """Deterministic builder name, e.g. ``builder-php-prod-1234``."""
    family_token = re.sub(r"[:/]", "-", family)
    return f"builder-{family_token}-{stage or 'single'}-{run_id}"


@dataclass(frozen=True)
class BuilderHandle:
    """A buildx builder available for the current job."""

    name: str
    created: bool


class BuilderManager:
    """Create and remove buildx builders so caches never leak across jobs."""

    def __init__(
        self,
        command_runner: CommandRunner,
        *,
        dry_run: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.command_runner = command_runner
        self.dry_run = dry_run
        self.logger = logger or logging.getLogger(__name__)

    def exists(self, name: str) -> bool:
        return self.command_runner.run(["docker", "buildx", "inspect", name], timeout=BUILDX_TIMEOUT).succeeded()

    def create(self, name: str) -> BuilderHandle:
        """
        Create the builder, or reuse it when a builder with that name already exists.

        The builder is not made the daemon default; builds pass ``--builder`` instead.

        Raises:
            BuilderError: When the builder cannot be created. There is no
                fallback to the default builder.
        """
        self.logger.info("Creating buildx builder: %s", name)

        if self.dry_run:
            self.logger.warning("[DRY-RUN] Would create buildx builder: %s", name)
            return BuilderHandle(name=name, created=False)

        if self.exists(name):
            self.logger.info("Builder %s already exists", name)
            return BuilderHandle(name=name, created=False)

        result = self.command_runner.run(
            [
                "docker",
                "buildx",
                "create",
                "--name",
                name,
                "--driver",
                "docker-container",
                "--bootstrap",
            ],
            timeout=BUILDX_TIMEOUT,
        )
        if result.timed_out:
            raise BuilderError(f"Timed out creating buildx builder {name}")
        if not result.tool_available:
            raise BuilderError("Docker buildx not available - install Docker with buildx support")
        if not result.succeeded():
            raise BuilderError(f"Failed to create buildx builder {name}: {result.error_output()}")

        self.logger.info("Buildx builder created: %s", name)
        return BuilderHandle(name=name, created=True)

    def remove(self, builder: Union[BuilderHandle, str]) -> None:
        """Best-effort removal; a missing builder or a failed removal is only logged."""
        name = builder.name if isinstance(builder, BuilderHandle) else builder

        if self.dry_run:
            self.logger.debug("[DRY-RUN] Would remove buildx builder: %s", name)
            return

        if not self.exists(name):
            self.logger.debug("Builder %s not found, nothing to remove", name)
            return

        self.logger.info("Removing buildx builder: %s", name)
        result = self.command_runner.run(["docker", "buildx", "rm", name], timeout=BUILDX_TIMEOUT)
        if not result.succeeded():
            self.logger.warning("Failed to remove buildx builder %s: %s", name, result.error_output())

    @contextmanager
    def session(self, name: str) -> Iterator[BuilderHandle]:
        """Create a builder for the duration of a block and always remove it afterwards."""
        handle = self.create(name)
        try:
            yield handle
        finally:
            self.remove(handle)
