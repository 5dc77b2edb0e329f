"""Docker CLI helpers for tagging, pushing, pulling and inspecting images."""

from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from tagflow.common.command_runner import CommandResult, CommandRunner
from tagflow.common.retry import RetryPolicy

_DIGEST_PATTERN = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")

INSPECT_TIMEOUT = 30
TRANSFER_TIMEOUT = 600
RUN_TIMEOUT = 120


def extract_push_digest(output: str) -> Optional[str]:
    """Return the manifest digest reported by ``docker push``, if any."""
    match = _DIGEST_PATTERN.search(output or "")
    return match.group(1) if match else None


class DockerClient:
    """Narrow wrapper over the docker CLI used by every pipeline step."""

    def __init__(
        self,
        command_runner: CommandRunner,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.command_runner = command_runner
        self.retry_policy = retry_policy or RetryPolicy()
        self.logger = logger or logging.getLogger(__name__)

    # Inspection

    def image_exists(self, reference: str) -> bool:
        """True when the image is present in the local daemon."""
        return self.command_runner.run(["docker", "image", "inspect", reference], timeout=INSPECT_TIMEOUT).succeeded()

    def manifest_exists(self, reference: str) -> bool:
        """True when the registry reports a manifest for the reference, without pulling."""
        return self.command_runner.run(
            ["docker", "manifest", "inspect", reference],
            timeout=INSPECT_TIMEOUT,
        ).succeeded()

    def image_id(self, reference: str) -> Optional[str]:
        result = self.command_runner.run(
            ["docker", "image", "inspect", reference, "--format", "{{.Id}}"],
            timeout=INSPECT_TIMEOUT,
        )
        if not result.succeeded():
            return None
        return result.stdout.strip() or None

    def image_size(self, reference: str) -> Optional[int]:
        result = self.command_runner.run(
            ["docker", "image", "inspect", reference, "--format", "{{.Size}}"],
            timeout=INSPECT_TIMEOUT,
        )
        if not result.succeeded():
            return None
        try:
            return int(result.stdout.strip())
        except ValueError:
            self.logger.warning("Could not parse docker inspect size output for %s", reference)
            return None

    # Tag transfer

    def tag(self, source: str, target: str) -> CommandResult:
        return self.command_runner.run(["docker", "tag", source, target], timeout=INSPECT_TIMEOUT)

    def push(self, reference: str) -> CommandResult:
        """Push with bounded retry and exponential backoff."""
        self.logger.info("Pushing %s…", reference)
        return self.retry_policy.run_command(
            lambda: self.command_runner.run(["docker", "push", reference], timeout=TRANSFER_TIMEOUT),
            description=f"docker push {reference}",
            logger=self.logger,
        )

    def pull(self, reference: str) -> CommandResult:
        """Pull with bounded retry and exponential backoff."""
        self.logger.info("Pulling %s…", reference)
        return self.retry_policy.run_command(
            lambda: self.command_runner.run(["docker", "pull", reference], timeout=TRANSFER_TIMEOUT),
            description=f"docker pull {reference}",
            logger=self.logger,
        )

    # Containers

    def run_ephemeral(self, reference: str, command: Sequence[str]) -> CommandResult:
        """Run a short-lived container and capture its output."""
        return self.command_runner.run(["docker", "run", "--rm", reference, *command], timeout=RUN_TIMEOUT)

    # Authentication

    def login(self, registry: str, username: str, token: str) -> CommandResult:
        return self.command_runner.run(
            ["docker", "login", "-u", username, "--password-stdin", registry],
            timeout=INSPECT_TIMEOUT,
            input_text=token,
        )

    def logout(self, registry: str) -> CommandResult:
        return self.command_runner.run(["docker", "logout", registry], timeout=INSPECT_TIMEOUT)
