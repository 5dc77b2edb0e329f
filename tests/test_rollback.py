"""Tests for the manual disaster-recovery rollback."""

from __future__ import annotations

import pytest
from conftest import REGISTRY, FakeDockerEngine

from tagflow.common.catalog import ImageCatalog
from tagflow.common.config import PipelineConfig
from tagflow.common.errors import ConfigurationError
from tagflow.pipeline.rollback import DisasterRecovery
from tagflow.runtime.docker import DockerClient


def test_rollback_repoints_latest_tags(
    engine: FakeDockerEngine, docker: DockerClient, config: PipelineConfig, catalog: ImageCatalog
) -> None:
    php_id = engine.add_image(f"{REGISTRY}/php:8.3-v1.0.0", local=False)
    mysql_id = engine.add_image(f"{REGISTRY}/database:mysql-8.0-v1.0.0", local=False)

    result = DisasterRecovery(docker, config, catalog).rollback("v1.0.0")

    assert result.success
    assert result.rolled_back == ["php:8.3", "database:mysql-8.0"]
    assert engine.remote[f"{REGISTRY}/php:8.3-latest"] == php_id
    assert engine.remote[f"{REGISTRY}/database:mysql-8.0-latest"] == mysql_id


def test_missing_target_aborts_before_any_change(
    engine: FakeDockerEngine, docker: DockerClient, config: PipelineConfig, catalog: ImageCatalog
) -> None:
    result = DisasterRecovery(docker, config, catalog).rollback("v0.9.0")

    assert result.aborted
    assert not result.success
    assert [issue.code for issue in result.issues] == ["ROLLBACK_TARGET_NOT_FOUND"]
    assert engine.calls_starting_with("docker", "pull") == []
    assert engine.pushed() == []


def test_family_failures_do_not_stop_the_others(
    engine: FakeDockerEngine, docker: DockerClient, config: PipelineConfig, catalog: ImageCatalog
) -> None:
    engine.add_image(f"{REGISTRY}/php:8.3-v1.0.0", local=False)

    result = DisasterRecovery(docker, config, catalog).rollback("v1.0.0")

    assert not result.success
    assert not result.aborted
    assert result.rolled_back == ["php:8.3"]
    assert result.failed == {"database:mysql-8.0": f"Failed to pull {REGISTRY}/database:mysql-8.0-v1.0.0"}


@pytest.mark.parametrize("target", ["", "   ", "latest", "8.3-abc123-prod"])
def test_invalid_targets_are_rejected(
    engine: FakeDockerEngine, docker: DockerClient, config: PipelineConfig, catalog: ImageCatalog, target: str
) -> None:
    with pytest.raises(ConfigurationError):
        DisasterRecovery(docker, config, catalog).rollback(target)

    assert engine.calls == []
