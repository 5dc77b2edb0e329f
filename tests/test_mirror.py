"""Tests for Docker Hub mirroring."""

from __future__ import annotations

from conftest import REGISTRY, FakeDockerEngine

from tagflow.common.catalog import ImageCatalog
from tagflow.common.config import PipelineConfig
from tagflow.pipeline.mirror import DockerHubMirror, mirror_mappings
from tagflow.runtime.docker import DockerClient


def publish_stable_tags(engine: FakeDockerEngine, catalog: ImageCatalog) -> None:
    for primary_tag, _ in mirror_mappings(catalog, "acme"):
        engine.add_image(f"{REGISTRY}/{primary_tag}", local=False)


def test_mirror_mappings(catalog: ImageCatalog) -> None:
    mappings = mirror_mappings(catalog, "acme")

    assert len(mappings) == 7
    assert ("php:8.3-prod", "acme/php:8.3-prod") in mappings
    assert ("php:latest-test", "acme/php:latest-test") in mappings
    assert ("database:mysql-8.0", "acme/mysql:8.0") in mappings


def test_sync_pushes_every_mapping(
    engine: FakeDockerEngine, docker: DockerClient, config: PipelineConfig, catalog: ImageCatalog
) -> None:
    publish_stable_tags(engine, catalog)

    result = DockerHubMirror(docker, config, catalog).sync()

    assert result.success
    assert result.failed == 0
    assert len(result.synced) == 7
    assert "acme/mysql:8.0" in engine.remote
    assert engine.calls[-1] == ["docker", "logout", "docker.io"]


def test_login_failure_is_fatal(
    engine: FakeDockerEngine, docker: DockerClient, config: PipelineConfig, catalog: ImageCatalog
) -> None:
    engine.login_ok = False

    result = DockerHubMirror(docker, config, catalog).sync()

    assert not result.success
    assert [issue.code for issue in result.issues] == ["MIRROR_LOGIN_FAILED"]
    assert engine.calls_starting_with("docker", "pull") == []


def test_image_failures_are_warnings(
    engine: FakeDockerEngine, docker: DockerClient, config: PipelineConfig, catalog: ImageCatalog
) -> None:
    publish_stable_tags(engine, catalog)
    del engine.remote[f"{REGISTRY}/database:mysql-8.0"]

    result = DockerHubMirror(docker, config, catalog).sync()

    assert result.success
    assert result.failed == 1
    assert len(result.synced) == 6
    assert result.issues[0].code == "MIRROR_PULL_FAILED"
    assert result.issues[0].severity == "warning"
    assert engine.calls[-1] == ["docker", "logout", "docker.io"]
