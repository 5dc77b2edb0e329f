"""Tests for environment-driven pipeline configuration."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from tagflow.common.config import PipelineConfig
from tagflow.common.errors import ConfigurationError


def test_values_default_from_ci_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CI_REGISTRY_IMAGE", "registry.gitlab.com/zairakai/docker-ecosystem/")
    monkeypatch.setenv("IMAGE_SUFFIX", "-1a2b3c")
    monkeypatch.setenv("PUSH_TO_REGISTRY", "true")
    monkeypatch.setenv("BUILD_ARGS", "--build-arg PHP_VERSION=8.3 --build-arg 'LABEL=a b'")
    monkeypatch.setenv("CI_PIPELINE_ID", "991")

    config = PipelineConfig()

    assert config.registry_image == "registry.gitlab.com/zairakai/docker-ecosystem"
    assert config.registry_host == "registry.gitlab.com"
    assert config.project_path == "zairakai/docker-ecosystem"
    assert config.api_url == "https://gitlab.com/api/v4"
    assert config.image_suffix == "-1a2b3c"
    assert config.push is True
    assert config.dry_run is False
    assert config.build_args == ["--build-arg", "PHP_VERSION=8.3", "--build-arg", "LABEL=a b"]
    assert config.pipeline_id == "991"
    assert config.platform == "linux/amd64"
    assert config.auth_header == "PRIVATE-TOKEN"


def test_docker_registry_is_used_when_ci_registry_is_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCKER_REGISTRY", "registry.example.org/team/images")

    assert PipelineConfig().registry_image == "registry.example.org/team/images"


@pytest.mark.parametrize(
    ("variables", "expected"),
    [
        ({}, "default"),
        ({"CACHE_ENABLED": "true"}, "enabled"),
        ({"NO_CACHE": "1", "CACHE_ENABLED": "true"}, "disabled"),
    ],
)
def test_cache_mode_from_environment(monkeypatch: pytest.MonkeyPatch, variables: dict, expected: str) -> None:
    for name, value in variables.items():
        monkeypatch.setenv(name, value)

    assert PipelineConfig().cache_mode == expected


def test_explicit_api_url_overrides_derived_one() -> None:
    config = PipelineConfig(registry_image="registry.example.com/a/b", registry_api_url="https://git.example.com/api/v4/")

    assert config.api_url == "https://git.example.com/api/v4"


def test_require_lists_every_missing_variable() -> None:
    config = PipelineConfig(registry_image="registry.example.com/a/b")

    with pytest.raises(ConfigurationError) as excinfo:
        config.require("registry_image", "image_suffix", "promoted_version")

    message = str(excinfo.value)
    assert "IMAGE_SUFFIX" in message
    assert "PROMOTED_VERSION" in message
    assert "CI_REGISTRY_IMAGE" not in message


def test_with_overrides_ignores_unset_values() -> None:
    config = PipelineConfig(registry_image="registry.example.com/a/b", promoted_version="v1.0.0")

    assert config.with_overrides(promoted_version=None) is config
    updated = config.with_overrides(promoted_version="v2.0.0")
    assert updated.promoted_version == "v2.0.0"
    assert config.promoted_version == "v1.0.0"


def test_local_suffix_falls_back_outside_ci() -> None:
    assert PipelineConfig(image_suffix="").local_suffix == "-local"
    assert PipelineConfig(image_suffix="-abc").local_suffix == "-abc"


def test_mirror_namespace_defaults_to_username() -> None:
    assert PipelineConfig(dockerhub_username="acme").mirror_namespace == "acme"
    assert PipelineConfig(dockerhub_username="acme", dockerhub_namespace="acmeorg").mirror_namespace == "acmeorg"


def test_retry_settings_are_validated() -> None:
    with pytest.raises(ValidationError):
        PipelineConfig(retry_attempts=0)

    policy = PipelineConfig(retry_attempts=4, retry_delay=1.5).retry_policy()
    assert policy.max_attempts == 4
    assert policy.base_delay == 1.5


def test_config_is_immutable() -> None:
    config = PipelineConfig(image_suffix="-abc")

    with pytest.raises(ValidationError):
        config.image_suffix = "-other"


def test_stage_check_follows_push_unless_set(monkeypatch: pytest.MonkeyPatch) -> None:
    config = PipelineConfig()
    assert config.push is True
    assert config.stage_check == "registry"

    monkeypatch.setenv("PUSH_TO_REGISTRY", "false")
    assert PipelineConfig().stage_check == "local"

    monkeypatch.setenv("STAGE_CHECK_MODE", "registry")
    assert PipelineConfig().stage_check == "registry"
