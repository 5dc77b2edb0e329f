"""Tests for the catalog consistency check."""

from __future__ import annotations

import json
from pathlib import Path

from tagflow.common.catalog import ImageCatalog
from tagflow.tools.check_catalog import check_catalog, dockerfile_stages, main


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_dockerfile_stages(tmp_path: Path) -> None:
    dockerfile = write(
        tmp_path / "Dockerfile",
        "FROM php:8.3-fpm-alpine AS base\nRUN true\nFROM base AS prod\nfrom prod as dev\n",
    )

    assert dockerfile_stages(dockerfile) == ["base", "prod", "dev"]


def test_consistent_catalog_has_no_issues(tmp_path: Path, catalog: ImageCatalog) -> None:
    write(tmp_path / "php/8.3/Dockerfile", "FROM alpine AS prod\nFROM prod AS dev\nFROM dev AS test\n")
    write(tmp_path / "database/mysql/8.0/Dockerfile", "FROM mysql:8.0\n")

    assert check_catalog(catalog, tmp_path) == []


def test_inconsistencies_are_reported(tmp_path: Path, catalog: ImageCatalog) -> None:
    write(tmp_path / "php/8.3/Dockerfile", "FROM alpine AS prod\nFROM prod AS dev\n")
    write(tmp_path / "legacy/Dockerfile", "FROM busybox\n")

    issues = check_catalog(catalog, tmp_path)

    assert [(issue.code, issue.severity) for issue in issues] == [
        ("STAGE_NOT_DECLARED", "error"),
        ("DOCKERFILE_MISSING", "error"),
        ("DOCKERFILE_UNLISTED", "warning"),
    ]


def test_main_exit_codes(tmp_path: Path) -> None:
    catalog = write(
        tmp_path / "catalog.json",
        json.dumps({"families": [{"name": "services", "version": "minio", "path": "services/minio"}]}),
    )
    images = tmp_path / "images"
    argv = ["--catalog", str(catalog), "--images-dir", str(images)]

    assert main(argv) == 1
    write(images / "services/minio/Dockerfile", "FROM minio/minio\n")
    assert main(argv) == 0
    assert main(["--catalog", str(tmp_path / "missing.yaml")]) == 1
