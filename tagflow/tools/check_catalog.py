"""Standalone helper that checks the image catalog against the images directory."""

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from tagflow.common.catalog import ImageCatalog, load_catalog
from tagflow.common.issues import PipelineIssue, has_errors

logger = logging.getLogger(__name__)

_STAGE_PATTERN = re.compile(r"^\s*FROM\s+\S+\s+AS\s+(\S+)", re.IGNORECASE | re.MULTILINE)


def dockerfile_stages(dockerfile: Path) -> List[str]:
    """Return the named build stages (``FROM ... AS name``) declared in a Dockerfile."""
    return [name.lower() for name in _STAGE_PATTERN.findall(dockerfile.read_text(encoding="utf-8"))]


def check_catalog(catalog: ImageCatalog, images_dir: Path) -> List[PipelineIssue]:
    """
    Verify every family has a Dockerfile and every declared stage is a build target.

    Args:
        catalog: Image families to check.
        images_dir: Directory the family paths are relative to.

    Returns:
        Issues found; an empty list means the catalog and the images directory agree.
    """
    issues: List[PipelineIssue] = []
    logger.info("→ Checking Dockerfiles in %s…", images_dir)

    for family in catalog.families:
        dockerfile = images_dir / family.path / "Dockerfile"
        if not dockerfile.is_file():
            logger.error("Missing required Dockerfile: %s", dockerfile)
            issues.append(
                PipelineIssue(code="DOCKERFILE_MISSING", message=f"Missing Dockerfile: {dockerfile}", subject=family.key)
            )
            continue
        logger.debug("  ✓ %s", dockerfile)

        if not family.is_multi_stage:
            continue
        declared = dockerfile_stages(dockerfile)
        for stage in family.stage_names:
            if stage.lower() not in declared:
                logger.error("Stage %s is not a build target in %s", stage, dockerfile)
                issues.append(
                    PipelineIssue(
                        code="STAGE_NOT_DECLARED",
                        message=f"Dockerfile has no 'FROM ... AS {stage}' target",
                        subject=family.key,
                    )
                )

    unlisted = _unlisted_dockerfiles(catalog, images_dir)
    for dockerfile in unlisted:
        logger.warning("Dockerfile not referenced by the catalog: %s", dockerfile)
        issues.append(
            PipelineIssue(
                code="DOCKERFILE_UNLISTED",
                message="Dockerfile is not referenced by any image family",
                severity="warning",
                subject=str(dockerfile),
            )
        )

    if not has_errors(issues):
        logger.info("All %d image families have valid Dockerfiles", len(catalog.families))
    return issues


def _unlisted_dockerfiles(catalog: ImageCatalog, images_dir: Path) -> List[Path]:
    if not images_dir.is_dir():
        return []
    known = {(images_dir / family.path / "Dockerfile").resolve() for family in catalog.families}
    return sorted(path for path in images_dir.rglob("Dockerfile") if path.resolve() not in known)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Check the image catalog against the images directory.")
    parser.add_argument(
        "--images-dir",
        default="images",
        help="Directory containing the image build contexts (default: images).",
    )
    parser.add_argument(
        "--catalog",
        default=None,
        help="Path to the image catalog (default: the packaged images.yaml).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the catalog check."""
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(message)s")

    try:
        catalog = load_catalog(args.catalog)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    issues = check_catalog(catalog, Path(args.images_dir))
    return 1 if has_errors(issues) else 0


if __name__ == "__main__":
    sys.exit(main())
