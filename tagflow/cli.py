"""Command line entry point: ``tagflow <command>``."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from dotenv import load_dotenv

from tagflow.common.catalog import ImageCatalog, ImageFamily, load_catalog
from tagflow.common.command_runner import CommandRunner
from tagflow.common.config import PipelineConfig
from tagflow.common.errors import BuilderError, ConfigurationError
from tagflow.common.issues import has_errors
from tagflow.common.logs import log_section, setup_logging
from tagflow.common.version import ReleaseVersion
from tagflow.pipeline.cleanup import StagingGarbageCollector
from tagflow.pipeline.driver import PipelineContext, build_pipeline
from tagflow.pipeline.mirror import DockerHubMirror, mirror_mappings
from tagflow.pipeline.promotion import TagPromoter
from tagflow.pipeline.rollback import DisasterRecovery
from tagflow.pipeline.sizes import ImageSizeReporter
from tagflow.runtime.build import MultiStageBuildExecutor, parse_image_tag
from tagflow.runtime.builder import BuilderManager, builder_name
from tagflow.runtime.docker import DockerClient
from tagflow.runtime.registry_api import RegistryApiClient
from tagflow.tools.check_catalog import check_catalog

logger = logging.getLogger("tagflow.cli")


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="tagflow",
        description="Build, validate, promote and clean up multi-stage container images.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--catalog",
        default=None,
        help="Path to the image catalog (default: $IMAGE_CATALOG or the packaged images.yaml).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build one image in an isolated buildx builder.")
    build.add_argument("image_path", help="Build context, e.g. images/php/8.3")
    build.add_argument("image_name", help="Repository name, e.g. php")
    build.add_argument("image_tag", help="Tag to build, e.g. 8.3-abc123-prod or mysql-8.0-abc123")

    validate = subparsers.add_parser("validate", help="Verify stage integrity of the staging images.")
    _add_family_filter(validate)

    promote = subparsers.add_parser("promote", help="Promote staging images to stable tags.")
    promote.add_argument("--version", dest="promoted_version", default=None, help="Release version (vX.Y.Z).")
    promote.add_argument("--dry-run", action="store_true", help="Print the promotion plan without changes.")
    _add_family_filter(promote)

    subparsers.add_parser("cleanup", help="Delete staging tags and dangling manifests from the registry.")

    rollback = subparsers.add_parser("rollback", help="Point every latest tag back at a previous release.")
    rollback.add_argument("target_tag", nargs="?", default=None, help="Tag to roll back to (default: $ROLLBACK_TAG).")

    subparsers.add_parser("mirror", help="Mirror stable tags to Docker Hub.")

    sizes = subparsers.add_parser("sizes", help="Write the image size report.")
    sizes.add_argument("--output", default=None, help="Report file (default: $OUTPUT_FILE or image-sizes.txt).")

    run = subparsers.add_parser("run", help="Build, validate and promote the catalog, then clean up.")
    run.add_argument("--skip-build", action="store_true", help="Validate and promote existing staging images.")
    run.add_argument("--no-cleanup", action="store_true", help="Keep staging tags after promotion.")
    run.add_argument("--mirror", action="store_true", help="Mirror promoted images to Docker Hub.")
    _add_family_filter(run)

    check = subparsers.add_parser("check-config", help="Check the catalog against the images directory.")
    check.add_argument("--images-dir", default=None, help="Images directory (default: $IMAGES_DIR or images).")

    return parser.parse_args(argv)


def _add_family_filter(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--family",
        action="append",
        default=[],
        help="Limit to a family (name or name:version). Can be provided multiple times.",
    )


def _context(config: PipelineConfig, catalog: ImageCatalog, *, with_api: bool = False) -> PipelineContext:
    runner = CommandRunner()
    registry_api = None
    if with_api:
        registry_api = RegistryApiClient(
            api_url=config.api_url,
            project_id=config.project_id,
            token=config.registry_token,
            auth_header=config.auth_header,
            retry_policy=config.retry_policy(),
        )
    return PipelineContext(
        config=config,
        catalog=catalog,
        command_runner=runner,
        docker=DockerClient(runner, retry_policy=config.retry_policy()),
        logger=logging.getLogger("tagflow.pipeline"),
        registry_api=registry_api,
    )


def cmd_build(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    config.require("registry_image")
    image_path = args.image_path[len("images/"):] if args.image_path.startswith("images/") else args.image_path
    version_tag, stage = parse_image_tag(args.image_tag)
    name = builder_name(args.image_name, stage, config.pipeline_id)

    log_section(logger, f"Building {args.image_name}:{args.image_tag}")
    logger.info("Path: %s", args.image_path)
    logger.info("Builder: %s", name)

    context = _context(config, catalog)
    builders = BuilderManager(context.command_runner, dry_run=config.dry_run)
    executor = MultiStageBuildExecutor(context.command_runner, config)
    with builders.session(name):
        result = executor.build(image_path, args.image_name, version_tag, stage, builder=name)

    if not result.success:
        for issue in result.issues:
            logger.error("%s", issue)
        logger.error("Build failed: %s:%s", args.image_name, args.image_tag)
        return 1
    logger.info("✅ %s:%s built successfully", args.image_name, args.image_tag)
    return 0


def cmd_validate(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    config.require("registry_image")
    families = catalog.select(args.family)
    runner = build_pipeline(config, build=False, promote=False, cleanup=False)
    result = runner.run(families, _context(config, catalog))
    return 0 if result.success else 1


def cmd_promote(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    config.require("registry_image", "image_suffix", "promoted_version")
    release = ReleaseVersion.parse(config.promoted_version)
    families = catalog.select(args.family)
    context = _context(config, catalog)
    promoter = TagPromoter(context.docker, config)

    if args.dry_run or config.dry_run:
        _print_plan(promoter, families, config.image_suffix, release)
        return 0

    report = promoter.promote_catalog(families, config.image_suffix, release)
    return 0 if report.success else 1


def _print_plan(
    promoter: TagPromoter,
    families: List[ImageFamily],
    suffix: str,
    release: ReleaseVersion,
) -> None:
    log_section(logger, f"[DRY-RUN] Promotion plan for {release}")
    for family in families:
        for promotion in promoter.plan(family, suffix, release):
            logger.info("%s", promotion.source)
            for target in promotion.targets:
                logger.info("  → %s", target)


def cmd_cleanup(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    config.require("registry_image", "image_suffix", "project_id", "registry_token")
    if config.dry_run:
        logger.warning("[DRY-RUN] Would delete staging tags with suffix %s", config.image_suffix)
        return 0
    context = _context(config, catalog, with_api=True)
    collector = StagingGarbageCollector(context.registry_api, config, catalog)
    result = collector.cleanup_staging_tags(config.image_suffix)
    if result.issues:
        logger.warning("Cleanup finished with %d warnings (non-fatal)", len(result.issues))
    return 0


def cmd_rollback(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    target_tag = args.target_tag or config.rollback_tag
    if not target_tag:
        raise ConfigurationError("Missing required environment variables: ROLLBACK_TAG")
    config.require("registry_image")
    context = _context(config, catalog)
    result = DisasterRecovery(context.docker, config, catalog).rollback(target_tag)
    return 0 if result.success else 1


def cmd_mirror(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    config.require("registry_image", "dockerhub_username", "dockerhub_token")
    if config.dry_run:
        for source, hub_reference in mirror_mappings(catalog, config.mirror_namespace):
            logger.warning("[DRY-RUN] Would mirror %s → %s", source, hub_reference)
        return 0
    context = _context(config, catalog)
    result = DockerHubMirror(context.docker, config, catalog).sync()
    return 0 if result.success else 1


def cmd_sizes(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    config.require("registry_image")
    context = _context(config, catalog)
    report = ImageSizeReporter(context.docker, config, catalog).collect(config.local_suffix)
    path = report.write(args.output or config.size_report_path)
    logger.info("Image sizes saved to: %s", path)
    return 0 if report.success else 1


def cmd_run(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    config.require("registry_image", "image_suffix", "promoted_version")
    cleanup = not args.no_cleanup
    if cleanup:
        config.require("project_id", "registry_token")

    families = catalog.select(args.family)
    runner = build_pipeline(
        config,
        build=not args.skip_build,
        validate=True,
        promote=True,
        cleanup=cleanup,
        mirror=args.mirror,
    )
    result = runner.run(families, _context(config, catalog, with_api=cleanup))
    return 0 if result.success else 1


def cmd_check_config(args: argparse.Namespace, config: PipelineConfig, catalog: ImageCatalog) -> int:
    log_section(logger, "Validating Image Catalog")
    issues = check_catalog(catalog, Path(args.images_dir or config.images_dir))
    return 1 if has_errors(issues) else 0


COMMANDS: Dict[str, Callable[[argparse.Namespace, PipelineConfig, ImageCatalog], int]] = {
    "build": cmd_build,
    "validate": cmd_validate,
    "promote": cmd_promote,
    "cleanup": cmd_cleanup,
    "rollback": cmd_rollback,
    "mirror": cmd_mirror,
    "sizes": cmd_sizes,
    "run": cmd_run,
    "check-config": cmd_check_config,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for every tagflow command."""
    load_dotenv()
    args = parse_args(argv if argv is not None else sys.argv[1:])
    setup_logging(args.verbose)

    try:
        config = PipelineConfig()
        if getattr(args, "promoted_version", None):
            config = config.with_overrides(promoted_version=args.promoted_version)
        catalog = load_catalog(args.catalog or config.catalog_path)
        return COMMANDS[args.command](args, config, catalog)
    except (ConfigurationError, BuilderError) as exc:
        logger.error("%s", exc)
        return 1
    except (FileNotFoundError, KeyError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
