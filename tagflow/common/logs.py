"""Logging setup shared by the command line entry points."""
import logging
import os

SECTION_WIDTH = 60


def setup_logging(verbose: bool = False) -> None:
    """Configure console logging for pipeline commands."""
    level = logging.DEBUG if verbose or os.environ.get("DEBUG", "").lower() == "true" else logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        root.addHandler(console_handler)
    for handler in root.handlers:
        handler.setLevel(level)
    root.setLevel(level)

    logging.getLogger('tagflow').setLevel(level)

    # Set log level for specific loggers to reduce noise
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def log_section(logger: logging.Logger, title: str) -> None:
    """Log a banner that separates pipeline sections in CI output."""
    logger.info("=" * SECTION_WIDTH)
    logger.info("📦 %s", title)
    logger.info("=" * SECTION_WIDTH)
