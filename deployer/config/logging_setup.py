"""Process-wide logging configuration."""

import logging
import sys

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def config_configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the root logger with the service format.

    Calling this more than once replaces the previously installed handler
    instead of stacking duplicates.

    Args:
        level: Logging level name.

    Returns:
        None: Logging is configured as side effect.

    Raises:
        ValueError: Raised when the level name is unknown.
    """

    numeric_level = logging.getLevelName(level.strip().upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"unsupported log level={level}")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, "_deployer_handler", False):
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    handler._deployer_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    # docker SDK and urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(max(numeric_level, logging.INFO))
    logging.getLogger("docker").setLevel(max(numeric_level, logging.INFO))
