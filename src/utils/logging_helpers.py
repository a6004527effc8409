"""
Logging helper utilities for Strata.

Consistent formatting for multi-line error and warning sections.
"""

import logging
from typing import List, Optional


def _log_section(
    level: int,
    title: str,
    messages: List[str],
    logger: Optional[logging.Logger],
    width: int,
) -> None:
    if logger is None:
        logger = logging.getLogger()

    logger.log(level, "=" * width)
    logger.log(level, title)
    for message in messages:
        logger.log(level, message or "")
    logger.log(level, "=" * width)


def log_error_section(
    title: str,
    messages: List[str],
    logger: Optional[logging.Logger] = None,
    width: int = 60
) -> None:
    """
    Log an error section with separator lines and multiple messages.

    Args:
        title: Title message for the error section
        messages: List of error messages to display
        logger: Logger instance (defaults to root logger if not provided)
        width: Width of separator line in characters

    Examples:
        >>> log_error_section(
        ...     "Failed to detect installed OS packages",
        ...     ["Image: alpine:3.19", "Cause: docker inspect failed"]
        ... )
        ============================================================
        Failed to detect installed OS packages
        Image: alpine:3.19
        Cause: docker inspect failed
        ============================================================
    """
    _log_section(logging.ERROR, title, messages, logger, width)


def log_warning_section(
    title: str,
    messages: List[str],
    logger: Optional[logging.Logger] = None,
    width: int = 60
) -> None:
    """
    Log a warning section with separator lines and multiple messages.

    Args:
        title: Title message for the warning section
        messages: List of warning messages to display
        logger: Logger instance (defaults to root logger if not provided)
        width: Width of separator line in characters
    """
    _log_section(logging.WARNING, title, messages, logger, width)
