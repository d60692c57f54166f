"""Common utilities and helper functions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

# Application logger
logger = logging.getLogger("generic_lsp_client")


def setup_logging(log_file: Path | None = None, debug: bool = False) -> None:
    """Configure application logging.

    Args:
        log_file: Path to log file. If None, no file logging is configured.
        debug: If True, log at DEBUG level (includes server stderr).
    """
    if log_file is None:
        return

    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.addHandler(file_handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    logger.info("Logging initialized - log_file=%s, debug=%s", log_file, debug)


def create_literal_validator(
    name: str,
    valid_values: tuple[str, ...],
) -> Callable[[str], str]:
    """Create a validator for Literal types.

    Args:
        name: Human-readable name for the parameter (used in error messages)
        valid_values: Tuple of valid string values

    Returns:
        A validator function that takes a string and returns it if valid

    Example:
        >>> _validate_trace = create_literal_validator("trace level", ("off", "verbose"))
        >>> _validate_trace("off")  # Returns "off"
        >>> _validate_trace("loud")  # Raises typer.BadParameter
    """

    def validator(value: str) -> str:
        if value not in valid_values:
            import typer

            raise typer.BadParameter(f"Invalid {name}: {value}. Must be one of: {', '.join(valid_values)}.")
        return value

    return validator
