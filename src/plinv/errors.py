"""Error types and formatting utilities for plinv.

Every operator-facing failure derives from ``InventoryError`` and carries the
exit code the CLI should return. Pydantic validation errors are cleaned up
before they reach the operator.
"""

import subprocess

import yaml
from pydantic import ValidationError

from plinv import cli_logger, exit_codes


class InventoryError(Exception):
    """Base class for failures of an inventory operation."""

    exit_code = exit_codes.GENERAL_ERROR


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic ValidationError into clean, user-friendly message.

    Removes Pydantic-specific URLs and technical jargon, producing a message
    suitable for CLI output.

    Args:
        error: The Pydantic ValidationError to format.

    Returns:
        A clean, human-readable error message.
    """
    messages = []

    for err in error.errors():
        # Field path, e.g. "artifacts.0.os" or just "version"
        loc = ".".join(str(part) for part in err["loc"])
        error_type = err["type"]
        msg = err["msg"]

        if error_type == "missing":
            messages.append(f"'{loc}': field is required")
        elif error_type == "extra_forbidden":
            messages.append(f"'{loc}': unknown field")
        elif error_type == "string_type":
            messages.append(f"'{loc}': expected string")
        elif error_type == "list_type":
            messages.append(f"'{loc}': expected list")
        elif error_type in ("dict_type", "model_type"):
            messages.append(f"'{loc}': expected mapping" if loc else "expected mapping")
        elif error_type == "bool_type":
            messages.append(f"'{loc}': expected boolean")
        elif error_type == "enum":
            expected = err.get("ctx", {}).get("expected", "")
            messages.append(f"'{loc}': must be one of {expected}")
        else:
            # Strip pydantic's "Value error, " prefix from custom validators
            clean_msg = msg.removeprefix("Value error, ")
            messages.append(f"'{loc}': {clean_msg}" if loc else clean_msg)

    return "; ".join(messages)


def handle_cli_error(error: Exception) -> int:
    """Handle an exception at the CLI boundary.

    Formats the error into a single operator-facing line and returns the
    matching exit code. This prevents raw tracebacks from reaching the user.

    Args:
        error: The exception to handle.

    Returns:
        An exit code from exit_codes.
    """
    if isinstance(error, InventoryError):
        cli_logger.error(str(error))
        return error.exit_code

    if isinstance(error, ValidationError):
        cli_logger.error(f"Invalid input: {format_validation_errors(error)}")
        return exit_codes.INVALID_ARGS

    if isinstance(error, subprocess.CalledProcessError):
        cmd_str = " ".join(str(c) for c in error.cmd) if isinstance(error.cmd, list) else str(error.cmd)
        cli_logger.error(f"Command failed (exit code {error.returncode}): {cmd_str}")
        return exit_codes.GENERAL_ERROR

    if isinstance(error, OSError):
        if error.filename:
            cli_logger.error(f"{error.strerror}: {error.filename}")
        else:
            cli_logger.error(str(error))
        return exit_codes.GENERAL_ERROR

    if isinstance(error, yaml.YAMLError):
        cli_logger.error(f"Invalid YAML: {error}")
        return exit_codes.GENERAL_ERROR

    cli_logger.error(f"Unexpected error: {error}")
    return exit_codes.GENERAL_ERROR
