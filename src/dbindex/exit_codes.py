"""Standardized CLI exit codes for db-index-checker.

Exit code scheme:

    0  SUCCESS        -- check completed, no failing findings
    1  GENERAL_ERROR  -- unexpected failure, unreadable baseline, crash
    2  USAGE_ERROR    -- invalid arguments, bad flags, unknown command (Click default)
    3  CONFIG_ERROR   -- .dbindex.yaml is malformed or has unknown keys
    5  GATE_FAILURE   -- missing indexes found and the build is configured to fail

CI jobs can tell "the check found problems" (5) apart from "the tool
crashed" (1).
"""

from __future__ import annotations

import click

# ---------------------------------------------------------------------------
# Exit code constants
# ---------------------------------------------------------------------------

EXIT_SUCCESS: int = 0
EXIT_ERROR: int = 1
EXIT_USAGE: int = 2
EXIT_CONFIG: int = 3
EXIT_GATE_FAILURE: int = 5

DESCRIPTIONS: dict[int, str] = {
    EXIT_SUCCESS: "success",
    EXIT_ERROR: "unexpected error",
    EXIT_USAGE: "invalid usage (bad arguments or flags)",
    EXIT_CONFIG: "invalid configuration",
    EXIT_GATE_FAILURE: "missing index gate failed",
}

# ---------------------------------------------------------------------------
# Custom exceptions (caught by Click's error handler)
# ---------------------------------------------------------------------------


class DbIndexError(click.ClickException):
    """Base class for checker errors with exit codes."""

    def __init__(self, message: str, exit_code: int = EXIT_ERROR):
        super().__init__(message)
        self.exit_code = exit_code

    def format_message(self) -> str:
        return self.message


class ConfigError(DbIndexError):
    """Raised when the configuration file cannot be used."""

    def __init__(self, message: str):
        super().__init__(message, EXIT_CONFIG)


class GateFailureError(DbIndexError):
    """Raised when missing indexes fail the check."""

    def __init__(self, message: str = "Missing index check failed."):
        super().__init__(message, EXIT_GATE_FAILURE)
