#!/usr/bin/env python
#
# FindFoci Optimiser - Custom Exceptions
# © 2025 FindFoci Optimiser Authors
#

"""
Custom exception classes for the FindFoci optimiser.

Exception Hierarchy:
    FociError (base)
    ├── FociConfigError (invalid configuration or inputs)
    │   └── FociStepLimitError (parameter space larger than the step limit)
    ├── FociValidationError (invalid parameter values)
    │   └── FociParseError (canonical parameter text cannot be parsed)
    ├── FociLoadError (image or reference points cannot be read)
    ├── FociPipelineError (a maxima-detection stage raised)
    ├── FociAggregationError (per-image result lists do not align)
    └── FociPersistenceError (results file cannot be written)

Example:
    >>> try:
    ...     optimiser.run_batch("images/")
    ... except FociError as e:
    ...     print(format_error_for_user(e, verbose=True))
"""

from __future__ import annotations

import platform
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .schema import VERSION


class FociError(Exception):
    """Base exception for all foci_core errors.

    Attributes:
        message: Human-readable error message.
        filepath: Path to the related file (if applicable).
        original_error: The original exception that was caught (if wrapping).
        context: Additional context information as key-value pairs.
    """

    def __init__(
        self,
        message: str,
        *,
        filepath: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.filepath = filepath
        self.original_error = original_error
        self.context = context or {}

        full_message = message
        if filepath:
            full_message = f"{message} (file: {filepath})"
        if original_error:
            full_message = (
                f"{full_message}: {type(original_error).__name__}: {original_error}"
            )

        super().__init__(full_message)

    def get_diagnostic_info(self) -> Dict[str, Any]:
        """Collect system and error details for bug reports."""
        info: Dict[str, Any] = {
            "version": VERSION,
            "python_version": sys.version.split()[0],
            "platform": f"{platform.system()} {platform.release()} ({platform.machine()})",
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "error_type": type(self).__name__,
            "error_message": self.message,
        }
        if self.filepath:
            info["filepath"] = self.filepath
        if self.original_error:
            info["original_error_type"] = type(self.original_error).__name__
            info["original_error_message"] = str(self.original_error)
        if self.context:
            info["context"] = dict(self.context)
        return info


class FociConfigError(FociError):
    """Exception raised for configuration errors that abort a whole run.

    Example:
        >>> raise FociConfigError(
        ...     "Configuration file not found",
        ...     filepath="optimiser.yaml",
        ... )
    """


class FociStepLimitError(FociConfigError):
    """Exception raised when the parameter space exceeds the step limit."""

    def __init__(
        self,
        combinations: int,
        step_limit: int,
        *,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.combinations = combinations
        self.step_limit = step_limit
        ctx = context.copy() if context else {}
        ctx["combinations"] = combinations
        ctx["step_limit"] = step_limit
        super().__init__(
            f"Maximum number of optimisation steps exceeded: "
            f"{combinations} >> {step_limit}",
            context=ctx,
        )


class FociValidationError(FociError):
    """Exception raised when a parameter value fails validation.

    Attributes:
        parameter_name: Name of the invalid parameter.
        provided_value: The value that was provided.
        expected: Description of what was expected.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        parameter_name: Optional[str] = None,
        provided_value: Any = None,
        expected: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.parameter_name = parameter_name
        self.provided_value = provided_value
        self.expected = expected

        ctx = context.copy() if context else {}
        if parameter_name:
            ctx["parameter_name"] = parameter_name
        if provided_value is not None:
            ctx["provided_value"] = repr(provided_value)
        if expected:
            ctx["expected"] = expected

        super().__init__(message, original_error=original_error, context=ctx)


class FociParseError(FociValidationError):
    """Exception raised when canonical parameter text cannot be parsed."""


class FociLoadError(FociError):
    """Exception raised when an image, mask or points file cannot be read."""

    def __init__(
        self,
        message: str = "Failed to load file",
        *,
        filepath: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            filepath=filepath,
            original_error=original_error,
            context=context,
        )


class FociPipelineError(FociError):
    """Exception raised when a maxima-detection stage fails."""

    def __init__(
        self,
        message: str = "Maxima-detection stage failed",
        *,
        stage: Optional[str] = None,
        filepath: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.stage = stage
        ctx = context.copy() if context else {}
        if stage:
            ctx["stage"] = stage
        super().__init__(
            message,
            filepath=filepath,
            original_error=original_error,
            context=ctx,
        )


class FociAggregationError(FociError):
    """Exception raised when per-image result lists cannot be combined."""


class FociPersistenceError(FociError):
    """Exception raised when a results file cannot be written.

    Persistence failures are reported as warnings; the computed results
    are still returned.
    """

    def __init__(
        self,
        message: str = "Failed to write results file",
        *,
        filepath: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            filepath=filepath,
            original_error=original_error,
            context=context,
        )


def format_error_for_user(error: FociError, *, verbose: bool = False) -> str:
    """Format an error message for CLI display.

    Args:
        error: The FociError to format.
        verbose: If True, include the diagnostic details.

    Returns:
        Formatted error message string.
    """
    lines: List[str] = [
        "",
        "=" * 60,
        f"Error: {error.message}",
        "=" * 60,
    ]

    if error.filepath:
        lines.append(f"File: {error.filepath}")

    if error.original_error:
        lines.append(
            f"Cause: {type(error.original_error).__name__}: {error.original_error}"
        )

    if verbose:
        lines.append("")
        lines.append("Diagnostic information:")
        for key, value in error.get_diagnostic_info().items():
            if isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    lines.append(f"  {key}.{sub_key}: {sub_value}")
            else:
                lines.append(f"  {key}: {value}")

    return "\n".join(lines)
