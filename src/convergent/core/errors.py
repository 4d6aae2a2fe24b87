"""
Unified error handling for convergent.

Plan errors reject a plan before any resource is touched. Apply errors
are raised by backends while converging a single resource and stop the
run (fail-fast).

Exit Codes:
- 0: Success
- 1: Apply failed (a resource could not be converged)
- 10: Configuration error (unreadable or malformed plan/variables)
- 12: Plan or validation error (cycle, duplicate, unknown reference)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    APPLY_FAILED = 1
    CONFIG_ERROR = 10
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class ConvergentError(Exception):
    """Base exception for convergent errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ConvergentError):
    """Raised when a plan or variables file cannot be read or parsed."""

    exit_code = ExitCode.CONFIG_ERROR


class ValidationError(ConvergentError):
    """Raised when a declaration is structurally invalid."""

    exit_code = ExitCode.VALIDATION_ERROR


class PlanError(ValidationError):
    """Raised when declarations cannot form a run plan."""


class CycleError(PlanError):
    """Raised when ordering edges form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            details={"cycle": cycle},
        )


class DuplicateIdentityError(PlanError):
    """Raised when two declarations share kind and identity key."""

    def __init__(self, kind: str, identity: str):
        self.kind = kind
        self.identity = identity
        super().__init__(
            f"Duplicate resource {kind}:{identity}",
            details={"kind": kind, "identity": identity},
        )


class UnknownReferenceError(PlanError):
    """Raised when a declaration requires or notifies an undeclared resource."""

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(
            f"{source} references undeclared resource {target}",
            details={"source": source, "target": target},
        )


class ApplyError(ConvergentError):
    """Raised when a backend cannot converge a resource."""

    exit_code = ExitCode.APPLY_FAILED

    def __init__(self, kind: str, identity: str, reason: str):
        self.kind = kind
        self.identity = identity
        self.reason = reason
        super().__init__(
            f"{kind}:{identity}: {reason}",
            details={"kind": kind, "identity": identity},
        )


class SourceUnavailableError(ApplyError):
    """Raised when a file's content source cannot be fetched."""


class RenderError(ApplyError):
    """Raised when a template cannot be rendered."""


class ServiceControlError(ApplyError):
    """Raised when the service manager rejects an action."""


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI commands that converts exceptions into exit codes.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - ConvergentError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except ConvergentError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: ConvergentError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
