"""Core primitives shared across convergent."""

from convergent.core.errors import (
    ApplyError,
    ConfigurationError,
    ConvergentError,
    CycleError,
    DuplicateIdentityError,
    ExitCode,
    PlanError,
    RenderError,
    ServiceControlError,
    SourceUnavailableError,
    UnknownReferenceError,
    ValidationError,
)

__all__ = [
    "ApplyError",
    "ConfigurationError",
    "ConvergentError",
    "CycleError",
    "DuplicateIdentityError",
    "ExitCode",
    "PlanError",
    "RenderError",
    "ServiceControlError",
    "SourceUnavailableError",
    "UnknownReferenceError",
    "ValidationError",
]
