"""Resource declarations, plans and run results."""

from convergent.resources.models import (
    Change,
    ConvergenceResult,
    Notification,
    ResourceDeclaration,
    ResourceKind,
    ResourceOutcome,
    ResourceRef,
    ResourceReport,
    ResourceState,
    RunPlan,
)

__all__ = [
    "Change",
    "ConvergenceResult",
    "Notification",
    "ResourceDeclaration",
    "ResourceKind",
    "ResourceOutcome",
    "ResourceRef",
    "ResourceReport",
    "ResourceState",
    "RunPlan",
]
