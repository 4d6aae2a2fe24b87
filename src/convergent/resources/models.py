"""
Data models for resource convergence.

These models describe:
- What a plan declares (ResourceDeclaration, Notification)
- The order it runs in (RunPlan)
- What backends observe (ResourceState, Change)
- What a run reports (ResourceReport, ConvergenceResult)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from convergent.core.errors import ValidationError


class ResourceKind(Enum):
    """Kinds of resources a plan can declare."""

    FILE = "file"
    TEMPLATE = "template"
    SERVICE = "service"


class ResourceOutcome(Enum):
    """Per-resource result of a convergence run."""

    UNCHANGED = "unchanged"
    UPDATED = "updated"
    CREATED = "created"
    FAILED = "failed"


@dataclass(frozen=True)
class ResourceRef:
    """Reference to a declared resource by kind and identity key."""

    kind: str
    identity: str

    @classmethod
    def parse(cls, text: str) -> ResourceRef:
        """Parse a `kind:identity` reference, e.g. `service:baragon-server`."""
        kind, sep, identity = str(text).partition(":")
        if not sep or not kind or not identity:
            raise ValidationError(
                f"Invalid resource reference '{text}', expected kind:identity",
                details={"reference": str(text)},
            )
        return cls(kind=kind.strip(), identity=identity.strip())

    def __str__(self) -> str:
        return f"{self.kind}:{self.identity}"


@dataclass(frozen=True)
class Notification:
    """Action to trigger on a target when the declaring resource changes."""

    target: ResourceRef
    action: str = "restart"

    def __str__(self) -> str:
        return f"{self.action} {self.target}"


@dataclass(frozen=True)
class ResourceDeclaration:
    """One unit of desired state. Immutable for the duration of a run."""

    kind: str
    identity: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    requires: tuple[ResourceRef, ...] = ()
    notifies: tuple[Notification, ...] = ()
    index: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.attributes, MappingProxyType):
            object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))
        object.__setattr__(self, "requires", tuple(self.requires))
        object.__setattr__(self, "notifies", tuple(self.notifies))

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(self.kind, self.identity)

    def get(self, name: str, default: Any = None) -> Any:
        """Get a desired attribute."""
        return self.attributes.get(name, default)


@dataclass(frozen=True)
class RunPlan:
    """Declarations in the order they converge."""

    declarations: tuple[ResourceDeclaration, ...] = ()

    def __iter__(self) -> Iterator[ResourceDeclaration]:
        return iter(self.declarations)

    def __len__(self) -> int:
        return len(self.declarations)

    @property
    def refs(self) -> list[ResourceRef]:
        return [d.ref for d in self.declarations]

    def get(self, ref: ResourceRef) -> ResourceDeclaration | None:
        """Get the declaration for a reference."""
        for decl in self.declarations:
            if decl.ref == ref:
                return decl
        return None

    def position(self, ref: ResourceRef) -> int:
        """Plan position of a reference."""
        return self.refs.index(ref)


@dataclass
class ResourceState:
    """Observed state of a resource."""

    exists: bool
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Change:
    """A single attribute that differs from its desired value."""

    attribute: str
    current: Any
    desired: Any

    def __str__(self) -> str:
        return f"{self.attribute}: {self.current!r} -> {self.desired!r}"


@dataclass
class ResourceReport:
    """Outcome of converging one resource."""

    ref: ResourceRef
    outcome: ResourceOutcome
    changes: list[Change] = field(default_factory=list)
    error: str | None = None


@dataclass
class ConvergenceResult:
    """Result of one run. Created fresh per run, discarded after reporting."""

    reports: list[ResourceReport] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)
    pending_notifications: list[Notification] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Whether every resource converged and every notification fired."""
        return not self.errors and self.failed_index is None

    @property
    def failed_index(self) -> int | None:
        """Plan position of the first failed resource."""
        for position, report in enumerate(self.reports):
            if report.outcome is ResourceOutcome.FAILED:
                return position
        return None

    @property
    def changed(self) -> list[ResourceReport]:
        """Reports for resources that were (or would be) created or updated."""
        return [
            r
            for r in self.reports
            if r.outcome in (ResourceOutcome.CREATED, ResourceOutcome.UPDATED)
        ]

    def outcomes(self) -> list[ResourceOutcome]:
        return [r.outcome for r in self.reports]

    def counts(self) -> dict[str, int]:
        """Number of resources per outcome."""
        counts = {outcome.value: 0 for outcome in ResourceOutcome}
        for report in self.reports:
            counts[report.outcome.value] += 1
        return counts
