"""Backend protocol and registry for resource kinds."""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, runtime_checkable

from convergent.resources.models import (
    Change,
    ResourceDeclaration,
    ResourceOutcome,
    ResourceState,
)


@runtime_checkable
class Backend(Protocol):
    """Protocol for appliers of one resource kind."""

    @property
    def kind(self) -> str:
        """Resource kind handled (e.g. 'file', 'service')."""
        ...

    def current_state(self, decl: ResourceDeclaration) -> ResourceState:
        """Observe the actual state of the resource."""
        ...

    def diff(self, decl: ResourceDeclaration, state: ResourceState) -> List[Change]:
        """Return the attributes that differ from the declaration."""
        ...

    def apply(
        self, decl: ResourceDeclaration, state: ResourceState, changes: List[Change]
    ) -> ResourceOutcome:
        """Converge the resource, return CREATED or UPDATED."""
        ...

    def notify(self, decl: ResourceDeclaration, action: str) -> None:
        """Run a notification action against the resource."""
        ...


class BackendRegistry:
    """In-memory registry for backends, keyed by resource kind."""

    def __init__(self) -> None:
        self._backends: Dict[str, Backend] = {}

    def register(self, backend: Backend) -> None:
        """Register a backend by its kind."""
        self._backends[backend.kind] = backend

    def get(self, kind: str) -> Optional[Backend]:
        """Get a backend by resource kind."""
        return self._backends.get(kind)

    def list(self) -> List[str]:
        """List all registered kinds."""
        return list(self._backends.keys())

    def begin_run(self) -> None:
        """Reset per-run state on backends that keep any."""
        for backend in self._backends.values():
            hook = getattr(backend, "begin_run", None)
            if hook is not None:
                hook()
