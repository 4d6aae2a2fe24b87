"""
Resource graph: turns declarations into an ordered run plan.

Ordering uses a stable topological sort. Among resources whose
requirements are satisfied, the one declared first runs first, so
unchanged input always yields the same order.
"""

from __future__ import annotations

import heapq
from typing import Iterable

import structlog

from convergent.core.errors import CycleError, DuplicateIdentityError, UnknownReferenceError
from convergent.resources.models import ResourceDeclaration, ResourceRef, RunPlan

logger = structlog.get_logger()


class ResourceGraph:
    """Validates declarations and orders them by their `requires` edges."""

    def load(self, declarations: Iterable[ResourceDeclaration]) -> RunPlan:
        """
        Build a run plan from declarations.

        Raises:
            DuplicateIdentityError: two declarations share kind and identity
            UnknownReferenceError: a requires/notifies target is not declared
            CycleError: requires edges form a cycle
        """
        decls: dict[ResourceRef, ResourceDeclaration] = {}
        for decl in declarations:
            if decl.ref in decls:
                raise DuplicateIdentityError(decl.kind, decl.identity)
            decls[decl.ref] = decl

        insertion = {ref: position for position, ref in enumerate(decls)}
        dependents: dict[ResourceRef, list[ResourceRef]] = {ref: [] for ref in decls}
        indegree: dict[ResourceRef, int] = {ref: 0 for ref in decls}

        for ref, decl in decls.items():
            for required in decl.requires:
                if required not in decls:
                    raise UnknownReferenceError(str(ref), str(required))
                if ref not in dependents[required]:
                    dependents[required].append(ref)
                    indegree[ref] += 1
            for notification in decl.notifies:
                if notification.target not in decls:
                    raise UnknownReferenceError(str(ref), str(notification.target))

        ready = [(insertion[ref], ref) for ref, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)
        ordered: list[ResourceDeclaration] = []

        while ready:
            _, ref = heapq.heappop(ready)
            ordered.append(decls[ref])
            for dependent in dependents[ref]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(ready, (insertion[dependent], dependent))

        if len(ordered) < len(decls):
            remaining = {ref for ref, degree in indegree.items() if degree > 0}
            raise CycleError(_find_cycle(remaining, decls))

        logger.debug("plan_ordered", resources=[str(d.ref) for d in ordered])
        return RunPlan(declarations=tuple(ordered))


def _find_cycle(
    remaining: set[ResourceRef],
    decls: dict[ResourceRef, ResourceDeclaration],
) -> list[str]:
    """Return one cycle among unsorted resources, e.g. ["file:/a", "file:/b", "file:/a"]."""

    def dfs(node: ResourceRef, path: list[ResourceRef]) -> list[ResourceRef] | None:
        if node in path:
            return path[path.index(node) :] + [node]
        path.append(node)
        for required in decls[node].requires:
            if required in remaining:
                found = dfs(required, path)
                if found:
                    return found
        path.pop()
        return None

    for ref in decls:
        if ref in remaining:
            cycle = dfs(ref, [])
            if cycle:
                return [str(r) for r in cycle]
    return [str(r) for r in remaining]
