"""
Convergence engine.

Walks a run plan in order. For each resource: observe, diff, apply only
when something differs. The first failure stops the run; resources
converged before it stay converged. Notifications requested by changed
resources are collected, deduplicated and fired once after the walk.
"""

from __future__ import annotations

import time
from typing import Dict, List

import structlog

from convergent.backends.base import BackendRegistry
from convergent.core.errors import ApplyError
from convergent.resources.models import (
    ConvergenceResult,
    Notification,
    ResourceDeclaration,
    ResourceOutcome,
    ResourceReport,
    RunPlan,
)

logger = structlog.get_logger()


class ResultCollector:
    """Aggregates per-resource outcomes and notifications during a run."""

    def __init__(self, dry_run: bool = False) -> None:
        self._result = ConvergenceResult(dry_run=dry_run)
        self._pending: Dict[Notification, int] = {}

    def record(self, report: ResourceReport) -> None:
        self._result.reports.append(report)

    def request(self, notification: Notification) -> None:
        """Queue a notification; repeats of the same target and action collapse."""
        self._pending.setdefault(notification, len(self._pending))

    def pending(self, plan: RunPlan) -> List[Notification]:
        """Queued notifications in plan order of their targets."""
        return sorted(
            self._pending,
            key=lambda n: (plan.position(n.target), self._pending[n]),
        )

    def record_fired(self, notification: Notification) -> None:
        self._result.notifications.append(notification)

    def record_error(self, message: str) -> None:
        self._result.errors.append(message)

    def finalize(self, plan: RunPlan, duration: float) -> ConvergenceResult:
        """Return the final result with duration set."""
        if self._result.dry_run:
            self._result.pending_notifications = self.pending(plan)
        self._result.duration_seconds = duration
        return self._result


class ConvergenceEngine:
    """Applies run plans through the registered backends."""

    def __init__(self, registry: BackendRegistry) -> None:
        self._registry = registry

    def apply(self, plan: RunPlan, dry_run: bool = False) -> ConvergenceResult:
        """Converge every resource in plan order, then fire notifications."""
        start = time.monotonic()
        self._registry.begin_run()
        collector = ResultCollector(dry_run=dry_run)
        total = len(plan)

        for step, decl in enumerate(plan, 1):
            log = logger.bind(kind=decl.kind, identity=decl.identity, step=f"{step}/{total}")
            try:
                report = self._converge(decl, dry_run)
            except ApplyError as e:
                log.error("resource_failed", reason=e.reason, error_type=type(e).__name__)
                collector.record(ResourceReport(decl.ref, ResourceOutcome.FAILED, error=e.message))
                collector.record_error(e.message)
                break

            collector.record(report)
            log.info(
                "resource_converged",
                outcome=report.outcome.value,
                changes=[str(c) for c in report.changes],
                dry_run=dry_run,
            )
            if report.outcome is not ResourceOutcome.UNCHANGED:
                for notification in decl.notifies:
                    collector.request(notification)

        if not dry_run:
            self._fire_notifications(plan, collector)

        return collector.finalize(plan, time.monotonic() - start)

    def _converge(self, decl: ResourceDeclaration, dry_run: bool) -> ResourceReport:
        backend = self._registry.get(decl.kind)
        if backend is None:
            raise ApplyError(decl.kind, decl.identity, f"no backend registered for '{decl.kind}'")

        state = backend.current_state(decl)
        changes = backend.diff(decl, state)
        if not changes:
            return ResourceReport(decl.ref, ResourceOutcome.UNCHANGED)

        if dry_run:
            outcome = ResourceOutcome.UPDATED if state.exists else ResourceOutcome.CREATED
        else:
            outcome = backend.apply(decl, state, changes)
        return ResourceReport(decl.ref, outcome, changes=changes)

    def _fire_notifications(self, plan: RunPlan, collector: ResultCollector) -> None:
        for notification in collector.pending(plan):
            target = plan.get(notification.target)
            backend = self._registry.get(notification.target.kind)
            log = logger.bind(target=str(notification.target), action=notification.action)
            try:
                if target is None or backend is None:
                    raise ApplyError(
                        notification.target.kind,
                        notification.target.identity,
                        "notification target cannot be resolved",
                    )
                backend.notify(target, notification.action)
            except ApplyError as e:
                log.error("notification_failed", reason=e.reason)
                collector.record_error(f"notification {notification} failed: {e.message}")
                return
            collector.record_fired(notification)
            log.info("notification_fired")
