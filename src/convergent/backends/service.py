"""
Service backend and service manager implementations.

The backend only talks to a ServiceManager. CommandServiceManager shells
out to configurable commands (systemd by default, any init system by
configuration); InMemoryServiceManager keeps state in a dict.
"""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Set, Tuple

import structlog

from convergent.core.errors import ServiceControlError
from convergent.resources.models import (
    Change,
    ResourceDeclaration,
    ResourceOutcome,
    ResourceState,
)

logger = structlog.get_logger()

# Declared action -> (status attribute, desired value)
ACTION_TARGETS: Dict[str, Tuple[str, bool]] = {
    "enable": ("enabled", True),
    "disable": ("enabled", False),
    "start": ("running", True),
    "stop": ("running", False),
}

DECLARABLE_ACTIONS = frozenset(ACTION_TARGETS) | {"nothing"}
NOTIFY_ACTIONS = frozenset({"restart", "start", "stop", "enable", "disable"})


@dataclass(frozen=True)
class ServiceStatus:
    running: bool
    enabled: bool


class ServiceManager(Protocol):
    """Init system collaborator."""

    def status(self, name: str) -> ServiceStatus: ...

    def enable(self, name: str) -> None: ...

    def disable(self, name: str) -> None: ...

    def start(self, name: str) -> None: ...

    def stop(self, name: str) -> None: ...

    def restart(self, name: str) -> None: ...


class CommandServiceManager:
    """Runs init system commands formatted with the service name."""

    def __init__(self, commands: Dict[str, str], timeout: int = 60) -> None:
        self.commands = commands
        self.timeout = timeout

    def _run(self, action: str, name: str) -> subprocess.CompletedProcess:
        template = self.commands.get(action)
        if not template:
            raise ServiceControlError("service", name, f"no command configured for '{action}'")
        args = shlex.split(template.format(name=name))
        logger.debug("service_command", action=action, service=name, command=args)
        try:
            return subprocess.run(args, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ServiceControlError("service", name, f"{action} could not run: {e}") from e

    def _control(self, action: str, name: str) -> None:
        result = self._run(action, name)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise ServiceControlError(
                "service",
                name,
                f"{action} rejected (exit {result.returncode})" + (f": {detail}" if detail else ""),
            )

    def status(self, name: str) -> ServiceStatus:
        return ServiceStatus(
            running=self._run("running", name).returncode == 0,
            enabled=self._run("enabled", name).returncode == 0,
        )

    def enable(self, name: str) -> None:
        self._control("enable", name)

    def disable(self, name: str) -> None:
        self._control("disable", name)

    def start(self, name: str) -> None:
        self._control("start", name)

    def stop(self, name: str) -> None:
        self._control("stop", name)

    def restart(self, name: str) -> None:
        self._control("restart", name)


@dataclass
class InMemoryServiceManager:
    """Service manager that records calls instead of touching the host."""

    services: Dict[str, ServiceStatus] = field(default_factory=dict)
    calls: List[Tuple[str, str]] = field(default_factory=list)
    rejected: Set[Tuple[str, str]] = field(default_factory=set)

    def _record(self, action: str, name: str, **changes: bool) -> None:
        if (action, name) in self.rejected:
            raise ServiceControlError("service", name, f"{action} rejected")
        self.calls.append((action, name))
        current = self.status(name)
        self.services[name] = ServiceStatus(
            running=changes.get("running", current.running),
            enabled=changes.get("enabled", current.enabled),
        )

    def status(self, name: str) -> ServiceStatus:
        return self.services.get(name, ServiceStatus(running=False, enabled=False))

    def enable(self, name: str) -> None:
        self._record("enable", name, enabled=True)

    def disable(self, name: str) -> None:
        self._record("disable", name, enabled=False)

    def start(self, name: str) -> None:
        self._record("start", name, running=True)

    def stop(self, name: str) -> None:
        self._record("stop", name, running=False)

    def restart(self, name: str) -> None:
        self._record("restart", name, running=True)


class ServiceBackend:
    """Converges a service's enabled/running status."""

    kind = "service"

    def __init__(self, manager: ServiceManager) -> None:
        self.manager = manager

    def current_state(self, decl: ResourceDeclaration) -> ResourceState:
        status = self.manager.status(decl.identity)
        return ResourceState(
            exists=status.running or status.enabled,
            attributes={"running": status.running, "enabled": status.enabled},
        )

    def diff(self, decl: ResourceDeclaration, state: ResourceState) -> List[Change]:
        changes: List[Change] = []
        seen = set()
        for action in decl.get("actions") or ("nothing",):
            if action == "nothing":
                continue
            if action not in ACTION_TARGETS:
                raise ServiceControlError(
                    self.kind, decl.identity, f"unsupported action '{action}'"
                )
            attribute, desired = ACTION_TARGETS[action]
            if attribute in seen:
                continue
            seen.add(attribute)
            current = state.attributes.get(attribute)
            if current != desired:
                changes.append(Change(attribute, current, desired))
        return changes

    def apply(
        self, decl: ResourceDeclaration, state: ResourceState, changes: List[Change]
    ) -> ResourceOutcome:
        for change in changes:
            if change.attribute == "enabled":
                action = "enable" if change.desired else "disable"
            else:
                action = "start" if change.desired else "stop"
            getattr(self.manager, action)(decl.identity)
            logger.debug("service_action", service=decl.identity, action=action)
        return ResourceOutcome.UPDATED if state.exists else ResourceOutcome.CREATED

    def notify(self, decl: ResourceDeclaration, action: str) -> None:
        if action not in NOTIFY_ACTIONS:
            raise ServiceControlError(self.kind, decl.identity, f"unsupported action '{action}'")
        supports = decl.get("supports") or {}
        if action == "restart" and not supports.get("restart", True):
            self.manager.stop(decl.identity)
            self.manager.start(decl.identity)
            return
        getattr(self.manager, action)(decl.identity)
