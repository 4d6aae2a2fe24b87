"""Backends that observe and converge each resource kind."""

from __future__ import annotations

from pathlib import Path

from convergent.backends.base import Backend, BackendRegistry
from convergent.backends.file import FileBackend
from convergent.backends.service import (
    CommandServiceManager,
    InMemoryServiceManager,
    ServiceBackend,
    ServiceManager,
    ServiceStatus,
)
from convergent.backends.sources import ArtifactSource
from convergent.backends.template import TemplateBackend
from convergent.config.settings import Settings
from convergent.core.errors import ConfigurationError


def build_service_manager(settings: Settings) -> ServiceManager:
    """Create the service manager selected in settings."""
    if settings.service_manager == "memory":
        return InMemoryServiceManager()
    if settings.service_manager == "command":
        return CommandServiceManager(
            commands={
                "running": settings.service_status_running_command,
                "enabled": settings.service_status_enabled_command,
                "enable": settings.service_enable_command,
                "disable": settings.service_disable_command,
                "start": settings.service_start_command,
                "stop": settings.service_stop_command,
                "restart": settings.service_restart_command,
            },
            timeout=settings.service_command_timeout,
        )
    raise ConfigurationError(
        f"Unknown service manager '{settings.service_manager}'",
        details={"choices": "command, memory"},
    )


def default_registry(
    settings: Settings,
    base_dir: Path | None = None,
    service_manager: ServiceManager | None = None,
) -> BackendRegistry:
    """Register the built-in backends for one run."""
    base_dir = Path(base_dir) if base_dir else Path.cwd()
    source = ArtifactSource(
        cache_dir=settings.artifact_cache_dir,
        base_dir=base_dir,
        timeout=settings.http_timeout,
    )
    search_path = [settings.template_dir, base_dir] if settings.template_dir else [base_dir]

    registry = BackendRegistry()
    registry.register(
        FileBackend(source, backup_count=settings.backup_count, backup_dir=settings.backup_dir)
    )
    registry.register(
        TemplateBackend(
            source,
            search_path=search_path,
            backup_count=settings.backup_count,
            backup_dir=settings.backup_dir,
        )
    )
    registry.register(ServiceBackend(service_manager or build_service_manager(settings)))
    return registry


__all__ = [
    "ArtifactSource",
    "Backend",
    "BackendRegistry",
    "CommandServiceManager",
    "FileBackend",
    "InMemoryServiceManager",
    "ServiceBackend",
    "ServiceManager",
    "ServiceStatus",
    "TemplateBackend",
    "build_service_manager",
    "default_registry",
]
