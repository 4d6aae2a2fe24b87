"""
Application settings using Pydantic.

Provides environment-based configuration loading with CONVERGENT_ prefix.
Host policy (backup rotation, artifact cache, init system commands) lives
here rather than in plans, so the same plan converges on differently
configured hosts.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Backups kept per file when a declaration does not set `backup`
    backup_count: int = 5
    # Mirror directory for backups; next to the managed file when unset
    backup_dir: Path | None = None

    # Root for cache:// artifact URIs
    artifact_cache_dir: Path = Path("/var/cache/convergent")

    # Template lookup root; the plan file's directory when unset
    template_dir: Path | None = None

    # Service manager: "command" shells out, "memory" only records calls
    service_manager: str = "command"

    # Command templates, formatted with {name}. Defaults target systemd.
    service_status_running_command: str = "systemctl is-active --quiet {name}"
    service_status_enabled_command: str = "systemctl is-enabled --quiet {name}"
    service_enable_command: str = "systemctl enable {name}"
    service_disable_command: str = "systemctl disable {name}"
    service_start_command: str = "systemctl start {name}"
    service_stop_command: str = "systemctl stop {name}"
    service_restart_command: str = "systemctl restart {name}"
    service_command_timeout: int = 60

    # HTTP client settings for remote artifact sources
    http_timeout: int = 30

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "CONVERGENT_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
