"""Root test configuration."""

import logging

import pytest
import structlog

from convergent.backends import InMemoryServiceManager, default_registry
from convergent.config.settings import Settings
from convergent.engine import ConvergenceEngine


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the host environment."""
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir(exist_ok=True)
    return Settings(
        _env_file=None,
        artifact_cache_dir=cache_dir,
        backup_count=5,
        service_manager="memory",
    )


@pytest.fixture
def service_manager():
    return InMemoryServiceManager()


@pytest.fixture
def registry(settings, service_manager, tmp_path):
    return default_registry(settings, base_dir=tmp_path, service_manager=service_manager)


@pytest.fixture
def engine(registry):
    return ConvergenceEngine(registry)
