"""
Artifact source resolution for file content.

Supported URIs:
- file:///abs/path           local file
- cache://relative/path      under the configured artifact cache directory
- http(s)://host/path        fetched with httpx
- plain paths                relative to the plan file's directory
"""

from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx
import structlog

logger = structlog.get_logger()


class SourceFetchError(Exception):
    """Raised when an artifact source cannot be read."""


class ArtifactSource:
    """Fetches artifact bytes by URI, memoising results for one run."""

    def __init__(self, cache_dir: Path, base_dir: Path | None = None, timeout: int = 30):
        self.cache_dir = Path(cache_dir)
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self.timeout = timeout
        self._fetched: dict[str, bytes] = {}

    def clear(self) -> None:
        """Forget fetched content so the next run reads sources again."""
        self._fetched.clear()

    def resolve_path(self, uri: str) -> Path | None:
        """Local path for a URI, or None for remote sources."""
        parsed = urlparse(uri)
        if parsed.scheme == "file":
            return Path(unquote(parsed.netloc + parsed.path))
        if parsed.scheme == "cache":
            return self.cache_dir / unquote(parsed.netloc + parsed.path).lstrip("/")
        if parsed.scheme in ("http", "https"):
            return None
        if parsed.scheme and len(parsed.scheme) > 1:
            raise SourceFetchError(f"Unsupported source scheme '{parsed.scheme}'")
        path = Path(uri)
        return path if path.is_absolute() else self.base_dir / path

    def fetch(self, uri: str) -> bytes:
        """Return the artifact content for a URI."""
        if uri in self._fetched:
            return self._fetched[uri]

        path = self.resolve_path(uri)
        if path is None:
            content = self._fetch_remote(uri)
        else:
            try:
                content = path.read_bytes()
            except OSError as e:
                raise SourceFetchError(f"Cannot read {path}: {e.strerror or e}") from e

        logger.debug("source_fetched", uri=uri, size=len(content))
        self._fetched[uri] = content
        return content

    def _fetch_remote(self, uri: str) -> bytes:
        try:
            response = httpx.get(uri, timeout=self.timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceFetchError(f"Cannot fetch {uri}: {e}") from e
        return response.content
