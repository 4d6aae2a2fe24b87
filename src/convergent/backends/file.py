"""
File backend: content, mode and ownership of a single file.

Content comes from an inline `content` attribute or a `source` URI.
Writes are atomic (temp file in the same directory, then rename), so a
crash leaves either the old or the new version in place. The previous
version is copied to a timestamped backup before it is replaced.
"""

from __future__ import annotations

import glob
import grp
import hashlib
import os
import pwd
import shutil
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List

import structlog

from convergent.backends.sources import ArtifactSource, SourceFetchError
from convergent.core.errors import ApplyError, SourceUnavailableError
from convergent.resources.models import (
    Change,
    ResourceDeclaration,
    ResourceOutcome,
    ResourceState,
)

logger = structlog.get_logger()

BACKUP_MARKER = ".convergent-"


def sha256(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def format_mode(mode: int | None) -> str | None:
    return None if mode is None else f"{mode:04o}"


class FileBackend:
    """Converges files from inline content or artifact sources."""

    kind = "file"

    def __init__(
        self,
        source: ArtifactSource,
        backup_count: int = 5,
        backup_dir: Path | None = None,
    ) -> None:
        self.source = source
        self.backup_count = backup_count
        self.backup_dir = Path(backup_dir) if backup_dir else None

    def begin_run(self) -> None:
        self.source.clear()

    def desired_content(self, decl: ResourceDeclaration) -> bytes | None:
        """Content the file should have, or None when only metadata is managed."""
        content = decl.get("content")
        if content is not None:
            return content if isinstance(content, bytes) else str(content).encode("utf-8")

        uri = decl.get("source")
        if uri is None:
            return None
        try:
            return self.source.fetch(uri)
        except SourceFetchError as e:
            raise SourceUnavailableError(self.kind, decl.identity, str(e)) from e

    def current_state(self, decl: ResourceDeclaration) -> ResourceState:
        path = Path(decl.identity)
        try:
            st = path.stat()
            if not stat.S_ISREG(st.st_mode):
                raise ApplyError(self.kind, decl.identity, "exists and is not a regular file")
            digest = sha256(path.read_bytes())
        except FileNotFoundError:
            return ResourceState(exists=False)
        except OSError as e:
            raise ApplyError(self.kind, decl.identity, e.strerror or str(e)) from e

        return ResourceState(
            exists=True,
            attributes={
                "sha256": digest,
                "mode": stat.S_IMODE(st.st_mode),
                "uid": st.st_uid,
                "gid": st.st_gid,
                "owner": _user_name(st.st_uid),
                "group": _group_name(st.st_gid),
            },
        )

    def diff(self, decl: ResourceDeclaration, state: ResourceState) -> List[Change]:
        changes: List[Change] = []
        current = state.attributes

        content = self.desired_content(decl)
        if content is None and not state.exists:
            content = b""
        if content is not None:
            desired_digest = sha256(content)
            if current.get("sha256") != desired_digest:
                changes.append(Change("content", current.get("sha256"), desired_digest))

        mode = decl.get("mode")
        if mode is not None and current.get("mode") != mode:
            changes.append(Change("mode", format_mode(current.get("mode")), format_mode(mode)))

        owner = decl.get("owner")
        if owner is not None and str(owner) not in (current.get("owner"), str(current.get("uid"))):
            changes.append(Change("owner", current.get("owner"), str(owner)))

        group = decl.get("group")
        if group is not None and str(group) not in (current.get("group"), str(current.get("gid"))):
            changes.append(Change("group", current.get("group"), str(group)))

        return changes

    def apply(
        self, decl: ResourceDeclaration, state: ResourceState, changes: List[Change]
    ) -> ResourceOutcome:
        path = Path(decl.identity)
        changed = {c.attribute for c in changes}

        try:
            if "content" in changed:
                content = self.desired_content(decl) or b""
                if state.exists:
                    self._backup(path, int(decl.get("backup", self.backup_count)))
                _atomic_write(path, content)

            if "mode" in changed or ("content" in changed and decl.get("mode") is not None):
                os.chmod(path, decl.get("mode"))

            if changed & {"owner", "group"} or (
                "content" in changed and (decl.get("owner") or decl.get("group"))
            ):
                shutil.chown(path, user=decl.get("owner"), group=decl.get("group"))
        except LookupError as e:
            raise ApplyError(self.kind, decl.identity, str(e)) from e
        except OSError as e:
            raise ApplyError(self.kind, decl.identity, e.strerror or str(e)) from e

        logger.debug("file_written", path=str(path), changes=sorted(changed))
        return ResourceOutcome.UPDATED if state.exists else ResourceOutcome.CREATED

    def notify(self, decl: ResourceDeclaration, action: str) -> None:
        if action != "create":
            raise ApplyError(self.kind, decl.identity, f"unsupported notification '{action}'")
        state = self.current_state(decl)
        changes = self.diff(decl, state)
        if changes:
            self.apply(decl, state, changes)

    def backups_for(self, path: Path) -> List[Path]:
        """Existing backups of a file, oldest first."""
        pattern = glob.escape(path.name) + BACKUP_MARKER + "*"
        return sorted(self._backup_dir_for(path).glob(pattern))

    def _backup_dir_for(self, path: Path) -> Path:
        if self.backup_dir is None:
            return path.parent
        return self.backup_dir / path.parent.relative_to(path.anchor)

    def _backup(self, path: Path, keep: int) -> None:
        if keep <= 0:
            return
        target_dir = self._backup_dir_for(path)
        target_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        shutil.copy2(path, target_dir / f"{path.name}{BACKUP_MARKER}{stamp}")

        backups = self.backups_for(path)
        for old in backups[:-keep]:
            old.unlink()
            logger.debug("backup_pruned", backup=str(old))


def _atomic_write(path: Path, content: bytes) -> None:
    """Replace path with content via a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if path.exists():
            st = path.stat()
            os.chmod(tmp_name, stat.S_IMODE(st.st_mode))
            if (st.st_uid, st.st_gid) != (os.getuid(), os.getgid()):
                os.chown(tmp_name, st.st_uid, st.st_gid)
        else:
            os.chmod(tmp_name, 0o666 & ~_current_umask())

        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)
