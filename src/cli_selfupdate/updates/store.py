"""
On-disk layout of installed CLI versions.

The client root holds one directory per installed version plus two reserved
entries:

    <client_root>/
        3.1.0/          installed version
        3.2.0/          installed version
        bin/<bin>       launcher shim
        current ->      ./3.2.0 (POSIX only)

``VersionStore`` lists and locates versions, refreshes their freshness
timestamp and garbage-collects ("tidies") versions that are neither
protected nor recently used.
"""

from __future__ import annotations

import asyncio
import os
import time
from datetime import timedelta
from pathlib import Path

from cli_selfupdate.errors import InvalidArgumentError
from cli_selfupdate.logging import get_logger
from cli_selfupdate.updates.cleanup import CleanupResult, Diagnostics
from cli_selfupdate.updates.operations import ensure_directory, remove_path, touch_path

logger = get_logger(__name__)

RESERVED_NAMES = frozenset({"bin", "current"})
DEFAULT_RETENTION = timedelta(days=42)

_SEPARATORS = {"/", "\\", "\0", os.sep} | ({os.altsep} if os.altsep else set())


def validate_version_name(version: str) -> str:
    """
    Return ``version`` if it can name a single directory under the client root.

    Raises:
        InvalidArgumentError: For empty, relative (``.``/``..``), reserved or
            path-like names.
    """
    if (
        version in ("", ".", "..")
        or version in RESERVED_NAMES
        or any(sep in version for sep in _SEPARATORS)
    ):
        raise InvalidArgumentError(
            f"Invalid version: {version!r}", details={"version": version}
        )
    return version


class VersionStore:
    """
    Manages the version directories under a client root.

    Attributes:
        client_root: Directory owning every installed version.
        retention: How long an unprotected version survives without being
            touched.
    """

    def __init__(
        self,
        client_root: Path | str,
        retention: timedelta = DEFAULT_RETENTION,
    ) -> None:
        self.client_root = Path(client_root)
        self.retention = retention

    def ensure_client_dir(self) -> Path:
        """
        Create the client root, replacing a plain file found in its place.

        Raises:
            FilesystemConflictError: If the client root cannot be created.
        """
        return ensure_directory(self.client_root)

    def version_path(self, version: str) -> Path:
        """Path of the directory for ``version`` (whether or not it exists)."""
        return self.client_root / version

    def exists(self, version: str) -> bool:
        """Whether ``version`` is installed."""
        try:
            validate_version_name(version)
        except InvalidArgumentError:
            return False
        return self.version_path(version).is_dir()

    def list_local_versions(self) -> list[str]:
        """Names of every non-reserved entry under the client root, sorted."""
        if not self.client_root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.client_root.iterdir()
            if entry.name not in RESERVED_NAMES
        )

    def find_local_version(self, version: str) -> str | None:
        """Return ``version`` if it is installed locally, else None."""
        return version if self.exists(version) else None

    def is_stale(self, path: Path, now: float | None = None) -> bool:
        """Whether ``path`` was last modified more than ``retention`` ago."""
        now = time.time() if now is None else now
        mtime = path.lstat().st_mtime
        return mtime + self.retention.total_seconds() < now

    def tidy_candidates(self, protected_version: str, now: float | None = None) -> list[Path]:
        """
        Entries that ``tidy`` would remove.

        Protection is decided by basename only: ``bin``, ``current`` and
        ``protected_version`` are never candidates, whatever their age.
        """
        if not self.client_root.is_dir():
            return []
        protected = RESERVED_NAMES | {protected_version}
        return [
            entry
            for entry in self.client_root.iterdir()
            if entry.name not in protected and self.is_stale(entry, now)
        ]

    async def tidy(
        self,
        protected_version: str,
        diagnostics: Diagnostics | None = None,
    ) -> list[CleanupResult]:
        """
        Remove stale, unprotected versions concurrently.

        Each removal is independent: a failure is recorded as a warning in
        ``diagnostics`` and does not stop the others.

        Args:
            protected_version: The active version, never removed.
            diagnostics: Channel receiving one result per removal.

        Returns:
            One CleanupResult per attempted removal.
        """
        diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        candidates = self.tidy_candidates(protected_version)
        if not candidates:
            return []

        logger.debug(
            "Tidying stale versions",
            extra={"versions": [c.name for c in candidates]},
        )
        return list(
            await asyncio.gather(
                *(
                    diagnostics.run("tidy", path, asyncio.to_thread, remove_path, path)
                    for path in candidates
                )
            )
        )

    def touch(self, version: str) -> bool:
        """
        Refresh the modification time of an installed version.

        Returns:
            False if the version is not installed.
        """
        path = self.version_path(version)
        if not path.exists():
            return False
        logger.debug("Touching client", extra={"path": str(path)})
        touch_path(path)
        return True
