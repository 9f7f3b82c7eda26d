"""
Atomic directory, file and symlink operations for the self-update engine.

Every operation that replaces something the launcher may read concurrently
(the ``current`` symlink, the shim script, a version directory) follows the
same pattern:

1. Create the new object under a unique temporary name in the same directory
2. Atomically rename it over the final path

so the final path is never observed in a partial state.
"""

from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path

from cli_selfupdate.errors import FilesystemConflictError, InvalidArgumentError
from cli_selfupdate.logging import get_logger

logger = get_logger(__name__)

# Attempts at finding an unused temporary sibling name
TEMP_NAME_ATTEMPTS = 5


def _candidate_name(path: Path, label: str) -> Path:
    """Return a random sibling of ``path`` tagged with ``label``."""
    return path.with_name(f"{path.name}.{label}.{uuid.uuid4().hex[:12]}")


def ensure_directory(path: Path, *, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it (and its parents) if necessary.

    A plain file occupying ``path`` is removed and replaced by a directory.

    Args:
        path: Path to the directory.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        FilesystemConflictError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=True, mode=mode, exist_ok=True)
        return path
    except FileExistsError:
        logger.warning(
            "Path exists but is not a directory, recreating it",
            extra={"path": str(path)},
        )
    except OSError as e:
        raise FilesystemConflictError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e

    try:
        path.unlink()
        path.mkdir(parents=True, mode=mode)
    except OSError as e:
        raise FilesystemConflictError(
            f"Path exists and is not a directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e
    return path


def make_temp_directory(path: Path, label: str = "partial") -> Path:
    """
    Create a uniquely named empty directory next to ``path``.

    Names are drawn from a random generator; a name that already exists on
    disk is skipped, up to TEMP_NAME_ATTEMPTS times.

    Raises:
        FilesystemConflictError: If no unused name was found.
    """
    for _ in range(TEMP_NAME_ATTEMPTS):
        candidate = _candidate_name(path, label)
        try:
            candidate.mkdir()
            return candidate
        except FileExistsError:
            logger.debug(
                "Temporary name collision", extra={"path": str(candidate)}
            )
            continue

    raise FilesystemConflictError(
        f"Failed to create a unique temporary directory after {TEMP_NAME_ATTEMPTS} attempts",
        details={"path": str(path)},
    )


def remove_path(path: Path) -> bool:
    """
    Remove a file, symlink or directory tree.

    Args:
        path: Path to remove.

    Returns:
        True if something was removed, False if nothing existed.

    Raises:
        OSError: If removal fails.
    """
    if path.is_symlink() or path.is_file():
        path.unlink()
        logger.debug("Removed file", extra={"path": str(path)})
        return True
    if path.is_dir():
        shutil.rmtree(path)
        logger.debug("Removed directory", extra={"path": str(path)})
        return True
    return False


def touch_path(path: Path) -> None:
    """Refresh the access and modification times of ``path`` to now."""
    os.utime(path, None)


def atomic_write_text(path: Path, content: str, *, mode: int = 0o644) -> None:
    """
    Write ``content`` to ``path`` atomically.

    Raises:
        OSError: If the file cannot be written or renamed into place.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _candidate_name(path, "tmp")

    try:
        with open(temp_path, "w", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except OSError:
        if os.path.lexists(temp_path):
            os.unlink(temp_path)
        raise


def atomic_symlink_switch(link_text: str, symlink_path: Path) -> None:
    """
    Atomically point ``symlink_path`` at ``link_text``.

    ``link_text`` is stored verbatim (e.g. ``./3.2.0``) and resolved relative
    to the symlink's directory. A real directory occupying ``symlink_path`` is
    removed first, since a symlink cannot be renamed over it.

    Args:
        link_text: The symlink contents.
        symlink_path: The path where the symlink should be created/updated.

    Raises:
        InvalidArgumentError: If the target doesn't exist.
        OSError: If the switch fails.
    """
    target = symlink_path.parent / link_text
    if not target.exists():
        raise InvalidArgumentError(
            f"Symlink target does not exist: {target}",
            details={"target": str(target)},
        )

    symlink_path.parent.mkdir(parents=True, exist_ok=True)
    if symlink_path.is_dir() and not symlink_path.is_symlink():
        shutil.rmtree(symlink_path)

    for _ in range(TEMP_NAME_ATTEMPTS):
        temp_path = _candidate_name(symlink_path, "tmp")
        try:
            os.symlink(link_text, temp_path)
            break
        except FileExistsError:
            continue
    else:
        raise FilesystemConflictError(
            f"Failed to create a unique temporary symlink after {TEMP_NAME_ATTEMPTS} attempts",
            details={"symlink": str(symlink_path)},
        )

    try:
        os.replace(temp_path, symlink_path)
    except OSError:
        if os.path.lexists(temp_path):
            os.unlink(temp_path)
        raise

    logger.debug(
        "Atomic symlink switch completed",
        extra={"symlink": str(symlink_path), "target": link_text},
    )
