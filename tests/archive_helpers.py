"""
In-memory archive builders and stream helpers shared by the update tests.
"""

from __future__ import annotations

import asyncio
import io
import tarfile
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any


def build_tar(entries: list[dict[str, Any]], *, compression: str = "") -> bytes:
    """
    Build a tar archive in memory.

    Each entry is a dict with ``name`` and ``type`` ("dir", "file",
    "symlink", "link" or "fifo"); files take ``data`` and ``mode``, links
    take ``target``.
    """
    buf = io.BytesIO()
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        for entry in entries:
            info = tarfile.TarInfo(entry["name"])
            kind = entry.get("type", "file")
            if kind == "dir":
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            elif kind == "file":
                data = entry.get("data", b"")
                info.size = len(data)
                info.mode = entry.get("mode", 0o644)
                tar.addfile(info, io.BytesIO(data))
            elif kind == "symlink":
                info.type = tarfile.SYMTYPE
                info.linkname = entry["target"]
                tar.addfile(info)
            elif kind == "link":
                info.type = tarfile.LNKTYPE
                info.linkname = entry["target"]
                tar.addfile(info)
            elif kind == "fifo":
                info.type = tarfile.FIFOTYPE
                tar.addfile(info)
            else:
                raise ValueError(f"unknown entry type {kind}")
    return buf.getvalue()


def version_archive(version: str, bin_name: str = "tool", **extra: Any) -> bytes:
    """Archive with a single ``<version>/bin/<bin_name>`` executable."""
    entries = [
        {"name": f"{version}", "type": "dir"},
        {"name": f"{version}/bin", "type": "dir"},
        {
            "name": f"{version}/bin/{bin_name}",
            "type": "file",
            "data": f"#!/bin/sh\necho {version}\n".encode(),
            "mode": 0o755,
        },
        *extra.get("more", []),
    ]
    return build_tar(entries, compression=extra.get("compression", ""))


async def iter_chunks(data: bytes, chunk_size: int = 1024) -> AsyncIterator[bytes]:
    """Yield ``data`` in chunks, giving the event loop a turn between them."""
    for offset in range(0, len(data), chunk_size):
        yield data[offset : offset + chunk_size]
        await asyncio.sleep(0)


def snapshot(path: Path) -> dict[str, bytes | None]:
    """Map every entry under ``path`` to its content (None for directories)."""
    if not path.exists():
        return {}
    return {
        str(p.relative_to(path)): (p.read_bytes() if p.is_file() else None)
        for p in sorted(path.rglob("*"))
    }
