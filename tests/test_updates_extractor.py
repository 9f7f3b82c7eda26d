"""
Tests for atomic archive extraction.

Tests cover:
- Installing the top-level directory of a streamed tar archive
- Entry policy (symlinks skipped, other special entries rejected)
- Atomicity: the destination is either untouched or complete
- Temporary directory cleanup on every exit path
- Back-pressure on large streams
"""

from __future__ import annotations

import os
import time
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import patch

import pytest
from archive_helpers import build_tar, iter_chunks, snapshot, version_archive

from cli_selfupdate.errors import ExtractionError
from cli_selfupdate.updates.cleanup import Diagnostics
from cli_selfupdate.updates.extractor import PIPE_MAX_CHUNKS, extract

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def client_dir(tmp_path: Path) -> Path:
    path = tmp_path / "client"
    path.mkdir()
    return path


@pytest.fixture
def existing_install(client_dir: Path) -> Path:
    """A previously installed 3.2.0 with distinctive content."""
    output = client_dir / "3.2.0"
    (output / "bin").mkdir(parents=True)
    (output / "bin" / "tool").write_text("old build\n")
    return output


def _leftovers(directory: Path, keep: set[str]) -> list[str]:
    return sorted(p.name for p in directory.iterdir() if p.name not in keep)


# =============================================================================
# Successful Extraction
# =============================================================================


class TestExtract:
    """Tests for successful extraction."""

    @pytest.mark.asyncio
    async def test_installs_top_level_directory(self, client_dir: Path) -> None:
        """Test that <basename>/ of the archive becomes the destination."""
        output = client_dir / "3.2.0"

        result = await extract(iter_chunks(version_archive("3.2.0")), "3.2.0", output)

        assert result == output
        assert (output / "bin" / "tool").read_text() == "#!/bin/sh\necho 3.2.0\n"
        assert os.access(output / "bin" / "tool", os.X_OK)
        assert _leftovers(client_dir, {"3.2.0"}) == []

    @pytest.mark.asyncio
    async def test_gzip_archive(self, client_dir: Path) -> None:
        """Test that compressed archives are detected."""
        output = client_dir / "3.2.0"
        data = version_archive("3.2.0", compression="gz")

        await extract(iter_chunks(data), "3.2.0", output)

        assert (output / "bin" / "tool").exists()

    @pytest.mark.asyncio
    async def test_empty_basename_installs_archive_root(self, client_dir: Path) -> None:
        """Test that an empty basename installs the whole archive."""
        output = client_dir / "3.2.0"
        data = build_tar(
            [
                {"name": "bin", "type": "dir"},
                {"name": "bin/tool", "type": "file", "data": b"x"},
            ]
        )

        await extract(iter_chunks(data), "", output)

        assert (output / "bin" / "tool").read_bytes() == b"x"

    @pytest.mark.asyncio
    async def test_creates_missing_parent(self, tmp_path: Path) -> None:
        """Test that the destination's parent is created."""
        output = tmp_path / "data" / "client" / "3.2.0"

        await extract(iter_chunks(version_archive("3.2.0")), "3.2.0", output)

        assert (output / "bin" / "tool").exists()

    @pytest.mark.asyncio
    async def test_symlink_entries_are_skipped(self, client_dir: Path) -> None:
        """Test that symlinks in the archive are never created."""
        output = client_dir / "3.2.0"
        data = version_archive(
            "3.2.0",
            more=[{"name": "3.2.0/bin/passwd", "type": "symlink", "target": "/etc/passwd"}],
        )

        await extract(iter_chunks(data), "3.2.0", output)

        assert (output / "bin" / "tool").exists()
        assert not os.path.lexists(output / "bin" / "passwd")

    @pytest.mark.asyncio
    async def test_replaces_existing_destination(
        self, client_dir: Path, existing_install: Path
    ) -> None:
        """Test that a reinstall replaces the previous tree wholesale."""
        (existing_install / "stale.txt").write_text("left over")

        await extract(iter_chunks(version_archive("3.2.0")), "3.2.0", existing_install)

        assert (existing_install / "bin" / "tool").read_text() == "#!/bin/sh\necho 3.2.0\n"
        assert not (existing_install / "stale.txt").exists()
        assert _leftovers(client_dir, {"3.2.0"}) == []

    @pytest.mark.asyncio
    async def test_destination_mtime_refreshed(self, client_dir: Path) -> None:
        """Test that the installed directory is touched after the rename."""
        output = client_dir / "3.2.0"

        await extract(iter_chunks(version_archive("3.2.0")), "3.2.0", output)

        assert output.stat().st_mtime > time.time() - 60

    @pytest.mark.asyncio
    async def test_large_stream_with_backpressure(self, client_dir: Path) -> None:
        """Test a stream with many more chunks than the pipe buffers."""
        output = client_dir / "3.2.0"
        payload = os.urandom(512 * 1024)
        data = build_tar(
            [
                {"name": "3.2.0", "type": "dir"},
                {"name": "3.2.0/blob", "type": "file", "data": payload},
            ]
        )
        assert len(data) // 512 > PIPE_MAX_CHUNKS

        await extract(iter_chunks(data, chunk_size=512), "3.2.0", output)

        assert (output / "blob").read_bytes() == payload

    @pytest.mark.asyncio
    async def test_diagnostics_records_cleanup(self, client_dir: Path) -> None:
        """Test that cleanup steps are reported through diagnostics."""
        diagnostics = Diagnostics()

        await extract(
            iter_chunks(version_archive("3.2.0")),
            "3.2.0",
            client_dir / "3.2.0",
            diagnostics=diagnostics,
        )

        operations = [r.operation for r in diagnostics.results]
        assert "remove_temp" in operations
        assert "touch" in operations
        assert diagnostics.failures == []


# =============================================================================
# Failed Extraction
# =============================================================================


class TestExtractFailures:
    """Tests for aborted extractions."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("entry", "type_name"),
        [
            ({"name": "3.2.0/pipe", "type": "fifo"}, "fifo"),
            ({"name": "3.2.0/bin/alias", "type": "link", "target": "3.2.0/bin/tool"}, "link"),
        ],
    )
    async def test_unsupported_entry_aborts(
        self, client_dir: Path, entry: dict, type_name: str
    ) -> None:
        """Test that special entries abort without touching the destination."""
        output = client_dir / "3.2.0"
        data = version_archive("3.2.0", more=[entry])

        with pytest.raises(ExtractionError) as exc_info:
            await extract(iter_chunks(data), "3.2.0", output)

        assert type_name in str(exc_info.value)
        assert exc_info.value.details["type"] == type_name
        assert not output.exists()
        assert list(client_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failure_preserves_existing_destination(
        self, client_dir: Path, existing_install: Path
    ) -> None:
        """Test that a failed reinstall keeps the previous tree exactly."""
        before = snapshot(existing_install)
        data = version_archive("3.2.0", more=[{"name": "3.2.0/pipe", "type": "fifo"}])

        with pytest.raises(ExtractionError):
            await extract(iter_chunks(data), "3.2.0", existing_install)

        assert snapshot(existing_install) == before
        assert _leftovers(client_dir, {"3.2.0"}) == []

    @pytest.mark.asyncio
    async def test_missing_top_level_directory(self, client_dir: Path) -> None:
        """Test an archive that does not contain <basename>/."""
        output = client_dir / "3.2.0"

        with pytest.raises(ExtractionError, match="top-level directory"):
            await extract(iter_chunks(version_archive("9.9.9")), "3.2.0", output)

        assert list(client_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_path_escape_rejected(self, client_dir: Path) -> None:
        """Test that entries outside the extraction root are refused."""
        output = client_dir / "3.2.0"
        data = build_tar(
            [
                {"name": "3.2.0", "type": "dir"},
                {"name": "../escape.txt", "type": "file", "data": b"x"},
            ]
        )

        with pytest.raises(ExtractionError):
            await extract(iter_chunks(data), "3.2.0", output)

        assert not (client_dir.parent / "escape.txt").exists()
        assert list(client_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_corrupt_archive(self, client_dir: Path) -> None:
        """Test that a stream that is not a tar archive is rejected."""
        with pytest.raises(ExtractionError, match="Invalid archive"):
            await extract(iter_chunks(b"not an archive" * 100), "3.2.0", client_dir / "3.2.0")

        assert list(client_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_stream_error_propagates(
        self, client_dir: Path, existing_install: Path
    ) -> None:
        """Test that a failing byte stream aborts and keeps the destination."""
        before = snapshot(existing_install)
        data = version_archive("3.2.0")

        async def broken() -> AsyncIterator[bytes]:
            yield data[:1024]
            raise ConnectionResetError("peer went away")

        with pytest.raises(ConnectionResetError):
            await extract(broken(), "3.2.0", existing_install)

        assert snapshot(existing_install) == before
        assert _leftovers(client_dir, {"3.2.0"}) == []

    @pytest.mark.asyncio
    async def test_stream_is_closed_on_failure(self, client_dir: Path) -> None:
        """Test that the byte stream is closed when extraction aborts."""
        data = version_archive("3.2.0", more=[{"name": "3.2.0/pipe", "type": "fifo"}])

        class Stream:
            closed = False

            def __init__(self) -> None:
                self._chunks = iter_chunks(data)

            def __aiter__(self) -> Stream:
                return self

            async def __anext__(self) -> bytes:
                return await self._chunks.__anext__()

            async def aclose(self) -> None:
                Stream.closed = True

        with pytest.raises(ExtractionError):
            await extract(Stream(), "3.2.0", client_dir / "3.2.0")

        assert Stream.closed is True

    @pytest.mark.asyncio
    async def test_failed_rename_restores_backup(
        self, client_dir: Path, existing_install: Path
    ) -> None:
        """Test that the previous tree is restored when the final rename fails."""
        before = snapshot(existing_install)
        real_rename = os.rename
        calls: list[tuple[str, str]] = []

        def flaky_rename(src, dst) -> None:  # type: ignore[no-untyped-def]
            calls.append((str(src), str(dst)))
            if len(calls) == 2:
                raise OSError("cross-device link")
            real_rename(src, dst)

        with patch("cli_selfupdate.updates.extractor.os.rename", side_effect=flaky_rename):
            with pytest.raises(ExtractionError, match="Failed to move"):
                await extract(
                    iter_chunks(version_archive("3.2.0")), "3.2.0", existing_install
                )

        assert len(calls) == 3
        assert snapshot(existing_install) == before
        assert _leftovers(client_dir, {"3.2.0"}) == []
