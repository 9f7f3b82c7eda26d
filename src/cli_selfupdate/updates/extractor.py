"""
Atomic archive extraction for the self-update engine.

``extract`` turns a streamed tar payload into an installed version directory.
The archive is unpacked into a uniquely named sibling of the destination and
the requested top-level directory is renamed into place in a single step, so
the destination either keeps its previous contents or holds the complete new
tree. It is never observed half-populated.

Streaming model:
- The network side (an async byte iterator) feeds chunks into a bounded
  queue from the event loop.
- ``tarfile`` reads that queue from a worker thread and writes entries.
- When the queue is full the producer suspends until the writer catches up.

Entry policy:
- directories and regular files are extracted
- symlinks are skipped
- anything else (hard links, devices, FIFOs) aborts the extraction
"""

from __future__ import annotations

import asyncio
import io
import os
import queue
import tarfile
import threading
import uuid
from collections.abc import AsyncIterable
from pathlib import Path

from cli_selfupdate.errors import ExtractionError
from cli_selfupdate.logging import get_logger
from cli_selfupdate.updates.cleanup import Diagnostics
from cli_selfupdate.updates.operations import make_temp_directory, remove_path, touch_path

logger = get_logger(__name__)

# Chunks buffered between the stream and the tar reader
PIPE_MAX_CHUNKS = 16
# How often a blocked reader/writer re-checks for shutdown
PIPE_POLL_SECONDS = 0.1

_ENTRY_TYPE_NAMES = {
    tarfile.LNKTYPE: "link",
    tarfile.CHRTYPE: "character-device",
    tarfile.BLKTYPE: "block-device",
    tarfile.FIFOTYPE: "fifo",
}


class _ChunkPipe(io.RawIOBase):
    """
    A blocking, readable file object fed with byte chunks.

    ``readinto`` runs on the tar worker thread. ``put_nowait``/``feed`` are
    called by the producer. ``shutdown`` releases both sides.
    """

    def __init__(self, max_chunks: int = PIPE_MAX_CHUNKS) -> None:
        super().__init__()
        self._queue: queue.Queue[bytes | None] = queue.Queue(maxsize=max_chunks)
        self._buffer = b""
        self._eof = False
        self._shutdown = threading.Event()

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:  # type: ignore[no-untyped-def]
        while not self._buffer and not self._eof:
            if self._shutdown.is_set():
                raise ExtractionError("Archive stream was aborted")
            try:
                chunk = self._queue.get(timeout=PIPE_POLL_SECONDS)
            except queue.Empty:
                continue
            if chunk is None:
                self._eof = True
            else:
                self._buffer = chunk

        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown.is_set()

    def put_nowait(self, chunk: bytes | None) -> bool:
        """Queue ``chunk`` without blocking; False when the queue is full."""
        try:
            self._queue.put_nowait(chunk)
            return True
        except queue.Full:
            return False

    def feed(self, chunk: bytes | None) -> bool:
        """
        Queue ``chunk``, blocking while the queue is full.

        Returns False once the reader has shut down. ``None`` marks EOF.
        """
        while not self._shutdown.is_set():
            try:
                self._queue.put(chunk, timeout=PIPE_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def shutdown(self) -> None:
        self._shutdown.set()


def _extract_members(pipe: _ChunkPipe, destination: Path, log_files: bool) -> None:
    """Read a tar stream from ``pipe`` into ``destination`` (worker thread)."""
    try:
        with tarfile.open(fileobj=pipe, mode="r|*") as tar:
            for member in tar:
                if member.issym():
                    logger.debug(
                        "Skipping symlink entry", extra={"entry": member.name}
                    )
                    continue
                if not (member.isdir() or member.isfile()):
                    type_name = _ENTRY_TYPE_NAMES.get(member.type, repr(member.type))
                    raise ExtractionError(
                        f"Unsupported archive entry type {type_name}: {member.name}",
                        details={"entry": member.name, "type": type_name},
                    )
                if log_files:
                    logger.debug(member.name)
                tar.extract(member, destination, filter="data")
    except tarfile.TarError as e:
        raise ExtractionError(
            f"Invalid archive: {e}", details={"destination": str(destination)}
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"Failed to write archive entry: {e}",
            details={"destination": str(destination)},
        ) from e
    finally:
        pipe.shutdown()


async def _close_stream(stream: AsyncIterable[bytes]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


async def unpack_stream(
    stream: AsyncIterable[bytes],
    destination: Path,
    *,
    log_files: bool = False,
) -> None:
    """
    Unpack a tar byte stream into ``destination``.

    Returns once every entry has been written. The stream is closed on every
    exit path.

    Raises:
        ExtractionError: If the archive is invalid or holds an unsupported entry.
        Exception: Errors raised by ``stream`` itself propagate unchanged.
    """
    pipe = _ChunkPipe()
    consumer = asyncio.ensure_future(
        asyncio.to_thread(_extract_members, pipe, destination, log_files)
    )

    try:
        try:
            async for chunk in stream:
                if not chunk:
                    continue
                if pipe.is_shut_down:
                    break
                if not pipe.put_nowait(chunk) and not await asyncio.to_thread(
                    pipe.feed, chunk
                ):
                    break
            if not pipe.put_nowait(None):
                await asyncio.to_thread(pipe.feed, None)
        finally:
            await _close_stream(stream)
    except BaseException:
        pipe.shutdown()
        await asyncio.gather(consumer, return_exceptions=True)
        raise

    await consumer


async def extract(
    stream: AsyncIterable[bytes],
    basename: str,
    output: Path | str,
    *,
    diagnostics: Diagnostics | None = None,
    log_files: bool = False,
) -> Path:
    """
    Install the ``basename`` directory of a tar stream at ``output``.

    Args:
        stream: Async iterator of archive bytes (e.g. an HTTP response body).
        basename: Top-level directory inside the archive to install. An empty
            string installs the whole archive root.
        output: Destination path (the version directory).
        diagnostics: Channel receiving best-effort cleanup results.
        log_files: Log every extracted entry name at DEBUG level.

    Returns:
        The destination path.

    Raises:
        ExtractionError: If the archive cannot be installed. ``output`` is
            left exactly as it was.
    """
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)

    tmp = make_temp_directory(output, "partial")
    logger.debug("Extracting archive", extra={"tmp": str(tmp), "output": str(output)})

    try:
        await unpack_stream(stream, tmp, log_files=log_files)

        source = tmp / basename if basename else tmp
        if not source.is_dir():
            raise ExtractionError(
                f"Archive does not contain top-level directory {basename!r}",
                details={"basename": basename, "output": str(output)},
            )

        backup: Path | None = None
        if os.path.lexists(output):
            candidate = output.with_name(f"{output.name}.backup.{uuid.uuid4().hex[:12]}")
            moved = await diagnostics.run(
                "backup_existing", output, os.rename, output, candidate
            )
            backup = candidate if moved.ok else None

        logger.debug("Moving into place", extra={"from": str(source), "to": str(output)})
        try:
            os.rename(source, output)
        except OSError as e:
            if backup is not None:
                await diagnostics.run("restore_backup", output, os.rename, backup, output)
            raise ExtractionError(
                f"Failed to move extracted files to {output}: {e}",
                details={"from": str(source), "output": str(output)},
            ) from e

        if backup is not None:
            await diagnostics.run(
                "remove_backup", backup, asyncio.to_thread, remove_path, backup
            )
    finally:
        await diagnostics.run("remove_temp", tmp, asyncio.to_thread, remove_path, tmp)

    await diagnostics.run("touch", output, touch_path, output)
    logger.debug("Done extracting", extra={"output": str(output)})
    return output
