"""
Debounce gate for automatic updates.

An automatic update must not start while the CLI is in active use. The
surrounding CLI refreshes the modification time of ``<cache_dir>/lastrun``
on every run; the gate waits until that timestamp is at least one window
(one hour by default) in the past, re-checking at a fixed interval.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path

from cli_selfupdate.logging import get_logger

logger = get_logger(__name__)

LASTRUN_FILENAME = "lastrun"
DEFAULT_WINDOW_SECONDS = 3600.0
DEFAULT_POLL_SECONDS = 60.0


def eligible_at(lastrun: Path, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> float | None:
    """
    Return the epoch time from which an update may run.

    None means the marker does not exist and there is nothing to wait for.
    """
    try:
        return lastrun.stat().st_mtime + window_seconds
    except FileNotFoundError:
        return None


async def wait_for_window(
    lastrun: Path,
    *,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
    poll_seconds: float = DEFAULT_POLL_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.time,
) -> int:
    """
    Suspend until ``lastrun`` mtime + ``window_seconds`` has passed.

    The marker is re-read after every ``poll_seconds`` sleep, so a CLI run
    during the wait pushes the window out. Cancelling the awaiting task stops
    the wait.

    Args:
        lastrun: The last-run marker file.
        window_seconds: Quiet period required after the last run.
        poll_seconds: Sleep between checks.
        sleep: Coroutine function used to suspend.
        clock: Returns the current epoch time.

    Returns:
        Number of sleeps performed.
    """
    waits = 0
    announced = False

    while True:
        deadline = eligible_at(lastrun, window_seconds)
        if deadline is None or deadline <= clock():
            break

        message = (
            f"waiting until {datetime.fromtimestamp(deadline, UTC).isoformat()} to update"
        )
        if announced:
            logger.debug(message)
        else:
            logger.info(message)
            announced = True

        await sleep(poll_seconds)
        waits += 1

    logger.info("time to update")
    return waits
