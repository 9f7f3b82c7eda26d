"""
Best-effort cleanup operations and the diagnostics channel.

Removing temporary directories, backing up a replaced install, touching the
active version and tidying stale ones must never fail an otherwise
successful update. Each of those steps runs through ``Diagnostics.run``,
which captures the outcome as a ``CleanupResult`` and logs failures as
warnings in one place.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from cli_selfupdate.logging import get_logger

logger = get_logger(__name__)


class CleanupResult(BaseModel):
    """
    Outcome of a single best-effort operation.

    Attributes:
        operation: Name of the operation (e.g. "tidy", "remove_temp").
        target: Path or version the operation acted on.
        ok: Whether the operation succeeded.
        error: Error message when ok is False.
    """

    operation: str = Field(..., description="Operation name")
    target: str | None = Field(default=None, description="Operation target")
    ok: bool = Field(default=True, description="Whether the operation succeeded")
    error: str | None = Field(default=None, description="Failure message")


class Diagnostics:
    """Collects CleanupResults for one update run."""

    def __init__(self) -> None:
        self._results: list[CleanupResult] = []

    @property
    def results(self) -> list[CleanupResult]:
        """All recorded results, in order."""
        return list(self._results)

    @property
    def failures(self) -> list[CleanupResult]:
        """Recorded results that failed."""
        return [r for r in self._results if not r.ok]

    def record(self, result: CleanupResult) -> CleanupResult:
        """Store ``result``, logging a warning when it failed."""
        self._results.append(result)
        if not result.ok:
            logger.warning(
                f"{result.operation} failed: {result.error}",
                extra={"operation": result.operation, "target": result.target},
            )
        return result

    async def run(
        self,
        operation: str,
        target: Any,
        func: Callable[..., Awaitable[Any] | Any],
        *args: Any,
    ) -> CleanupResult:
        """
        Run ``func(*args)`` as a best-effort step.

        ``func`` may be a plain or a coroutine function. Exceptions are
        captured in the returned result and never raised.
        """
        target_text = None if target is None else str(target)
        try:
            outcome = func(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            return self.record(
                CleanupResult(
                    operation=operation, target=target_text, ok=False, error=str(e)
                )
            )
        return self.record(CleanupResult(operation=operation, target=target_text))
