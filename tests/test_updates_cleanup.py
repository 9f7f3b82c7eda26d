"""
Tests for the best-effort cleanup channel.
"""

from __future__ import annotations

import logging

import pytest

from cli_selfupdate.updates.cleanup import CleanupResult, Diagnostics


class TestDiagnostics:
    """Tests for Diagnostics.run and result collection."""

    @pytest.mark.asyncio
    async def test_run_sync_function(self) -> None:
        """Test running a plain function."""
        diagnostics = Diagnostics()
        calls: list[str] = []

        result = await diagnostics.run("touch", "3.2.0", calls.append, "3.2.0")

        assert result == CleanupResult(operation="touch", target="3.2.0")
        assert calls == ["3.2.0"]

    @pytest.mark.asyncio
    async def test_run_coroutine_function(self) -> None:
        """Test running a coroutine function."""
        diagnostics = Diagnostics()

        async def remove(name: str) -> bool:
            return True

        result = await diagnostics.run("tidy", "1.0.0", remove, "1.0.0")

        assert result.ok is True

    @pytest.mark.asyncio
    async def test_failure_is_captured(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that exceptions become failed results and warnings."""
        diagnostics = Diagnostics()

        def fail(path: str) -> None:
            raise PermissionError(f"cannot remove {path}")

        with caplog.at_level(logging.WARNING, logger="cli_selfupdate"):
            result = await diagnostics.run("tidy", "/client/1.0.0", fail, "/client/1.0.0")

        assert result.ok is False
        assert result.error == "cannot remove /client/1.0.0"
        assert "tidy failed: cannot remove /client/1.0.0" in caplog.text

    @pytest.mark.asyncio
    async def test_results_and_failures(self) -> None:
        """Test that results are kept in order and failures filtered."""
        diagnostics = Diagnostics()

        def fail() -> None:
            raise OSError("busy")

        await diagnostics.run("remove_temp", None, lambda: None)
        await diagnostics.run("remove_backup", None, fail)

        assert [r.operation for r in diagnostics.results] == ["remove_temp", "remove_backup"]
        assert [r.operation for r in diagnostics.failures] == ["remove_backup"]
        assert diagnostics.results[0].target is None
