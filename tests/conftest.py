"""
Pytest configuration and shared fixtures for the self-update tests.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from cli_selfupdate.config import CLIConfig

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cli_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> CLIConfig:
    """A POSIX CLI named ``tool`` at version 3.1.0, installed via the launcher."""
    monkeypatch.delenv("TOOL_CLIENT_HOME", raising=False)
    monkeypatch.delenv("TOOL_HIDE_UPDATED_MESSAGE", raising=False)
    monkeypatch.delenv("TOOL_UPDATE_INSTRUCTIONS", raising=False)
    return CLIConfig(
        name="tool",
        bin="tool",
        version="3.1.0",
        data_dir=tmp_path / "data",
        cache_dir=tmp_path / "cache",
        windows=False,
        bin_path="/usr/local/bin/tool",
    )


@pytest.fixture
def client_root(cli_config: CLIConfig) -> Path:
    """The client root of ``cli_config`` (not created)."""
    return cli_config.client_root


@pytest.fixture
def make_installed(client_root: Path) -> Callable[[str], Path]:
    """Create an installed version directory with its executable."""

    def _make(version: str) -> Path:
        bin_dir = client_root / version / "bin"
        bin_dir.mkdir(parents=True)
        executable = bin_dir / "tool"
        executable.write_text(f"#!/bin/sh\necho {version}\n")
        executable.chmod(0o755)
        return client_root / version

    return _make
