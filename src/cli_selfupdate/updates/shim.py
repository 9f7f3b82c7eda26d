"""
Launcher shim generation.

The shim at ``<client_root>/bin/<bin>`` is the sole definition of the active
version: it forwards every invocation to ``<client_root>/<version>/bin/<bin>``.
On POSIX hosts a ``current`` symlink next to the version directories is kept
pointing at the same version.

Both the shim and the symlink are replaced atomically, so concurrent
invocations of the CLI always see either the old or the new version.
"""

from __future__ import annotations

import re
from pathlib import Path

from cli_selfupdate.config import CLIConfig
from cli_selfupdate.logging import get_logger
from cli_selfupdate.updates.operations import atomic_symlink_switch, atomic_write_text

logger = get_logger(__name__)

# Matches the version segment of "../<version>/bin" in either shim flavour
_SHIM_VERSION_PATTERN = re.compile(r"\.\.[/\\|]([^/\\|]+)[/\\|]bin")

_WINDOWS_TEMPLATE = """\
@echo off
setlocal enableextensions
set {redirected}=1
set {binpath}=%~dp0{bin}
"%~dp0..\\{version}\\bin\\{bin}.cmd" %*
"""

_POSIX_TEMPLATE = """\
#!/usr/bin/env bash
set -e
get_script_dir () {{
  SOURCE="${{BASH_SOURCE[0]}}"
  # While $SOURCE is a symlink, resolve it
  while [ -h "$SOURCE" ]; do
    DIR="$( cd -P "$( dirname "$SOURCE" )" && pwd )"
    SOURCE="$( readlink "$SOURCE" )"
    # A relative symlink is relative to the directory holding it
    [[ $SOURCE != /* ]] && SOURCE="$DIR/$SOURCE"
  done
  DIR="$( cd -P "$( dirname "$SOURCE" )" && pwd )"
  echo "$DIR"
}}
DIR=$(get_script_dir)
{binpath}="$DIR/{bin}" {redirected}=1 exec "$DIR/../{version}/bin/{bin}" "$@"
"""


def render_shim(config: CLIConfig, version: str) -> str:
    """Return the launcher script body for ``version``."""
    template = _WINDOWS_TEMPLATE if config.windows else _POSIX_TEMPLATE
    return template.format(
        bin=config.bin,
        version=version,
        binpath=config.scoped_env_var_key("BINPATH"),
        redirected=config.scoped_env_var_key("REDIRECTED"),
    )


class BinShimGenerator:
    """Writes the launcher shim and the ``current`` pointer."""

    def __init__(self, config: CLIConfig) -> None:
        self.config = config

    @property
    def client_root(self) -> Path:
        return self.config.client_root

    @property
    def client_bin(self) -> Path:
        return self.config.client_bin

    def create_bin(self, version: str) -> Path:
        """
        Make ``version`` the one the launcher invokes.

        Idempotent: calling it twice with the same version yields the same
        shim and pointer.

        Args:
            version: An installed version under the client root.

        Returns:
            Path of the written shim.

        Raises:
            OSError: If the shim or pointer cannot be written.
            InvalidArgumentError: If the version directory is missing (POSIX).
        """
        body = render_shim(self.config, version)

        if self.config.windows:
            atomic_write_text(self.client_bin, body, mode=0o644)
        else:
            atomic_write_text(self.client_bin, body, mode=0o755)
            atomic_symlink_switch(f"./{version}", self.client_root / "current")

        logger.debug(
            "Wrote launcher shim",
            extra={"shim": str(self.client_bin), "version": version},
        )
        return self.client_bin


def read_shim_version(client_bin: Path) -> str | None:
    """
    Return the version the shim at ``client_bin`` points to.

    Raises:
        OSError: If the shim cannot be read.
    """
    match = _SHIM_VERSION_PATTERN.search(client_bin.read_text())
    return match.group(1) if match else None


def determine_current_version(client_bin: Path, fallback: str) -> str:
    """
    Return the active version according to the shim, or ``fallback``.

    A missing or unreadable shim is logged as a warning.
    """
    try:
        version = read_shim_version(client_bin)
    except OSError as e:
        logger.warning(
            f"Could not read launcher shim: {e}", extra={"shim": str(client_bin)}
        )
        return fallback
    return version or fallback
