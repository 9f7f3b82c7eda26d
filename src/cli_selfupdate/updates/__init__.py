"""
Self-update mechanism for a command-line tool.

This package implements:
- Atomic archive extraction into per-version directories
- The version store and its garbage collector ("tidy")
- Launcher shim generation and the ``current`` pointer
- Update channel resolution and persistence
- The debounce gate for automatic updates
- HTTP clients for the version index, latest version and dist-tags
- The orchestrator state machine tying it together
"""

from cli_selfupdate.updates.channel import (
    DEFAULT_CHANNEL,
    determine_channel,
    read_channel,
    tag_to_channel,
    write_channel,
)
from cli_selfupdate.updates.cleanup import CleanupResult, Diagnostics
from cli_selfupdate.updates.debounce import wait_for_window
from cli_selfupdate.updates.extractor import extract
from cli_selfupdate.updates.orchestrator import (
    UpdateDecision,
    UpdateHooks,
    UpdateOptions,
    UpdateResult,
    Updater,
    UpdateState,
    decide_target,
)
from cli_selfupdate.updates.registry import ArchiveStream, RegistryClient
from cli_selfupdate.updates.shim import BinShimGenerator, determine_current_version
from cli_selfupdate.updates.store import VersionStore, validate_version_name

__all__ = [
    # Extraction
    "extract",
    # Version store
    "VersionStore",
    "validate_version_name",
    # Shim
    "BinShimGenerator",
    "determine_current_version",
    # Channel
    "DEFAULT_CHANNEL",
    "determine_channel",
    "read_channel",
    "write_channel",
    "tag_to_channel",
    # Debounce
    "wait_for_window",
    # Registry
    "RegistryClient",
    "ArchiveStream",
    # Cleanup
    "CleanupResult",
    "Diagnostics",
    # Orchestrator
    "Updater",
    "UpdateState",
    "UpdateOptions",
    "UpdateResult",
    "UpdateHooks",
    "UpdateDecision",
    "decide_target",
]
