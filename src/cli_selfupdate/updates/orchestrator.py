"""
Update orchestrator for the CLI self-update engine.

This module implements the state machine that takes the CLI from "whatever
is installed" to "the requested version is active":

    idle -> resolve_current -> resolve_channel -> decide_target
         -> {noop | switch_local | download_and_install}
         -> activate_shim -> touch -> tidy -> done

- noop: already on the target version; nothing is installed or rewritten
- switch_local: the target is already installed; only the shim is rewritten
- download_and_install: the archive is downloaded, extracted atomically and
  then activated

Any failure before activation aborts the run and leaves the previous shim in
place, so the CLI stays runnable. Touch and tidy are best-effort and only
reported through the run's diagnostics.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from cli_selfupdate.config import AppConfig, CLIConfig, load_cli_config
from cli_selfupdate.errors import (
    ActivationError,
    InvalidArgumentError,
    VersionNotFoundError,
)
from cli_selfupdate.logging import get_logger
from cli_selfupdate.updates.channel import determine_channel, read_channel, write_channel
from cli_selfupdate.updates.cleanup import CleanupResult, Diagnostics
from cli_selfupdate.updates.debounce import LASTRUN_FILENAME, wait_for_window
from cli_selfupdate.updates.extractor import extract
from cli_selfupdate.updates.registry import RegistryClient
from cli_selfupdate.updates.shim import BinShimGenerator, determine_current_version
from cli_selfupdate.updates.store import VersionStore, validate_version_name

logger = get_logger(__name__)


class UpdateState(str, Enum):
    """States of a single update run."""

    IDLE = "idle"
    RESOLVE_CURRENT = "resolve_current"
    RESOLVE_CHANNEL = "resolve_channel"
    DECIDE_TARGET = "decide_target"
    NOOP = "noop"
    SWITCH_LOCAL = "switch_local"
    DOWNLOAD_AND_INSTALL = "download_and_install"
    ACTIVATE_SHIM = "activate_shim"
    TOUCH = "touch"
    TIDY = "tidy"
    DONE = "done"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[UpdateState, set[UpdateState]] = {
    UpdateState.IDLE: {UpdateState.RESOLVE_CURRENT, UpdateState.DONE, UpdateState.FAILED},
    UpdateState.RESOLVE_CURRENT: {UpdateState.RESOLVE_CHANNEL, UpdateState.FAILED},
    UpdateState.RESOLVE_CHANNEL: {UpdateState.DECIDE_TARGET, UpdateState.FAILED},
    UpdateState.DECIDE_TARGET: {
        UpdateState.NOOP,
        UpdateState.SWITCH_LOCAL,
        UpdateState.DOWNLOAD_AND_INSTALL,
        UpdateState.FAILED,
    },
    UpdateState.NOOP: {UpdateState.TOUCH},
    UpdateState.SWITCH_LOCAL: {UpdateState.ACTIVATE_SHIM, UpdateState.FAILED},
    UpdateState.DOWNLOAD_AND_INSTALL: {UpdateState.ACTIVATE_SHIM, UpdateState.FAILED},
    UpdateState.ACTIVATE_SHIM: {UpdateState.TOUCH, UpdateState.FAILED},
    UpdateState.TOUCH: {UpdateState.TIDY},
    UpdateState.TIDY: {UpdateState.DONE},
    UpdateState.DONE: set(),
    UpdateState.FAILED: set(),
}


class UpdateOptions(BaseModel):
    """
    Options of one update run.

    Attributes:
        auto_update: Wait for the debounce window before updating.
        channel: Channel to use instead of resolving one.
        force: Reinstall even when the target is current or installed.
        version: Explicit target version; None means "latest".
    """

    auto_update: bool = False
    channel: str | None = None
    force: bool = False
    version: str | None = None


class UpdateDecision(BaseModel):
    """Outcome of the decide_target step."""

    model_config = ConfigDict(frozen=True)

    action: UpdateState
    target_version: str


class UpdateResult(BaseModel):
    """
    Summary of a finished update run.

    Attributes:
        outcome: "updated", "switched", "noop" or "not_updatable".
        old_version: Version active before the run.
        new_version: Version active after the run.
        channel: Effective channel.
        message: Final status message.
        state_history: States visited, in order.
        active_config: Configuration of the version active after the run.
        diagnostics: Results of best-effort cleanup steps.
    """

    outcome: str
    old_version: str | None = None
    new_version: str | None = None
    channel: str | None = None
    message: str = ""
    state_history: list[str] = Field(default_factory=list)
    active_config: CLIConfig | None = None
    diagnostics: list[CleanupResult] = Field(default_factory=list)


Hook = Callable[[str, str], Awaitable[Any]]


async def _no_hook(channel: str, version: str) -> None:
    return None


@dataclass
class UpdateHooks:
    """
    Externally supplied extension points.

    ``preupdate`` runs right before the target is activated and ``update``
    right after. Both receive ``(channel, version)``. When already on the
    latest version only ``update`` runs; an explicitly requested version that
    is already active runs neither.
    """

    preupdate: Hook = _no_hook
    update: Hook = _no_hook


def decide_target(
    current: str,
    *,
    requested: str | None,
    latest: str | None,
    force: bool,
    installed: bool,
) -> UpdateDecision:
    """
    Decide what an update run has to do.

    Args:
        current: Active version.
        requested: Explicitly requested version, if any.
        latest: Latest published version (used when nothing is requested).
        force: Reinstall even if current or installed.
        installed: Whether the requested version is installed locally.

    Returns:
        The decision with its target version.

    Raises:
        InvalidArgumentError: If neither a requested nor a latest version is known.
    """
    if requested is None:
        if latest is None:
            raise InvalidArgumentError("No target version to update to")
        if not force and latest == current:
            return UpdateDecision(action=UpdateState.NOOP, target_version=latest)
        return UpdateDecision(action=UpdateState.DOWNLOAD_AND_INSTALL, target_version=latest)

    if not force and installed:
        action = UpdateState.NOOP if requested == current else UpdateState.SWITCH_LOCAL
        return UpdateDecision(action=action, target_version=requested)
    return UpdateDecision(action=UpdateState.DOWNLOAD_AND_INSTALL, target_version=requested)


def format_size(size: int) -> str:
    """Render a byte count as e.g. ``1.2 MB``."""
    value = float(size)
    for unit in ("B", "kB", "MB", "GB"):
        if value < 1000 or unit == "GB":
            return f"{value:.1f} {unit}"
        value /= 1000
    return f"{value:.1f} GB"


class _ProgressReporter:
    """Logs download progress at most once per interval."""

    def __init__(self, total: int, interval: float) -> None:
        self.total = total
        self.received = 0
        self._interval = interval
        self._last: float | None = None

    def advance(self, size: int) -> None:
        self.received += size
        now = time.monotonic()
        if self._last is not None and now - self._last < self._interval:
            return
        self._last = now
        logger.info(
            f"{format_size(self.received)}/{format_size(self.total)}",
            extra={"received": self.received, "total": self.total},
        )


class Updater:
    """
    Runs update decisions and installs for one CLI.

    Attributes:
        config: Configuration of the running CLI and the updater.
        registry: Client for the update endpoints.
        hooks: preupdate/update extension points.
        state: State of the current (or last) run.
    """

    def __init__(
        self,
        config: AppConfig,
        registry: RegistryClient | None = None,
        hooks: UpdateHooks | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.registry = registry or RegistryClient(config.updates, config.cli)
        self.hooks = hooks or UpdateHooks()
        self._sleep = sleep
        self.store = VersionStore(
            config.cli.client_root,
            retention=timedelta(days=config.updates.retention_days),
        )
        self._state = UpdateState.IDLE
        self._history: list[UpdateState] = [UpdateState.IDLE]

    @property
    def state(self) -> UpdateState:
        return self._state

    @property
    def state_history(self) -> list[UpdateState]:
        return list(self._history)

    def _transition_to(self, new_state: UpdateState) -> None:
        """
        Move to ``new_state``.

        Raises:
            InvalidArgumentError: If the transition is not allowed.
        """
        current = self._state
        if new_state not in _VALID_TRANSITIONS[current]:
            raise InvalidArgumentError(
                f"Invalid state transition from {current.value} to {new_state.value}",
                details={
                    "current_state": current.value,
                    "target_state": new_state.value,
                    "valid_transitions": sorted(
                        s.value for s in _VALID_TRANSITIONS[current]
                    ),
                },
            )
        logger.debug(f"State transition: {current.value} -> {new_state.value}")
        self._state = new_state
        self._history.append(new_state)

    def _reset(self) -> None:
        self._state = UpdateState.IDLE
        self._history = [UpdateState.IDLE]

    def _result(self, **kwargs: Any) -> UpdateResult:
        return UpdateResult(state_history=[s.value for s in self._history], **kwargs)

    def _already_on(self, cli: CLIConfig, version: str) -> str:
        if cli.scoped_env_var("HIDE_UPDATED_MESSAGE"):
            return "done"
        return f"already on version {version}"

    async def find_local_versions(self) -> list[str]:
        """Installed versions under the client root."""
        self.store.ensure_client_dir()
        return self.store.list_local_versions()

    async def fetch_version_url(self, version: str) -> str:
        """
        Resolve the archive URL of ``version`` from a fresh version index.

        Raises:
            VersionNotFoundError: If the index does not list ``version``.
            TransportError: If the index cannot be fetched.
        """
        index = await self.registry.fetch_version_index()
        url = index.get(version)
        if not url:
            raise VersionNotFoundError(version, sorted(index))
        return url

    async def run_update(self, options: UpdateOptions | None = None) -> UpdateResult:
        """
        Run a complete update.

        Args:
            options: What to update to and how.

        Returns:
            UpdateResult describing what happened.

        Raises:
            UpdateError: If resolving, downloading or installing the target
                fails. The previously active version stays active.
        """
        options = options or UpdateOptions()
        cli = self.config.cli
        updates = self.config.updates
        diagnostics = Diagnostics()
        self._reset()

        if options.auto_update:
            await wait_for_window(
                cli.cache_dir / LASTRUN_FILENAME,
                window_seconds=updates.debounce_window_seconds,
                poll_seconds=updates.debounce_poll_seconds,
                sleep=self._sleep,
            )

        logger.info(f"{cli.name}: Updating CLI")

        if not cli.bin_path:
            instructions = cli.scoped_env_var("UPDATE_INSTRUCTIONS")
            if instructions:
                logger.warning(instructions)
            self._transition_to(UpdateState.DONE)
            return self._result(outcome="not_updatable", message="not updatable")

        try:
            if options.version is not None:
                validate_version_name(options.version)

            self._transition_to(UpdateState.RESOLVE_CURRENT)
            current = determine_current_version(cli.client_bin, cli.version)

            self._transition_to(UpdateState.RESOLVE_CHANNEL)
            channel = options.channel or await determine_channel(
                read_channel(cli.data_dir),
                options.version,
                self.registry.fetch_dist_tags,
            )

            self._transition_to(UpdateState.DECIDE_TARGET)
            latest = None
            if options.version is None:
                latest = await self.registry.fetch_latest_version()
            decision = decide_target(
                current,
                requested=options.version,
                latest=latest,
                force=options.force,
                installed=(
                    options.version is not None
                    and self.store.find_local_version(options.version) is not None
                ),
            )
            target = decision.target_version
            self._transition_to(decision.action)

            if decision.action == UpdateState.NOOP:
                active = cli
                outcome = "noop"
                message = self._already_on(cli, current)
                logger.info(message)
                if options.version is None:
                    await self.hooks.update(channel, target)
            else:
                await self.hooks.preupdate(channel, target)
                active = await self._install(decision, current, channel, options.force, diagnostics)
                await self.hooks.update(channel, target)
                outcome = "switched" if decision.action == UpdateState.SWITCH_LOCAL else "updated"
                message = f"Updated to version {target}"
                if options.version is not None:
                    logger.info(
                        "Updating to a specific version will not update the channel. "
                        "If autoupdate is enabled, the CLI will eventually be updated "
                        f"back to {channel}."
                    )
        except Exception as e:
            logger.error(f"Update failed: {e}")
            if UpdateState.FAILED in _VALID_TRANSITIONS[self._state]:
                self._transition_to(UpdateState.FAILED)
            raise

        active_version = target if outcome != "noop" else current

        self._transition_to(UpdateState.TOUCH)
        await diagnostics.run("touch", active_version, self.store.touch, active_version)

        self._transition_to(UpdateState.TIDY)
        await diagnostics.run(
            "tidy", self.store.client_root, self.store.tidy, active_version, diagnostics
        )

        self._transition_to(UpdateState.DONE)
        logger.debug("done")
        return self._result(
            outcome=outcome,
            old_version=current,
            new_version=active_version,
            channel=channel,
            message=message,
            active_config=active,
            diagnostics=diagnostics.results,
        )

    async def _install(
        self,
        decision: UpdateDecision,
        current: str,
        channel: str,
        force: bool,
        diagnostics: Diagnostics,
    ) -> CLIConfig:
        """Install (if needed) and activate the decided version."""
        cli = self.config.cli
        target = decision.target_version
        suffix = "" if channel == "stable" else f" ({channel})"
        logger.info(f"{cli.name}: Updating CLI from {current} to {target}{suffix}")

        self.store.ensure_client_dir()
        output = self.store.version_path(target)

        if decision.action == UpdateState.DOWNLOAD_AND_INSTALL:
            if force or not output.exists():
                url = await self.fetch_version_url(target)
                await self._download_and_extract(url, target, diagnostics)
            active = self._load_installed(output)
            try:
                write_channel(channel, cli.data_dir)
            except OSError as e:
                raise ActivationError(
                    f"Could not save channel {channel}: {e}",
                    details={"data_dir": str(cli.data_dir), "channel": channel},
                ) from e
        else:
            active = self._load_installed(output)

        self._transition_to(UpdateState.ACTIVATE_SHIM)
        try:
            BinShimGenerator(active).create_bin(target)
        except OSError as e:
            raise ActivationError(
                f"Could not activate {target}: {e}",
                details={"shim": str(active.client_bin), "version": target},
            ) from e
        return active

    def _load_installed(self, output: Path) -> CLIConfig:
        try:
            return load_cli_config(output, self.config.cli)
        except (OSError, yaml.YAMLError) as e:
            raise ActivationError(
                f"Could not read the manifest of {output.name}: {e}",
                details={"path": str(output)},
            ) from e

    async def _download_and_extract(
        self, url: str, version: str, diagnostics: Diagnostics
    ) -> None:
        cli = self.config.cli
        output = self.store.version_path(version)

        async with self.registry.stream_archive(url) as archive:
            progress = _ProgressReporter(
                archive.total, self.config.updates.progress_interval_seconds
            )

            async def counted() -> AsyncIterator[bytes]:
                async for chunk in archive.iter_bytes():
                    progress.advance(len(chunk))
                    yield chunk

            await extract(
                counted(),
                version,
                output,
                diagnostics=diagnostics,
                log_files=bool(cli.scoped_env_var("DEBUG_UPDATE_FILES")),
            )
