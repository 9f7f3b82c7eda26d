"""
Update channel resolution and persistence.

The channel ("stable", "stable-rc" or a custom name) is persisted as plain
text in ``<data_dir>/channel``. When a specific version is requested, the
registry's dist-tags decide which channel that version belongs to; registry
tag names are translated to channel names ("latest" -> "stable",
"latest-rc" -> "stable-rc").
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from pathlib import Path

from cli_selfupdate.logging import get_logger
from cli_selfupdate.updates.operations import atomic_write_text

logger = get_logger(__name__)

DEFAULT_CHANNEL = "stable"
CHANNEL_FILENAME = "channel"

_TAG_TO_CHANNEL = {
    "latest": "stable",
    "latest-rc": "stable-rc",
}


def read_channel(data_dir: Path) -> str:
    """
    Return the persisted channel, or the default when none is stored.

    An unreadable or undecodable channel file is logged and treated as absent.
    """
    path = data_dir / CHANNEL_FILENAME
    if not path.is_file():
        return DEFAULT_CHANNEL
    try:
        channel = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(
            f"Could not read channel file, using {DEFAULT_CHANNEL}: {e}",
            extra={"path": str(path)},
        )
        return DEFAULT_CHANNEL
    return channel or DEFAULT_CHANNEL


def write_channel(channel: str, data_dir: Path) -> None:
    """Persist ``channel`` to ``<data_dir>/channel``."""
    atomic_write_text(data_dir / CHANNEL_FILENAME, channel)


def tag_to_channel(tag: str) -> str:
    """Translate a registry dist-tag into a channel name."""
    return _TAG_TO_CHANNEL.get(tag, tag)


async def determine_channel(
    persisted_channel: str,
    target_version: str | None,
    fetch_dist_tags: Callable[[], Awaitable[dict[str, str]]],
) -> str:
    """
    Return the effective update channel.

    If ``target_version`` is published under one of the registry's tags, that
    tag (translated) wins over ``persisted_channel``. Any failure of the
    registry query falls back to ``persisted_channel``.

    Args:
        persisted_channel: Channel read from disk (or the default).
        target_version: Explicitly requested version, if any.
        fetch_dist_tags: Coroutine function returning the tag -> version map.

    Returns:
        The channel name.
    """
    try:
        tags = await fetch_dist_tags()
    except Exception as e:
        # TODO: surface repeated registry outages instead of silently falling back
        logger.debug(
            f"Channel lookup failed, using {persisted_channel}: {e}",
            extra={"channel": persisted_channel},
        )
        return persisted_channel

    tag = next(
        (name for name, version in tags.items() if version == target_version),
        persisted_channel,
    )
    return tag_to_channel(tag)
