"""
Configuration management for the CLI self-update engine.

Two kinds of configuration live here:

- ``CLIConfig`` describes the command-line tool being updated (its name,
  launcher name, running version and directories). It is immutable; loading
  the configuration of a freshly installed version returns a new value via
  ``load_cli_config``.
- ``AppConfig`` holds the updater settings and is built from layered sources:
  1. Built-in defaults (Pydantic model defaults)
  2. YAML config file (~/.config/cli-selfupdate/config.yml or --config path)
  3. Environment variables (CLI_SELFUPDATE_* prefix, __ for nesting)
  4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CONFIG_PATH = Path("~/.config/cli-selfupdate/config.yml")
MANIFEST_FILENAME = "manifest.yml"

# =============================================================================
# Host CLI Description
# =============================================================================


class CLIConfig(BaseModel):
    """
    Description of the command-line tool being updated.

    Attributes:
        name: Display name of the CLI.
        bin: Launcher name (the command users type).
        version: Version of the running CLI.
        root: Directory the running CLI was loaded from.
        data_dir: Per-user data directory (holds ``client/`` and ``channel``).
        cache_dir: Per-user cache directory (holds the ``lastrun`` marker).
        windows: Whether the launcher is a batch script.
        bin_path: Path of the launcher that started the CLI. None means the
            CLI was not installed through the updatable launcher.
        env_prefix: Prefix of scoped environment variables. Defaults to
            ``bin`` upper-cased with dashes replaced by underscores.
        package_name: Registry package name used for dist-tag lookups.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="cli", description="Display name of the CLI")
    bin: str = Field(default="cli", description="Launcher name")
    version: str = Field(default="0.0.0", description="Running CLI version")
    root: Path = Field(default_factory=Path.cwd, description="CLI root directory")
    data_dir: Path = Field(..., description="Per-user data directory")
    cache_dir: Path = Field(..., description="Per-user cache directory")
    windows: bool = Field(
        default_factory=lambda: sys.platform == "win32",
        description="Whether the launcher is a batch script",
    )
    bin_path: str | None = Field(
        default=None,
        description="Launcher path; unset when the CLI is not updatable",
    )
    env_prefix: str | None = Field(
        default=None,
        description="Prefix for scoped environment variables",
    )
    package_name: str | None = Field(
        default=None,
        description="Registry package name (defaults to name)",
    )

    @model_validator(mode="before")
    @classmethod
    def default_directories(cls, data: Any) -> Any:
        """Fill data_dir and cache_dir from the XDG base directories."""
        if not isinstance(data, dict):
            return data
        bin_name = data.get("bin") or "cli"
        if not data.get("data_dir"):
            base = os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share"
            data["data_dir"] = Path(base) / bin_name
        if not data.get("cache_dir"):
            base = os.environ.get("XDG_CACHE_HOME") or Path.home() / ".cache"
            data["cache_dir"] = Path(base) / bin_name
        return data

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Reject empty versions."""
        if not v.strip():
            raise ValueError("version must not be empty")
        return v.strip()

    def scoped_env_var_key(self, key: str) -> str:
        """Return the name of the CLI-scoped environment variable ``key``."""
        prefix = self.env_prefix or self.bin.upper().replace("-", "_")
        return f"{prefix}_{key}"

    def scoped_env_var(self, key: str) -> str | None:
        """Return the value of the CLI-scoped environment variable ``key``."""
        return os.environ.get(self.scoped_env_var_key(key)) or None

    @property
    def client_root(self) -> Path:
        """Directory holding every installed version plus ``bin`` and ``current``."""
        override = self.scoped_env_var("CLIENT_HOME")
        if override:
            return Path(override)
        return self.data_dir / "client"

    @property
    def client_bin(self) -> Path:
        """Path of the generated launcher shim."""
        name = f"{self.bin}.cmd" if self.windows else self.bin
        return self.client_root / "bin" / name

    @property
    def registry_package(self) -> str:
        """Package name used against the dist-tag registry."""
        return self.package_name or self.name


def load_cli_config(root: Path | str, base: CLIConfig) -> CLIConfig:
    """
    Load the configuration of the CLI installed at ``root``.

    The version directory may carry a ``manifest.yml`` with ``name``, ``bin``
    and ``version`` keys. Without one, the version is the directory name.
    The user-level settings (directories, platform, launcher path) are kept
    from ``base``.

    Args:
        root: An installed version directory.
        base: Configuration of the currently running CLI.

    Returns:
        A new CLIConfig; ``base`` is left untouched.
    """
    root = Path(root)
    manifest: dict[str, Any] = {}
    manifest_path = root / MANIFEST_FILENAME
    if manifest_path.is_file():
        with open(manifest_path) as f:
            manifest = yaml.safe_load(f) or {}

    update: dict[str, Any] = {
        "root": root,
        "version": str(manifest.get("version") or root.name),
    }
    for key in ("name", "bin"):
        if manifest.get(key):
            update[key] = str(manifest[key])

    return base.model_copy(update=update)


# =============================================================================
# Updater Settings
# =============================================================================


class UpdatesConfig(BaseModel):
    """Update source and timing configuration.

    Attributes:
        index_url: Endpoint returning the version -> download URL index.
        latest_url: Endpoint returning the latest published version.
        registry_url: Base URL of the dist-tag registry.
        http_timeout_seconds: Timeout for every HTTP request.
        retention_days: Age after which unused versions are tidied.
        debounce_window_seconds: Minimum delay after the last CLI run before
            an automatic update may start.
        debounce_poll_seconds: Interval between debounce re-checks.
        progress_interval_seconds: Minimum delay between progress messages.
    """

    index_url: str = Field(
        default="",
        description="Version index endpoint (JSON object version -> URL)",
    )
    latest_url: str = Field(
        default="",
        description="Latest version endpoint (JSON object with 'version')",
    )
    registry_url: str = Field(
        default="https://registry.npmjs.org",
        description="Base URL of the dist-tag registry",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout in seconds",
    )
    retention_days: int = Field(
        default=42,
        ge=1,
        description="Days an unused version is kept before being tidied",
    )
    debounce_window_seconds: int = Field(
        default=3600,
        ge=0,
        description="Quiet period after the last CLI run before auto-updating",
    )
    debounce_poll_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Interval between debounce checks",
    )
    progress_interval_seconds: float = Field(
        default=0.25,
        ge=0,
        description="Minimum interval between download progress messages",
    )

    @field_validator("registry_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the registry URL."""
        return v.rstrip("/")


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON log lines instead of plain text.
        log_to_stdout: Log to stdout (stderr otherwise).
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    json_format: bool = Field(
        default=False,
        description="Emit JSON log lines",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        cli: Description of the CLI being updated.
        updates: Update source and timing settings.
        logging: Logging configuration.
    """

    cli: CLIConfig = Field(
        default_factory=lambda: CLIConfig(),
        description="CLI being updated",
    )
    updates: UpdatesConfig = Field(
        default_factory=UpdatesConfig,
        description="Update settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Booleans and integers are recognised; everything else, version strings
    included, stays a string.
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    return value


def _load_env_config(prefix: str = "CLI_SELFUPDATE_") -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore separator, for example
    ``CLI_SELFUPDATE_UPDATES__INDEX_URL=https://example.com/index.json``.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")
        if len(parts) < 2:
            # Only section-qualified keys belong to the config tree
            continue

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = _parse_env_value(value)

    return result


def add_config_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Add the configuration related options to ``parser``."""
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse the configuration related command-line arguments.

    Unknown arguments are ignored so the update command can share argv.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = add_config_arguments(argparse.ArgumentParser(add_help=False))
    parsed, _ = parser.parse_known_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result.setdefault("logging", {})["level"] = "debug"

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = "CLI_SELFUPDATE_",
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Later sources override earlier ones: defaults, YAML file, environment
    variables, command-line arguments.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If the specified config file doesn't exist.
        ValidationError: If configuration is invalid.
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)
    cli_config_path = cli_config.pop("_config_path", None)

    if config_path is None:
        if cli_config_path is not None:
            config_path = Path(cli_config_path)
        elif DEFAULT_CONFIG_PATH.expanduser().exists():
            config_path = DEFAULT_CONFIG_PATH.expanduser()
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
