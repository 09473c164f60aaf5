"""
Manages loading and creation of the sectioned INI configuration file.
"""

import configparser
import logging
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from songrelay.exceptions import ConfigurationError
from songrelay.models.config import RelayConfig

log = logging.getLogger(__name__)

# Maps each config field to its (section, key) in the INI file.
INI_LAYOUT: dict[str, tuple[str, str]] = {
    "bot_token": ("bot", "token"),
    "bot_api": ("bot", "api"),
    "bot_username": ("bot", "username"),
    "log_level": ("bot", "log_level"),
    "music_u": ("music", "music_u"),
    "database": ("database", "url"),
    "cache_dir": ("download", "dir"),
    "download_timeout": ("download", "timeout"),
    "storage_mode": ("download", "storage_mode"),
    "memory_threshold_mb": ("download", "memory_threshold"),
    "memory_buffer_mb": ("download", "memory_buffer"),
    "default_capacity_mb": ("download", "default_capacity_mb"),
    "min_file_size_bytes": ("download", "min_file_size_bytes"),
    "max_concurrent_downloads": ("download", "max_concurrent"),
    "download_pool_max_idle_per_host": ("download", "pool_max_idle_per_host"),
    "download_connect_timeout_secs": ("download", "connect_timeout_secs"),
    "download_chunk_size_kb": ("download", "chunk_size_kb"),
    "cover_mode": ("download", "cover_mode"),
    "thumbnail_size": ("download", "thumbnail_size"),
    "upload_client_reuse_requests": ("upload", "client_reuse_requests"),
    "upload_timeout_secs": ("upload", "timeout_secs"),
    "memory_release_interval_requests": (
        "maintenance",
        "memory_release_interval_requests",
    ),
    "db_analyze_interval_requests": ("maintenance", "db_analyze_interval_requests"),
}

SECTIONS = ("bot", "music", "database", "download", "upload", "maintenance")


def _field_default(name: str) -> Any:
    return RelayConfig.model_fields[name].default


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = Path(config_file_path)
        # Cookies and tokens may contain '%', so interpolation stays off.
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> RelayConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        A missing file is not an error: defaults are used and a warning is logged.

        Raises:
            ConfigurationError: If the file cannot be parsed or validation fails.
        """
        values: dict[str, Any] = {}
        if not self.config_file_path.is_file():
            log.warning(
                f"Config file '{self.config_file_path}' not found, using defaults"
            )
        else:
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e
            values = self._get_config_as_dict()

        if cli_options:
            values.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return RelayConfig(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads known keys from their sections, converting to the field's type."""
        result: dict[str, Any] = {}
        for field, (section, key) in INI_LAYOUT.items():
            if not self._parser.has_option(section, key):
                continue
            raw = self._parser.get(section, key).strip()
            default = _field_default(field)

            if isinstance(default, Enum):
                allowed = [m.value for m in type(default)]
                if raw.lower() not in allowed:
                    log.warning(
                        f"Invalid {key} '{raw}' in [{section}], "
                        f"expected one of {allowed}; using default '{default.value}'"
                    )
                    continue
                result[field] = raw.lower()
            elif isinstance(default, int):
                try:
                    result[field] = int(raw)
                except ValueError:
                    log.warning(
                        f"Invalid integer for {key} in [{section}]: '{raw}', "
                        f"using default {default}"
                    )
            else:
                result[field] = raw
        return result

    def save_default_config(self, settings: dict[str, Any] | None = None) -> None:
        """
        Writes a complete configuration file populated with defaults.

        Args:
            settings: Values that override the defaults, keyed by field name.
        """
        settings = settings or {}
        config = configparser.ConfigParser(interpolation=None)
        for section in SECTIONS:
            config[section] = {}

        for field, (section, key) in INI_LAYOUT.items():
            value = settings.get(field, _field_default(field))
            if isinstance(value, Enum):
                value = value.value
            config[section][key] = "" if value is None else str(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e
        log.debug(f"Wrote default configuration to '{self.config_file_path}'")
