"""Configuration management for Snap Sync.

Stores and retrieves settings from a JSON config file in the
platform-appropriate application data directory (or a path given on
the command line).
"""

import json
import logging
from pathlib import Path
from typing import Any

from snap_sync.descriptors import DescriptorError, parse_descriptor
from snap_sync.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from snap_sync.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

# Collision resolution strategies (local destinations)
COLLISION_OVERWRITE = "overwrite"
COLLISION_RENAME = "rename"
COLLISION_SKIP = "skip"

# Tokens: {name} {ext} {n} {date} {time} {datetime} {ts}, see destinations._expand_rename_pattern
DEFAULT_RENAME_PATTERN = "{name}_{n}.{ext}"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG: dict[str, Any] = {
    # ---- broker ----
    "mqtt_host": "",
    "mqtt_port": 1883,
    "mqtt_keep_alive_seconds": 5,
    "mqtt_username": None,
    "mqtt_password": None,
    "mqtt_client_id": "snap-sync",
    "mqtt_topic_prefix": "frigate",
    # ---- Frigate API ----
    "frigate_api_address": "",
    "frigate_api_proxy": None,  # e.g. socks5://192.168.1.1:9000
    "frigate_api_timeout_seconds": 60,
    # ---- destinations ----
    "upload_destinations": [],  # descriptor strings, see snap_sync.descriptors
    # ---- collision protection (local destinations) ----
    "collision_mode": COLLISION_OVERWRITE,  # overwrite | rename | skip
    "rename_pattern": DEFAULT_RENAME_PATTERN,
    # ---- verification ----
    "verify_copies": True,  # SHA-256 checksum after local writes
    # ---- retry ----
    "retry_max_attempts": 6,  # attempts per destination per artifact
    "retry_base_delay_seconds": 1,  # first backoff, doubled each attempt
    "retry_max_delay_seconds": 60,  # backoff ceiling
    # ---- shutdown ----
    "shutdown_grace_seconds": 30,
    # ---- logging ----
    "log_level": "INFO",
    "log_file": "",  # blank = platform default
    "max_log_size_mb": 10,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
}


class ConfigError(Exception):
    """The configuration is missing, unreadable or invalid."""


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the default path to the log file."""
    return _platform_log_path()


class Config:
    """Configuration backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = Path(path) if path else get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "Config":
        """Build an in-memory config (no file) from *values* over the defaults."""
        cfg = cls.__new__(cls)
        cfg._path = None
        cfg._data = {**DEFAULT_CONFIG, **values}
        return cfg

    # ---- persistence ----

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
            except (json.JSONDecodeError, OSError) as exc:
                raise ConfigError(f"Could not read config {self._path}: {exc}") from exc
            if not isinstance(stored, dict):
                raise ConfigError(f"Config {self._path} must contain a JSON object")
            # Merge stored values over defaults so new keys get defaults
            self._data = {**DEFAULT_CONFIG, **stored}
            logger.info("Configuration loaded from %s", self._path)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- broker ----

    @property
    def mqtt_host(self) -> str:
        return str(self._data["mqtt_host"] or "")

    @property
    def mqtt_port(self) -> int:
        return int(self._data["mqtt_port"])

    @property
    def mqtt_keep_alive(self) -> int:
        """Return the MQTT keep-alive interval in seconds (minimum 1)."""
        return max(1, int(self._data["mqtt_keep_alive_seconds"]))

    @property
    def mqtt_username(self) -> str | None:
        return self._data.get("mqtt_username") or None

    @property
    def mqtt_password(self) -> str | None:
        return self._data.get("mqtt_password") or None

    @property
    def mqtt_client_id(self) -> str:
        return self._data.get("mqtt_client_id") or DEFAULT_CONFIG["mqtt_client_id"]

    @property
    def mqtt_topic_prefix(self) -> str:
        return self._data.get("mqtt_topic_prefix") or DEFAULT_CONFIG["mqtt_topic_prefix"]

    # ---- Frigate API ----

    @property
    def frigate_api_address(self) -> str:
        """Return the API base URL without a trailing slash."""
        return str(self._data["frigate_api_address"] or "").rstrip("/")

    @property
    def frigate_api_proxy(self) -> str | None:
        return self._data.get("frigate_api_proxy") or None

    @property
    def frigate_api_timeout(self) -> float:
        return max(1.0, float(self._data.get("frigate_api_timeout_seconds", 60)))

    # ---- destinations ----

    @property
    def upload_destinations(self) -> list[str]:
        """Return the configured destination descriptor strings."""
        values = self._data.get("upload_destinations") or []
        return [str(d).strip() for d in values if str(d).strip()]

    @property
    def collision_mode(self) -> str:
        """Return the collision resolution strategy."""
        value = self._data.get("collision_mode", COLLISION_OVERWRITE)
        if value not in (COLLISION_OVERWRITE, COLLISION_RENAME, COLLISION_SKIP):
            return COLLISION_OVERWRITE
        return value

    @property
    def rename_pattern(self) -> str:
        """Return the token-based rename pattern."""
        return (self._data.get("rename_pattern") or "").strip() or DEFAULT_RENAME_PATTERN

    @property
    def verify_copies(self) -> bool:
        """Return whether SHA-256 verification is enabled."""
        return bool(self._data.get("verify_copies", True))

    # ---- retry ----

    @property
    def retry_max_attempts(self) -> int:
        """Return the number of upload attempts per destination (minimum 1)."""
        return max(1, int(self._data.get("retry_max_attempts", 6)))

    @property
    def retry_base_delay(self) -> float:
        return max(0.0, float(self._data.get("retry_base_delay_seconds", 1)))

    @property
    def retry_max_delay(self) -> float:
        return max(self.retry_base_delay, float(self._data.get("retry_max_delay_seconds", 60)))

    @property
    def shutdown_grace(self) -> float:
        return max(0.0, float(self._data.get("shutdown_grace_seconds", 30)))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return str(self._data.get("log_level", "INFO")).upper()

    @property
    def log_file(self) -> Path:
        value = self._data.get("log_file")
        return Path(value) if value else get_log_path()

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return max(1, int(self._data.get("max_log_size_mb", 10)))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return max(0, int(self._data.get("log_backup_count", 3)))

    def validate(self) -> None:
        """Raise ConfigError listing every problem with the current values."""
        problems: list[str] = []
        if not self.mqtt_host:
            problems.append("mqtt_host is not set")
        if not self.frigate_api_address:
            problems.append("frigate_api_address is not set")
        if bool(self.mqtt_username) != bool(self.mqtt_password):
            problems.append(
                "mqtt_username and mqtt_password must be either both specified or both unspecified"
            )
        if not self.upload_destinations:
            problems.append("upload_destinations cannot be empty; include one at least")
        seen: set[str] = set()
        for text in self.upload_destinations:
            try:
                descriptor = parse_descriptor(text)
            except DescriptorError as exc:
                problems.append(f"Invalid path descriptor '{text}': {exc}")
                continue
            if descriptor.id in seen:
                problems.append(f"Duplicate destination: {descriptor.id}")
            seen.add(descriptor.id)
        if self._data.get("collision_mode") not in (
            COLLISION_OVERWRITE,
            COLLISION_RENAME,
            COLLISION_SKIP,
        ):
            problems.append("collision_mode must be one of overwrite, rename, skip")
        if self.log_level not in _LOG_LEVELS:
            problems.append(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        try:
            int(self._data["mqtt_port"])
            float(self._data["retry_base_delay_seconds"])
            float(self._data["retry_max_delay_seconds"])
            int(self._data["retry_max_attempts"])
        except (TypeError, ValueError) as exc:
            problems.append(f"Numeric setting is not a number: {exc}")

        if problems:
            raise ConfigError("; ".join(problems))
