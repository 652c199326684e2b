"""
Encrypted agent configuration.

The configuration is serialized to JSON, sealed with the machine-bound
ConfigCipher and written as a single base64 envelope. Writes go to a
temporary file in the same directory which then replaces the target.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Callable, Optional

from config import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_OFFLINE_HOURS,
    DEFAULT_PORT,
    DEFAULT_SYNC_INTERVAL,
)
from security.encryption import ConfigCipher
from security.errors import ConfigError, StorageError

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ("debug", "info", "warn", "error")


@dataclass
class AgentConfig:
    """Machine-bound agent configuration."""
    server_url: str = ""
    store_id: str = ""
    port: int = DEFAULT_PORT
    sync_interval: int = DEFAULT_SYNC_INTERVAL  # seconds
    max_offline_hours: int = DEFAULT_MAX_OFFLINE_HOURS
    log_level: str = DEFAULT_LOG_LEVEL
    encrypted: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentConfig":
        """Reconstruct from dictionary, ignoring unknown fields."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def validate(self) -> None:
        """
        Validate the configuration.

        Raises:
            ConfigError: On the first invalid field
        """
        if not self.server_url:
            raise ConfigError("server_url cannot be empty")
        if not self.store_id:
            raise ConfigError("store_id cannot be empty")
        if not 1 <= self.port <= 65535:
            raise ConfigError("port must be between 1 and 65535")
        if self.sync_interval < 1:
            raise ConfigError("sync_interval must be at least 1 second")
        if self.max_offline_hours < 1:
            raise ConfigError("max_offline_hours must be at least 1 hour")
        if self.log_level not in VALID_LOG_LEVELS:
            raise ConfigError("invalid log_level: must be debug, info, warn, or error")


class ConfigManager:
    """Loads and saves the encrypted agent configuration."""

    def __init__(self, fingerprint: str, config_path: Path):
        """
        Args:
            fingerprint: Machine fingerprint (binds the file to this machine)
            config_path: Path of the encrypted config file

        Raises:
            KeyMaterialError: If the fingerprint is empty
        """
        self._cipher = ConfigCipher(fingerprint)
        self.config_path = Path(config_path)
        self._config: Optional[AgentConfig] = None
        self._lock = threading.RLock()

    @property
    def is_loaded(self) -> bool:
        return self._config is not None

    def load(self) -> AgentConfig:
        """
        Load the configuration from the encrypted file.

        A missing file yields the defaults.

        Raises:
            AuthError: If the file was sealed on another machine or tampered with
            ConfigError: If the decrypted content is not a valid config document
            StorageError: If the file cannot be read
        """
        with self._lock:
            if not self.config_path.exists():
                logger.info("No config file found, using defaults")
                self._config = AgentConfig()
                return copy.copy(self._config)

            try:
                envelope = self.config_path.read_text(encoding="ascii")
            except (OSError, UnicodeDecodeError) as e:
                raise StorageError(f"failed to read config file: {e}") from e

            plaintext = self._cipher.open(envelope.strip())

            try:
                data = json.loads(plaintext.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ConfigError(f"failed to parse config JSON: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError("config JSON must be an object")

            loaded = AgentConfig.from_dict(data)
            loaded.encrypted = True
            self._config = loaded
            return copy.copy(loaded)

    def save(self, agent_config: AgentConfig) -> None:
        """
        Encrypt and atomically replace the config file.

        Args:
            agent_config: Configuration to persist
        """
        with self._lock:
            agent_config.encrypted = True
            payload = json.dumps(agent_config.to_dict(), indent=2).encode("utf-8")
            envelope = self._cipher.seal(payload)

            self._atomic_write(envelope)
            self._config = copy.copy(agent_config)
            logger.info(f"Configuration saved to {self.config_path}")

    def _atomic_write(self, envelope: str) -> None:
        directory = self.config_path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"failed to create config directory: {e}") from e

        fd, tmp_name = tempfile.mkstemp(
            dir=directory, prefix=f".{self.config_path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="ascii") as handle:
                handle.write(envelope)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.config_path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise StorageError(f"failed to write config file: {e}") from e

    def get(self) -> AgentConfig:
        """
        Get a copy of the current configuration.

        Raises:
            ConfigError: If load() has not been called
        """
        with self._lock:
            if self._config is None:
                raise ConfigError("configuration not loaded")
            return copy.copy(self._config)

    def update(self, update_func: Callable[[AgentConfig], None]) -> AgentConfig:
        """
        Apply update_func to the loaded configuration and save it.

        The in-memory configuration is left untouched if update_func or the
        save fails.
        """
        with self._lock:
            if self._config is None:
                raise ConfigError("configuration not loaded")

            updated = copy.copy(self._config)
            update_func(updated)
            self.save(updated)
            return copy.copy(updated)
