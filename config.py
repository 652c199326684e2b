"""
Configuration for the POS Agent.
"""

import os
import sys
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

# Application version - update this for each release
VERSION = "1.0.0"

APP_NAME = "POSService"

# File names inside the storage directory
CONFIG_FILE_NAME = "config.enc"
DATABASE_FILE_NAME = "data.db"
MACHINE_ID_FILE_NAME = "machine_id"
SERVER_KEY_FILE_NAME = "server.key"

# Defaults for the encrypted agent configuration
DEFAULT_PORT = 8080
DEFAULT_SYNC_INTERVAL = 59  # seconds
DEFAULT_MAX_OFFLINE_HOURS = 24
DEFAULT_LOG_LEVEL = "info"

# Windows registry location of the persisted machine id
REGISTRY_BASE_PATH = r"SOFTWARE\POSService"


def default_storage_dir() -> Path:
    """OS-conventional data directory for the agent."""
    if sys.platform == "win32":
        program_data = os.getenv("PROGRAMDATA")
        if not program_data:
            # Fallback for development
            return Path(__file__).parent / "data"
        return Path(program_data) / APP_NAME
    return Path("/var/lib/posservice")


@dataclass
class Config:
    """Application configuration."""

    # Local API settings
    HOST: str = "127.0.0.1"
    PORT: int = int(os.getenv("POSAGENT_PORT", str(DEFAULT_PORT)))

    # Storage paths (ProgramData on Windows, /var/lib on Linux)
    STORAGE_DIR: Path = field(
        default_factory=lambda: Path(os.getenv("POSAGENT_DATA_DIR", "") or default_storage_dir())
    )

    LOG_LEVEL: str = os.getenv("POSAGENT_LOG_LEVEL", DEFAULT_LOG_LEVEL)

    # Base64 server key handed out by the backend (database encryption)
    SERVER_KEY: Optional[str] = os.getenv("POSAGENT_SERVER_KEY")

    @property
    def logs_dir(self) -> Path:
        """Directory for log files."""
        path = self.STORAGE_DIR / "logs"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def config_path(self) -> Path:
        """Path to the encrypted agent configuration."""
        return self.STORAGE_DIR / CONFIG_FILE_NAME

    @property
    def server_key_path(self) -> Path:
        """Path to a provisioned server key (base64 text)."""
        return self.STORAGE_DIR / SERVER_KEY_FILE_NAME

    def read_server_key_text(self) -> Optional[str]:
        """
        Get the provisioned server key text.

        The environment variable wins over the key file.

        Returns:
            Base64 key text, or None if nothing is provisioned
        """
        if self.SERVER_KEY:
            return self.SERVER_KEY.strip()
        if self.server_key_path.exists():
            return self.server_key_path.read_text().strip() or None
        return None


# Global config instance
config = Config()
