"""
Storage module for the POS Agent.

Handles:
- Encrypted settings database (server key, SQLite)
- Encrypted agent configuration file (machine key, atomic writes)
"""

from .config_file import AgentConfig, ConfigManager
from .settings_db import SettingsSnapshot, SettingsStore, SettingsTransaction

__all__ = [
    "AgentConfig",
    "ConfigManager",
    "SettingsSnapshot",
    "SettingsStore",
    "SettingsTransaction",
]
