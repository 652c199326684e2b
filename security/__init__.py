"""
Security module for the POS Agent.

Handles:
- Machine identity (platform signals -> cached SHA-256 fingerprint)
- Config encryption (AES-256-GCM, PBKDF2-SHA3 key bound to the machine)
- Database encryption (ChaCha20-Poly1305, server-issued key)
"""

from .encryption import (
    ConfigCipher,
    DatabaseCipher,
    generate_server_key,
    server_key_from_text,
    server_key_to_text,
)
from .errors import (
    AgentError,
    AuthError,
    CollectionError,
    ConfigError,
    FormatError,
    IdentityError,
    KeyMaterialError,
    NotFoundError,
    StorageError,
)
from .machine_id import MachineIdentityResolver, get_machine_id
from .platform_id import FixedIdentitySource, IdentitySource, default_source

__all__ = [
    "ConfigCipher",
    "DatabaseCipher",
    "generate_server_key",
    "server_key_from_text",
    "server_key_to_text",
    "MachineIdentityResolver",
    "get_machine_id",
    "IdentitySource",
    "FixedIdentitySource",
    "default_source",
    "AgentError",
    "AuthError",
    "CollectionError",
    "ConfigError",
    "FormatError",
    "IdentityError",
    "KeyMaterialError",
    "NotFoundError",
    "StorageError",
]
