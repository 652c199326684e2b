"""
Error taxonomy for the POS Agent security and storage layers.

Callers must not try to tell the causes of an AuthError apart: a tampered
envelope, a wrong key and an envelope from the other domain all look the same.
"""


class AgentError(Exception):
    """Base class for all POS Agent errors."""


class CollectionError(AgentError):
    """No machine-specific signal could be collected on this host."""


class IdentityError(AgentError):
    """The machine identity could not be resolved."""


class KeyMaterialError(AgentError, ValueError):
    """Key material is missing or has the wrong size."""


class FormatError(AgentError, ValueError):
    """Malformed transport encoding (bad base64, wrong decoded length)."""


class AuthError(AgentError):
    """An envelope failed to open."""

    def __init__(self, message: str = "envelope failed authentication"):
        super().__init__(message)


class NotFoundError(AgentError):
    """The requested setting does not exist."""

    def __init__(self, key: str):
        super().__init__(f"setting not found: {key}")
        self.key = key


class StorageError(AgentError):
    """I/O failure in the persistence layer."""


class ConfigError(AgentError):
    """The agent configuration is not loaded or is invalid."""
