"""
Machine identity resolution.

The fingerprint is SHA-256 over the platform signals (each followed by "|"),
hex-encoded. It is memoized per resolver and mirrored to a persistent store
(a flat file, or the registry on Windows). The persisted copy is advisory:
if it cannot be read the fingerprint is derived again and re-persisted.
"""

import hashlib
import logging
import re
import sys
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .errors import CollectionError, IdentityError
from .platform_id import IdentitySource, default_source

logger = logging.getLogger(__name__)

SIGNAL_SEPARATOR = "|"
FINGERPRINT_LEN = 64  # SHA-256 hex digest

_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")


def is_valid_fingerprint(value: str) -> bool:
    """Check that a value looks like a fingerprint (64 lowercase hex chars)."""
    return bool(_FINGERPRINT_RE.match(value or ""))


def derive_fingerprint(signals: list[str]) -> str:
    """Hash an ordered list of signals into a fingerprint."""
    combined = "".join(signal + SIGNAL_SEPARATOR for signal in signals)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


class FingerprintStore(ABC):
    """Persistent location for the fingerprint."""

    @abstractmethod
    def read(self) -> Optional[str]:
        """Return the stored fingerprint, or None if absent. May raise OSError."""

    @abstractmethod
    def write(self, fingerprint: str) -> None:
        """Persist the fingerprint. May raise OSError."""


class FileFingerprintStore(FingerprintStore):
    """Raw hex string in a flat file (Linux/macOS)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="ascii").strip() or None

    def write(self, fingerprint: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(fingerprint, encoding="ascii")


class RegistryFingerprintStore(FingerprintStore):
    """String value under HKLM (Windows)."""

    def __init__(self, subkey: str, value_name: str = "MachineID"):
        self.subkey = subkey
        self.value_name = value_name

    def read(self) -> Optional[str]:
        import winreg

        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, self.subkey) as key:
                value, _ = winreg.QueryValueEx(key, self.value_name)
        except FileNotFoundError:
            return None
        return str(value).strip() or None

    def write(self, fingerprint: str) -> None:
        import winreg

        with winreg.CreateKeyEx(
            winreg.HKEY_LOCAL_MACHINE, self.subkey, 0, winreg.KEY_SET_VALUE
        ) as key:
            winreg.SetValueEx(key, self.value_name, 0, winreg.REG_SZ, fingerprint)


class MemoryFingerprintStore(FingerprintStore):
    """Volatile store, for hosts without a writable state location."""

    def __init__(self, value: Optional[str] = None):
        self.value = value

    def read(self) -> Optional[str]:
        return self.value

    def write(self, fingerprint: str) -> None:
        self.value = fingerprint


def default_store(storage_dir: Optional[Path] = None) -> FingerprintStore:
    """Pick the OS-conventional fingerprint store."""
    from config import MACHINE_ID_FILE_NAME, REGISTRY_BASE_PATH, default_storage_dir

    if sys.platform == "win32":
        return RegistryFingerprintStore(REGISTRY_BASE_PATH)
    return FileFingerprintStore((storage_dir or default_storage_dir()) / MACHINE_ID_FILE_NAME)


class MachineIdentityResolver:
    """Resolves and caches the machine fingerprint."""

    def __init__(
        self,
        source: Optional[IdentitySource] = None,
        store: Optional[FingerprintStore] = None,
    ):
        """
        Args:
            source: Signal source (defaults to the one for this OS)
            store: Persistent store (defaults to the OS-conventional location)
        """
        self.source = source or default_source()
        self.store = store if store is not None else default_store()
        self._cached: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def is_cached(self) -> bool:
        return self._cached is not None

    def resolve(self) -> str:
        """
        Get the machine fingerprint.

        Returns:
            64-character hex fingerprint

        Raises:
            IdentityError: If no platform signal is available
        """
        cached = self._cached
        if cached is not None:
            return cached

        with self._lock:
            # Another caller may have finished while we waited
            if self._cached is not None:
                return self._cached

            fingerprint = self._read_persisted()
            if fingerprint is None:
                fingerprint = self._derive()
                self._persist(fingerprint)

            self._cached = fingerprint
            return fingerprint

    def clear_cache(self) -> None:
        """Forget the in-memory fingerprint. The next resolve() reads the store."""
        with self._lock:
            self._cached = None

    def _derive(self) -> str:
        try:
            signals = self.source.collect()
        except CollectionError as e:
            raise IdentityError(f"failed to generate machine ID: {e}") from e

        logger.info(f"Derived machine fingerprint from {len(signals)} signal(s)")
        return derive_fingerprint(signals)

    def _read_persisted(self) -> Optional[str]:
        try:
            value = self.store.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read persisted machine ID: {e}")
            return None

        if value is None:
            return None
        if not is_valid_fingerprint(value):
            logger.warning("Persisted machine ID is malformed, regenerating")
            return None
        return value

    def _persist(self, fingerprint: str) -> None:
        try:
            self.store.write(fingerprint)
        except OSError as e:
            logger.warning(f"Failed to save machine ID: {e}")


_default_resolver: Optional[MachineIdentityResolver] = None
_default_lock = threading.Lock()


def get_machine_id() -> str:
    """Resolve the fingerprint with the process-wide default resolver."""
    global _default_resolver

    with _default_lock:
        if _default_resolver is None:
            _default_resolver = MachineIdentityResolver()
        resolver = _default_resolver

    return resolver.resolve()
