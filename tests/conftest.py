"""Shared test fixtures for the POS Agent."""

from pathlib import Path

import pytest

from security.encryption import generate_server_key
from security.machine_id import FileFingerprintStore, MachineIdentityResolver
from security.platform_id import FixedIdentitySource
from storage.settings_db import SettingsStore

TEST_SIGNALS = ["test-product-id", "Test CPU @ 3.00GHz", "00:11:22:33:44:55", "test-host"]


@pytest.fixture
def server_key() -> bytes:
    """A fresh 32-byte server key."""
    return generate_server_key()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Temporary agent data directory."""
    path = tmp_path / "POSService"
    path.mkdir()
    return path


@pytest.fixture
def store(server_key: bytes, data_dir: Path):
    """An open settings store, closed after the test."""
    settings = SettingsStore(server_key, data_dir)
    yield settings
    settings.close()


@pytest.fixture
def resolver(data_dir: Path) -> MachineIdentityResolver:
    """Resolver over fixed signals with a file-backed store."""
    return MachineIdentityResolver(
        source=FixedIdentitySource(TEST_SIGNALS),
        store=FileFingerprintStore(data_dir / "machine_id"),
    )
