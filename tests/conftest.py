"""Shared test fixtures for trustgate."""

from __future__ import annotations

from pathlib import Path

import pytest

from trustgate.config import TrustgateConfig
from trustgate.security.device_id import DeviceIdResolver
from trustgate.security.install_identity import InstallIdentity
from trustgate.security.storage_crypto import StorageCrypto
from trustgate.vault.backends import MemoryVaultBackend
from trustgate.vault.store import EncryptedVault, SecretVault

TEST_DEVICE_ID = "test-device-0000"
TEST_INSTALL_UUID = "11111111-2222-4333-8444-555555555555"


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture()
def state_dir(tmp_path: Path) -> Path:
    """Private state directory for one test."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def device_ids() -> DeviceIdResolver:
    """Resolver pinned to a fixed id so nothing shells out."""
    return DeviceIdResolver("linux", override=TEST_DEVICE_ID)


@pytest.fixture()
def install_identity(state_dir: Path) -> InstallIdentity:
    return InstallIdentity(state_dir / "install.json", override=TEST_INSTALL_UUID)


@pytest.fixture()
def crypto(device_ids: DeviceIdResolver) -> StorageCrypto:
    return StorageCrypto(device_ids)


@pytest.fixture()
def memory_backend() -> MemoryVaultBackend:
    return MemoryVaultBackend()


@pytest.fixture()
def secret_vault(memory_backend: MemoryVaultBackend) -> SecretVault:
    return SecretVault(memory_backend)


@pytest.fixture()
def encrypted_vault(
    secret_vault: SecretVault,
    crypto: StorageCrypto,
    install_identity: InstallIdentity,
) -> EncryptedVault:
    return EncryptedVault(secret_vault, crypto, install_identity)


@pytest.fixture()
def config(state_dir: Path) -> TrustgateConfig:
    """Gateway-mode config on the memory backend with fixed device and install ids."""
    return TrustgateConfig(
        state_dir=state_dir,
        vault_backend="memory",
        install_uuid_override=TEST_INSTALL_UUID,
        device_id_override=TEST_DEVICE_ID,
        platform="linux",
    )
