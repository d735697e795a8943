"""Pytest configuration and fixtures for relsign tests."""

import os
import tempfile
from pathlib import Path
from typing import Generator

import keyring
import keyring.errors
import pytest
from keyring.backend import KeyringBackend
from keyring.backends.fail import Keyring as FailKeyring

from relsign.config import ProtectionConfig, SignerConfig, StorageConfig
from relsign.keystore import KeyStore
from relsign.release import ReleaseManager


class MemoryKeyring(KeyringBackend):
    """In-process keyring standing in for the OS keychain."""

    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise keyring.errors.PasswordDeleteError(username) from None


@pytest.fixture(autouse=True)
def no_os_keyring() -> None:
    """Keep tests away from the real OS keyring."""
    keyring.set_keyring(FailKeyring())


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    """Install an in-memory keyring backend."""
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    return backend


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def protection_config() -> ProtectionConfig:
    """Protection settings with a cheap scrypt cost."""
    return ProtectionConfig(scrypt_n=2**10, scrypt_r=8, scrypt_p=1)


@pytest.fixture
def key_dir(temp_dir: Path) -> Path:
    return temp_dir / "keys"


@pytest.fixture
def signer_config(key_dir: Path, protection_config: ProtectionConfig) -> SignerConfig:
    """Configuration rooted in the temporary directory."""
    return SignerConfig(
        storage=StorageConfig(key_directory=str(key_dir)),
        protection=protection_config,
    )


@pytest.fixture
def store(key_dir: Path) -> KeyStore:
    return KeyStore(key_dir)


@pytest.fixture
def manager(signer_config: SignerConfig) -> ReleaseManager:
    return ReleaseManager(signer_config)


@pytest.fixture
def sample_payload() -> bytes:
    """Sample release payload."""
    header = b"PK\x03\x04"  # Looks like a zip
    return header + os.urandom(4096)


@pytest.fixture
def payload_file(temp_dir: Path, sample_payload: bytes) -> Path:
    """Create a payload file on disk."""
    path = temp_dir / "payload.zip"
    path.write_bytes(sample_payload)
    return path


@pytest.fixture
def snapshot():
    """Return a function mapping every file under a directory to its contents."""

    def take(root: Path) -> dict[str, bytes]:
        return {
            str(p.relative_to(root)): p.read_bytes()
            for p in sorted(root.rglob("*"))
            if p.is_file()
        }

    return take
