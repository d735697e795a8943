"""Tests for relsign protector module."""

import os

import pytest

from relsign.config import ProtectionConfig
from relsign.errors import DecryptionError, ProtectorUnavailableError
from relsign.protector import (
    BLOB_MAGIC,
    HEADER_SIZE,
    MASTER_SECRET_NAME,
    KeyringProtector,
    PasswordProtector,
    ProtectorBackend,
    SecretProtector,
    protector_for_blob,
    read_blob_backend,
    select_protector,
)


SECRET = bytes(range(32))


class TestPasswordProtector:
    """Tests for the portable password backend."""

    @pytest.fixture
    def protector(self, protection_config: ProtectionConfig) -> PasswordProtector:
        return PasswordProtector(protection_config)

    def test_implements_protocol(self, protector: PasswordProtector):
        """Test the backend satisfies the SecretProtector protocol."""
        assert isinstance(protector, SecretProtector)
        assert protector.backend == ProtectorBackend.PASSWORD

    def test_protect_unprotect(self, protector: PasswordProtector):
        """Test a secret comes back with the right password."""
        blob = protector.protect(SECRET, "abc")

        assert blob[:4] == BLOB_MAGIC
        assert SECRET not in blob
        assert protector.unprotect(blob, "abc") == SECRET

    def test_output_not_deterministic(self, protector: PasswordProtector):
        """Test fresh salt and nonce per blob."""
        assert protector.protect(SECRET, "abc") != protector.protect(SECRET, "abc")

    def test_wrong_password(self, protector: PasswordProtector):
        """Test a wrong password raises DecryptionError."""
        blob = protector.protect(SECRET, "abc")

        with pytest.raises(DecryptionError):
            protector.unprotect(blob, "abd")

    def test_missing_password(self, protector: PasswordProtector):
        """Test omitting the password when one was used fails."""
        blob = protector.protect(SECRET, "abc")

        with pytest.raises(DecryptionError):
            protector.unprotect(blob, None)

    def test_no_password(self, protector: PasswordProtector):
        """Test protection without a password round-trips."""
        blob = protector.protect(SECRET, None)
        assert protector.unprotect(blob, None) == SECRET

    def test_corrupted_ciphertext(self, protector: PasswordProtector):
        """Test a flipped ciphertext byte is detected."""
        blob = bytearray(protector.protect(SECRET, "abc"))
        blob[-1] ^= 0x01

        with pytest.raises(DecryptionError):
            protector.unprotect(bytes(blob), "abc")

    def test_corrupted_header(self, protector: PasswordProtector):
        """Test the header is authenticated."""
        blob = bytearray(protector.protect(SECRET, "abc"))
        blob[7] ^= 0x01  # scrypt r

        with pytest.raises(DecryptionError):
            protector.unprotect(bytes(blob), "abc")

    def test_truncated_blob(self, protector: PasswordProtector):
        """Test a truncated blob is rejected."""
        blob = protector.protect(SECRET, "abc")

        with pytest.raises(DecryptionError):
            protector.unprotect(blob[:HEADER_SIZE + 4], "abc")

    def test_not_a_blob(self, protector: PasswordProtector):
        """Test random bytes are rejected."""
        with pytest.raises(DecryptionError):
            protector.unprotect(os.urandom(100), "abc")

    def test_readable_after_config_change(self, protector: PasswordProtector):
        """Test derivation cost is read from the blob, not the config."""
        blob = protector.protect(SECRET, "abc")
        other = PasswordProtector(ProtectionConfig(scrypt_n=2**11))

        assert other.unprotect(blob, "abc") == SECRET


class TestKeyringProtector:
    """Tests for the OS keyring backend."""

    @pytest.fixture
    def protector(self, memory_keyring, protection_config: ProtectionConfig) -> KeyringProtector:
        return KeyringProtector(protection_config)

    def test_available_with_keyring(self, memory_keyring):
        """Test availability follows the configured keyring."""
        assert KeyringProtector.is_available() is True

    def test_unavailable_without_keyring(self):
        """Test the fail keyring is not usable."""
        assert KeyringProtector.is_available() is False

    def test_protect_unprotect(self, protector: KeyringProtector, memory_keyring):
        """Test round trip creates a master secret."""
        blob = protector.protect(SECRET, None)

        assert read_blob_backend(blob) == ProtectorBackend.KEYRING
        assert ("relsign", MASTER_SECRET_NAME) in memory_keyring.passwords
        assert protector.unprotect(blob, None) == SECRET

    def test_master_secret_reused(self, protector: KeyringProtector, memory_keyring):
        """Test the master secret is created once."""
        protector.protect(SECRET, None)
        first = dict(memory_keyring.passwords)
        protector.protect(SECRET, None)

        assert memory_keyring.passwords == first

    def test_password_is_mixed_in(self, protector: KeyringProtector):
        """Test both context and password are required."""
        blob = protector.protect(SECRET, "abc")

        assert protector.unprotect(blob, "abc") == SECRET
        with pytest.raises(DecryptionError):
            protector.unprotect(blob, "wrong")
        with pytest.raises(DecryptionError):
            protector.unprotect(blob, None)

    def test_other_context(self, protector: KeyringProtector, memory_keyring):
        """Test a blob does not open once the master secret is gone."""
        blob = protector.protect(SECRET, "abc")
        memory_keyring.passwords.clear()

        with pytest.raises(DecryptionError):
            protector.unprotect(blob, "abc")

        # Still must not create a new master secret while opening
        assert memory_keyring.passwords == {}

    def test_different_service(self, protector: KeyringProtector, protection_config: ProtectionConfig):
        """Test a different keyring service is a different context."""
        blob = protector.protect(SECRET, "abc")
        other = KeyringProtector(protection_config.model_copy(update={"keyring_service": "other"}))

        with pytest.raises(DecryptionError):
            other.unprotect(blob, "abc")

    def test_rejects_password_blob(self, protector: KeyringProtector, protection_config: ProtectionConfig):
        """Test a backend refuses blobs made by another backend."""
        blob = PasswordProtector(protection_config).protect(SECRET, "abc")

        with pytest.raises(DecryptionError):
            protector.unprotect(blob, "abc")


class TestProtectorSelection:
    """Tests for backend selection."""

    def test_auto_without_keyring(self, protection_config: ProtectionConfig):
        """Test auto falls back to the password backend."""
        assert isinstance(select_protector(protection_config), PasswordProtector)

    def test_auto_with_keyring(self, memory_keyring, protection_config: ProtectionConfig):
        """Test auto prefers the OS keyring."""
        assert isinstance(select_protector(protection_config), KeyringProtector)

    def test_forced_password(self, memory_keyring):
        """Test the password backend can be forced."""
        config = ProtectionConfig(backend="password")
        assert isinstance(select_protector(config), PasswordProtector)

    def test_forced_keyring_unavailable(self):
        """Test an explicit keyring request fails without one."""
        with pytest.raises(ProtectorUnavailableError):
            select_protector(ProtectionConfig(backend="keyring"))

    def test_protector_for_blob(self, memory_keyring, protection_config: ProtectionConfig):
        """Test dispatch on the backend recorded in the blob."""
        keyring_blob = KeyringProtector(protection_config).protect(SECRET, None)
        password_blob = PasswordProtector(protection_config).protect(SECRET, "abc")

        assert isinstance(protector_for_blob(keyring_blob, protection_config), KeyringProtector)
        assert isinstance(protector_for_blob(password_blob, protection_config), PasswordProtector)

    def test_protector_for_garbage(self):
        """Test dispatch on an unreadable blob raises DecryptionError."""
        with pytest.raises(DecryptionError):
            protector_for_blob(b"not a key")
