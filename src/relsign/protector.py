"""At-rest protection of private signing keys.

A protected blob binds a private key to a context and an optional password:

- ``KeyringProtector`` mixes a random per-user master secret, kept in the OS
  keyring, into the key derivation. The blob only opens for the same user on
  the same machine.
- ``PasswordProtector`` derives the key from the password alone, so the blob
  opens on any platform.

Both backends derive an AES-256 key with scrypt and seal the secret with
AES-GCM. Blob layout::

    [4 bytes]  Magic "RSPK"
    [1 byte]   Format version
    [1 byte]   Backend ID
    [1 byte]   log2(scrypt N)
    [1 byte]   scrypt r
    [1 byte]   scrypt p
    [16 bytes] Salt
    [12 bytes] Nonce
    [16 bytes] GCM tag
    [N bytes]  Ciphertext

The header is authenticated as associated data.
"""

import logging
import secrets
import struct
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

import keyring
import keyring.errors
from Crypto.Cipher import AES
from Crypto.Protocol.KDF import scrypt
from keyring.backends.fail import Keyring as FailKeyring

from .config import SCRYPT_MAX_LOG_N, ProtectionConfig
from .errors import DecryptionError, ProtectorUnavailableError

logger = logging.getLogger(__name__)

BLOB_MAGIC = b"RSPK"
BLOB_VERSION = 1
HEADER_FORMAT = "<4sBBBBB"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
MASTER_SECRET_SIZE = 32
MASTER_SECRET_NAME = "master-secret"


class ProtectorBackend(Enum):
    """Secret protection backends, by the ID recorded in each blob."""

    KEYRING = 1
    PASSWORD = 2

    @property
    def label(self) -> str:
        return self.name.lower()


@runtime_checkable
class SecretProtector(Protocol):
    """Protocol for secret protection backends."""

    backend: ProtectorBackend

    def protect(self, secret: bytes, password: Optional[str]) -> bytes:
        """Seal a secret into an opaque blob."""
        ...

    def unprotect(self, blob: bytes, password: Optional[str]) -> bytes:
        """Recover the secret from a blob."""
        ...


def _password_bytes(password: Optional[str]) -> bytes:
    return password.encode("utf-8") if password is not None else b""


def read_blob_backend(blob: bytes) -> ProtectorBackend:
    """Return the backend that produced ``blob``.

    Raises:
        DecryptionError: If the blob header is missing or unknown
    """
    if len(blob) < HEADER_SIZE + SALT_SIZE + NONCE_SIZE + TAG_SIZE:
        raise DecryptionError("Protected key is truncated")

    magic, version, backend_id, _, _, _ = struct.unpack(HEADER_FORMAT, blob[:HEADER_SIZE])
    if magic != BLOB_MAGIC:
        raise DecryptionError("Not a protected key file")
    if version != BLOB_VERSION:
        raise DecryptionError(f"Unsupported protected key version: {version}")

    try:
        return ProtectorBackend(backend_id)
    except ValueError:
        raise DecryptionError(f"Unknown protection backend ID: {backend_id}") from None


class _ScryptAeadProtector:
    """Shared scrypt + AES-GCM sealing for the concrete backends."""

    backend: ProtectorBackend

    def __init__(self, config: Optional[ProtectionConfig] = None) -> None:
        self.config = config or ProtectionConfig()

    def _key_material(self, password: Optional[str], *, creating: bool) -> bytes:
        raise NotImplementedError

    def protect(self, secret: bytes, password: Optional[str]) -> bytes:
        """Seal ``secret`` under this backend's context and ``password``.

        Args:
            secret: Raw secret bytes
            password: Optional password mixed into the key derivation

        Returns:
            Protected blob
        """
        header = struct.pack(
            HEADER_FORMAT,
            BLOB_MAGIC,
            BLOB_VERSION,
            self.backend.value,
            self.config.scrypt_n.bit_length() - 1,
            self.config.scrypt_r,
            self.config.scrypt_p,
        )
        salt = secrets.token_bytes(SALT_SIZE)
        nonce = secrets.token_bytes(NONCE_SIZE)
        key = scrypt(
            self._key_material(password, creating=True),
            salt,
            KEY_SIZE,
            N=self.config.scrypt_n,
            r=self.config.scrypt_r,
            p=self.config.scrypt_p,
        )

        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        cipher.update(header)
        ciphertext, tag = cipher.encrypt_and_digest(secret)

        logger.debug("Protected %d-byte secret with %s backend", len(secret), self.backend.label)
        return header + salt + nonce + tag + ciphertext

    def unprotect(self, blob: bytes, password: Optional[str]) -> bytes:
        """Open a blob produced by :meth:`protect`.

        Raises:
            DecryptionError: On a wrong password, corruption or foreign context
        """
        backend = read_blob_backend(blob)
        if backend != self.backend:
            raise DecryptionError(
                f"Key was protected with the {backend.label} backend, not {self.backend.label}"
            )

        _, _, _, log_n, r, p = struct.unpack(HEADER_FORMAT, blob[:HEADER_SIZE])
        offset = HEADER_SIZE
        salt = blob[offset:offset + SALT_SIZE]
        offset += SALT_SIZE
        nonce = blob[offset:offset + NONCE_SIZE]
        offset += NONCE_SIZE
        tag = blob[offset:offset + TAG_SIZE]
        offset += TAG_SIZE
        ciphertext = blob[offset:]

        if not 1 <= log_n <= SCRYPT_MAX_LOG_N or r == 0 or p == 0:
            raise DecryptionError("Protected key has invalid derivation parameters")

        try:
            key = scrypt(
                self._key_material(password, creating=False),
                salt,
                KEY_SIZE,
                N=1 << log_n,
                r=r,
                p=p,
            )
        except ValueError as e:
            raise DecryptionError(f"Protected key has invalid derivation parameters: {e}") from e

        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        cipher.update(blob[:HEADER_SIZE])
        try:
            return cipher.decrypt_and_verify(ciphertext, tag)
        except ValueError:
            raise DecryptionError(
                "Unable to decrypt private key: wrong password or corrupted key file"
            ) from None


class PasswordProtector(_ScryptAeadProtector):
    """Portable backend: the password alone unlocks the key."""

    backend = ProtectorBackend.PASSWORD

    def _key_material(self, password: Optional[str], *, creating: bool) -> bytes:
        if password is None and creating:
            logger.warning(
                "Protecting key without a password; anyone with the key file can sign"
            )
        return _password_bytes(password)


class KeyringProtector(_ScryptAeadProtector):
    """OS keyring backend: key material is bound to the current user."""

    backend = ProtectorBackend.KEYRING

    @staticmethod
    def is_available() -> bool:
        """Check whether a usable OS keyring is configured."""
        try:
            return not isinstance(keyring.get_keyring(), FailKeyring)
        except keyring.errors.KeyringError:
            return False

    def _key_material(self, password: Optional[str], *, creating: bool) -> bytes:
        return self._master_secret(creating) + _password_bytes(password)

    def _master_secret(self, create: bool) -> bytes:
        service = self.config.keyring_service
        try:
            stored = keyring.get_password(service, MASTER_SECRET_NAME)
        except keyring.errors.KeyringError as e:
            raise DecryptionError(f"OS keyring is not accessible: {e}") from e

        if stored is not None:
            try:
                return bytes.fromhex(stored)
            except ValueError:
                raise DecryptionError("Master secret in OS keyring is corrupted") from None

        if not create:
            raise DecryptionError(
                "No master secret in the OS keyring; the key was protected by another user or machine"
            )

        master = secrets.token_bytes(MASTER_SECRET_SIZE)
        try:
            keyring.set_password(service, MASTER_SECRET_NAME, master.hex())
        except keyring.errors.KeyringError as e:
            raise ProtectorUnavailableError(f"Cannot store master secret in OS keyring: {e}") from e
        logger.info("Created master secret in OS keyring (service %r)", service)
        return master


_BACKENDS = {
    ProtectorBackend.KEYRING: KeyringProtector,
    ProtectorBackend.PASSWORD: PasswordProtector,
}


def select_protector(config: Optional[ProtectionConfig] = None) -> SecretProtector:
    """Get the protector used for newly generated keys.

    Priority for ``auto``:
    1. OS keyring (if a usable backend is configured)
    2. Password-derived key (always available)

    Raises:
        ProtectorUnavailableError: If ``keyring`` is requested but unusable
    """
    config = config or ProtectionConfig()

    if config.backend == "password":
        return PasswordProtector(config)

    if KeyringProtector.is_available():
        return KeyringProtector(config)

    if config.backend == "keyring":
        raise ProtectorUnavailableError("No usable OS keyring on this platform")

    logger.info("No usable OS keyring, falling back to password protection")
    return PasswordProtector(config)


def protector_for_blob(blob: bytes, config: Optional[ProtectionConfig] = None) -> SecretProtector:
    """Get the protector able to open ``blob``, by the backend recorded in it."""
    backend = read_blob_backend(blob)
    return _BACKENDS[backend](config)
