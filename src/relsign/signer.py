"""Release payload signing.

The signed message is the SHA-256 digest of the payload, not the payload
itself, so signing cost does not grow with the release size. Ed25519
signatures are deterministic: the same key and payload always give the same
64 bytes.
"""

import logging
from typing import Optional

from Crypto.Hash import SHA256
from Crypto.Signature import eddsa

from .config import ProtectionConfig
from .errors import DecryptionError
from .keygen import PRIVATE_KEY_SIZE, public_key_from_private
from .keystore import CURRENT_KEY_NAME, KeyStore
from .protector import protector_for_blob

logger = logging.getLogger(__name__)

DIGEST_SIZE = 32
SIGNATURE_SIZE = 64


def payload_digest(payload: bytes) -> bytes:
    """Compute the 256-bit digest that is actually signed."""
    return SHA256.new(payload).digest()


def sign_payload(private_key: bytes, payload: bytes) -> bytes:
    """Sign the digest of ``payload`` with a raw Ed25519 private key.

    Args:
        private_key: 32-byte Ed25519 seed
        payload: Release payload

    Returns:
        64-byte signature
    """
    key = eddsa.import_private_key(private_key)
    return eddsa.new(key, "rfc8032").sign(payload_digest(payload))


class ReleaseSigner:
    """Signs payloads with keys held in a KeyStore."""

    def __init__(self, store: KeyStore, config: Optional[ProtectionConfig] = None) -> None:
        """Initialize release signer.

        Args:
            store: Store holding the protected private keys
            config: Protection settings used to open key blobs
        """
        self.store = store
        self.config = config or ProtectionConfig()

    def _unlock(self, password: Optional[str], key_name: str) -> bytes:
        record = self.store.load(key_name)
        protector = protector_for_blob(record.encrypted_bytes, self.config)
        private_key = protector.unprotect(record.encrypted_bytes, password)
        if len(private_key) != PRIVATE_KEY_SIZE:
            raise DecryptionError(f"Stored key {key_name!r} does not hold an Ed25519 private key")
        return private_key

    def sign(
        self,
        password: Optional[str],
        payload: bytes,
        key_name: str = CURRENT_KEY_NAME,
    ) -> bytes:
        """Sign a release payload.

        Args:
            password: Password the key was protected with
            payload: Payload bytes
            key_name: Stored key to sign with

        Returns:
            64-byte signature over the payload digest

        Raises:
            MissingKeyError: If no key is stored under ``key_name``
            DecryptionError: On a wrong password or corrupted key file
        """
        private_key = self._unlock(password, key_name)
        signature = sign_payload(private_key, payload)
        del private_key

        logger.debug("Signed %d-byte payload with key %s", len(payload), key_name)
        return signature

    def public_key(self, password: Optional[str], key_name: str = CURRENT_KEY_NAME) -> bytes:
        """Derive the raw public key of a stored private key."""
        private_key = self._unlock(password, key_name)
        public_key = public_key_from_private(private_key)
        del private_key
        return public_key
