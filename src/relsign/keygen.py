"""Ed25519 key generation for release signing.

Keys are raw 32-byte values: the private key is the RFC 8032 seed, the
public key is the encoded curve point.
"""

import secrets
from dataclasses import dataclass, field

from Crypto.Hash import SHA256
from Crypto.Signature import eddsa


PRIVATE_KEY_SIZE = 32
PUBLIC_KEY_SIZE = 32


@dataclass
class KeyPair:
    """An Ed25519 key pair, held in memory only."""

    private_key: bytes = field(repr=False)
    public_key: bytes

    def public_key_hash(self) -> str:
        """Get hash of public key for identification."""
        return SHA256.new(self.public_key).hexdigest()


def public_key_from_private(private_key: bytes) -> bytes:
    """Derive the raw public key from a raw private key.

    Raises:
        ValueError: If the private key is not 32 bytes
    """
    if len(private_key) != PRIVATE_KEY_SIZE:
        raise ValueError(f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(private_key)}")
    key = eddsa.import_private_key(private_key)
    return key.public_key().export_key(format="raw")


class KeyPairGenerator:
    """Produces fresh Ed25519 signing key pairs."""

    def generate(self) -> KeyPair:
        """Generate a new key pair from the OS CSPRNG.

        Returns:
            Key pair with raw private and public keys
        """
        seed = secrets.token_bytes(PRIVATE_KEY_SIZE)
        return KeyPair(private_key=seed, public_key=public_key_from_private(seed))
