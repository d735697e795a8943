"""Signature verification for signed releases."""

from dataclasses import dataclass
from pathlib import Path

from Crypto.Signature import eddsa

from .archive import ArchiveBuilder
from .errors import MalformedInputError
from .keygen import PUBLIC_KEY_SIZE
from .signer import SIGNATURE_SIZE, payload_digest


def verify_signature(payload: bytes, signature: bytes, public_key: bytes) -> bool:
    """Check a signature over the digest of ``payload``.

    A mismatch is a ``False`` result, never an exception.

    Args:
        payload: Payload bytes
        signature: 64-byte Ed25519 signature
        public_key: 32-byte Ed25519 public key

    Returns:
        True if the signature was made by the matching private key

    Raises:
        MalformedInputError: If the key or signature cannot be decoded
    """
    if len(signature) != SIGNATURE_SIZE:
        raise MalformedInputError(
            f"Signature must be {SIGNATURE_SIZE} bytes, got {len(signature)}"
        )
    if len(public_key) != PUBLIC_KEY_SIZE:
        raise MalformedInputError(
            f"Public key must be {PUBLIC_KEY_SIZE} bytes, got {len(public_key)}"
        )

    try:
        key = eddsa.import_public_key(public_key)
    except ValueError:
        raise MalformedInputError("Public key is not a valid Ed25519 point") from None

    try:
        eddsa.new(key, "rfc8032").verify(payload_digest(payload), signature)
    except ValueError:
        return False
    return True


@dataclass
class VerificationResult:
    """Result of release archive verification."""

    signature_valid: bool = False
    payload_size: int = 0
    payload_digest: str = ""
    details: str = ""

    def is_valid(self) -> bool:
        return self.signature_valid


class SignatureVerifier:
    """Verifies release archives against a trusted public key."""

    def __init__(self, public_key: bytes) -> None:
        """Initialize verifier.

        Args:
            public_key: Raw 32-byte public key

        Raises:
            MalformedInputError: If the key has the wrong length
        """
        if len(public_key) != PUBLIC_KEY_SIZE:
            raise MalformedInputError(
                f"Public key must be {PUBLIC_KEY_SIZE} bytes, got {len(public_key)}"
            )
        self.public_key = public_key

    def verify(self, payload: bytes, signature: bytes) -> bool:
        return verify_signature(payload, signature, self.public_key)

    def verify_archive(self, archive_path: Path) -> VerificationResult:
        """Unpack a release archive and verify its signature.

        Raises:
            MalformedArchiveError: If the archive lacks either entry
            MalformedInputError: If the signature has the wrong length
        """
        payload, signature = ArchiveBuilder().unpack(archive_path)

        result = VerificationResult(
            payload_size=len(payload),
            payload_digest=payload_digest(payload).hex(),
        )
        result.signature_valid = self.verify(payload, signature)
        result.details = (
            "Signature verified" if result.signature_valid else "Signature verification failed"
        )
        return result
