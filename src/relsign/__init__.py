"""Release Signing Toolkit.

This package provides tools for signing software releases, including:
- Ed25519 key generation with versioned key rotation
- Encrypted private key storage (OS keyring or password)
- Release archive signing and backup rotation
- Signature verification
"""

__version__ = "0.1.0"

from .archive import ArchiveBuilder
from .errors import (
    DecryptionError,
    ErrorKind,
    FileConflictError,
    MalformedArchiveError,
    MalformedInputError,
    MissingKeyError,
    ReleaseToolError,
)
from .keygen import KeyPair, KeyPairGenerator
from .keystore import KeyStore
from .release import ReleaseManager
from .signer import ReleaseSigner
from .verify import SignatureVerifier, verify_signature

__all__ = [
    "ArchiveBuilder",
    "DecryptionError",
    "ErrorKind",
    "FileConflictError",
    "KeyPair",
    "KeyPairGenerator",
    "KeyStore",
    "MalformedArchiveError",
    "MalformedInputError",
    "MissingKeyError",
    "ReleaseManager",
    "ReleaseSigner",
    "ReleaseToolError",
    "SignatureVerifier",
    "verify_signature",
]
