"""Release key workflows: generate, sign, verify.

Each workflow returns an outcome value instead of raising. A toolkit error
is captured in ``outcome.error``, so callers can tell an empty result (for
example "no key was archived") from a failure without catching exceptions.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .archive import ArchiveBuilder
from .config import SignerConfig
from .errors import ErrorKind, ReleaseToolError, RotationRequiredError
from .keygen import KeyPairGenerator
from .keystore import CURRENT_KEY_NAME, KeyStore, StoredPrivateKey
from .protector import select_protector
from .signer import ReleaseSigner, payload_digest
from .verify import SignatureVerifier

logger = logging.getLogger(__name__)


@dataclass
class _Outcome:
    error: Optional[ReleaseToolError] = field(default=None, kw_only=True)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None


@dataclass
class GenerateOutcome(_Outcome):
    """Result of generating a new current key."""

    archived_as: str = ""
    public_key_path: Optional[Path] = None
    public_key: bytes = b""
    fingerprint: str = ""
    protector: str = ""
    password_set: bool = False


@dataclass
class SignOutcome(_Outcome):
    """Result of signing a payload into a release archive."""

    key_name: str = CURRENT_KEY_NAME
    signature: bytes = b""
    archive_path: Optional[Path] = None
    archive_size: int = 0
    backup_path: Optional[Path] = None
    payload_digest: str = ""


@dataclass
class VerifyOutcome(_Outcome):
    """Result of verifying a release archive."""

    valid: bool = False
    payload_size: int = 0
    payload_digest: str = ""


@dataclass
class ExportOutcome(_Outcome):
    """Result of re-exporting a stored key's public half."""

    key_name: str = CURRENT_KEY_NAME
    public_key: bytes = b""
    public_key_path: Optional[Path] = None


def stage_public_key(public_key: bytes, path: Path) -> Path:
    """Write a raw public key to a temporary sibling of ``path``.

    Returns:
        The staged file, to be moved into place with ``commit_staged``
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}-", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(public_key)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return Path(tmp_name)


def commit_staged(staged: Path, path: Path) -> None:
    os.replace(staged, path)


def write_public_key(public_key: bytes, path: Path) -> None:
    """Write a raw public key, replacing any existing file atomically."""
    staged = stage_public_key(public_key, path)
    try:
        commit_staged(staged, path)
    except BaseException:
        staged.unlink(missing_ok=True)
        raise


class ReleaseManager:
    """Drives the key lifecycle and release signing workflows."""

    def __init__(self, config: Optional[SignerConfig] = None) -> None:
        """Initialize release manager.

        Args:
            config: Toolkit configuration; its key directory is the store root
        """
        self.config = config or SignerConfig()
        self.store = KeyStore(self.config.key_directory, self.config.storage.key_extension)
        self.generator = KeyPairGenerator()
        self.signer = ReleaseSigner(self.store, self.config.protection)
        self.archiver = ArchiveBuilder()

    def generate_keys(
        self,
        password: Optional[str],
        move_old: Optional[str],
        ignore_move_old: bool,
        public_key_path: Path,
    ) -> GenerateOutcome:
        """Generate a new current key, archiving the previous one.

        Steps, in order:
        1. Refuse without a rotation decision (no file is touched)
        2. Generate and protect the new key in memory
        3. Stage the public key next to ``public_key_path``
        4. Archive the current key as ``move_old`` (conflicts abort here)
        5. Write the new current key, then move the public key into place

        A failure after step 4 puts the previous current key back, so the
        key store is left as it was.

        Args:
            password: Optional password protecting the new private key
            move_old: Version name to archive the current key as
            ignore_move_old: Discard the current key instead of archiving it
            public_key_path: Where to write the raw public key

        Returns:
            GenerateOutcome; ``archived_as`` is empty if no key was moved

        Raises:
            OSError: If a file cannot be written, after any rollback
        """
        outcome = GenerateOutcome(password_set=password is not None)

        if move_old is None and not ignore_move_old:
            outcome.error = RotationRequiredError(
                "Generating without archiving loses the current private key for the previous "
                "version. Use --move-old VERSION to archive it or --ignore-move-old to continue."
            )
            return outcome

        try:
            keypair = self.generator.generate()
            protector = select_protector(self.config.protection)
            blob = protector.protect(keypair.private_key, password)
        except ReleaseToolError as e:
            logger.debug("Key generation failed: %s", e)
            outcome.error = e
            return outcome

        staged = stage_public_key(keypair.public_key, public_key_path)
        try:
            previous = self.store.load().encrypted_bytes if self.store.exists(CURRENT_KEY_NAME) else None
            outcome.archived_as = self.store.archive_current(move_old or "")
            try:
                self.store.write_current(blob)
                commit_staged(staged, public_key_path)
            except BaseException:
                self.store.restore_current(outcome.archived_as, previous)
                outcome.archived_as = ""
                raise
        except ReleaseToolError as e:
            logger.debug("Key generation failed: %s", e)
            outcome.error = e
            return outcome
        finally:
            staged.unlink(missing_ok=True)

        outcome.public_key = keypair.public_key
        outcome.public_key_path = Path(public_key_path)
        outcome.fingerprint = keypair.public_key_hash()
        outcome.protector = protector.backend.label
        del keypair

        logger.info("Generated new current key (%s protection)", outcome.protector)
        return outcome

    def sign_release(
        self,
        payload: bytes,
        output_path: Path,
        password: Optional[str] = None,
        key_name: Optional[str] = None,
    ) -> SignOutcome:
        """Sign ``payload`` and package it with its signature.

        Args:
            payload: Payload bytes
            output_path: Release archive path; an existing file is backed up
            password: Password of the signing key
            key_name: Stored key to use, ``current`` by default

        Returns:
            SignOutcome with the signature and archive details
        """
        outcome = SignOutcome(key_name=key_name or CURRENT_KEY_NAME)

        try:
            signature = self.signer.sign(password, payload, outcome.key_name)
            built = self.archiver.build(payload, signature, output_path)
        except ReleaseToolError as e:
            logger.debug("Signing failed: %s", e)
            outcome.error = e
            return outcome

        outcome.signature = signature
        outcome.archive_path = built.path
        outcome.archive_size = built.size
        outcome.backup_path = built.backup_path
        outcome.payload_digest = payload_digest(payload).hex()
        return outcome

    def verify_release(self, archive_path: Path, public_key: bytes) -> VerifyOutcome:
        """Verify a release archive against a public key.

        A bad signature gives ``valid=False``; a malformed archive or key is
        an error outcome.
        """
        outcome = VerifyOutcome()

        try:
            result = SignatureVerifier(public_key).verify_archive(archive_path)
        except ReleaseToolError as e:
            outcome.error = e
            return outcome

        outcome.valid = result.is_valid()
        outcome.payload_size = result.payload_size
        outcome.payload_digest = result.payload_digest
        return outcome

    def export_public_key(
        self,
        password: Optional[str],
        output_path: Path,
        key_name: Optional[str] = None,
    ) -> ExportOutcome:
        """Write the public key of a stored (current or archived) private key."""
        outcome = ExportOutcome(key_name=key_name or CURRENT_KEY_NAME)

        try:
            public_key = self.signer.public_key(password, outcome.key_name)
            write_public_key(public_key, output_path)
        except ReleaseToolError as e:
            outcome.error = e
            return outcome

        outcome.public_key = public_key
        outcome.public_key_path = Path(output_path)
        return outcome

    def list_keys(self) -> list[StoredPrivateKey]:
        return self.store.list_keys()
