"""Versioned storage of protected private keys.

Each key lives in its own file under the key directory: ``current<ext>`` is
the active signing key, ``<version><ext>`` is a key retired with a past
release. Rotation moves ``current`` to a version name with a single rename.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import FileConflictError, MissingKeyError

logger = logging.getLogger(__name__)

CURRENT_KEY_NAME = "current"
DEFAULT_KEY_EXTENSION = ".bin"


@dataclass
class StoredPrivateKey:
    """A protected private key record."""

    name: str
    path: Path
    encrypted_bytes: bytes

    @property
    def is_current(self) -> bool:
        return self.name == CURRENT_KEY_NAME


class KeyStore:
    """Resolves, rotates and persists protected private keys."""

    def __init__(self, root: Path, extension: str = DEFAULT_KEY_EXTENSION) -> None:
        """Initialize key store.

        Nothing is created on disk until a key is written.

        Args:
            root: Key storage directory
            extension: File extension of key files, including the dot
        """
        self.root = Path(root)
        self.extension = extension

    def resolve_path(self, name: str) -> Path:
        """Map a key name to its file path. Performs no I/O.

        Raises:
            ValueError: If the name is empty or escapes the key directory
        """
        if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
            raise ValueError(f"Invalid key name: {name!r}")
        return self.root / f"{name}{self.extension}"

    def exists(self, name: str) -> bool:
        return self.resolve_path(name).is_file()

    def load(self, name: str = CURRENT_KEY_NAME) -> StoredPrivateKey:
        """Load a protected key record.

        Raises:
            MissingKeyError: If no key is stored under ``name``
        """
        path = self.resolve_path(name)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            if name == CURRENT_KEY_NAME:
                raise MissingKeyError(
                    "No current private key found; run generatekeys first"
                ) from None
            raise MissingKeyError(f"No private key stored for version {name!r}") from None

        return StoredPrivateKey(name=name, path=path, encrypted_bytes=data)

    def archive_current(self, target_name: str) -> str:
        """Retire the current key under ``target_name``.

        Args:
            target_name: Version name to archive the current key as. An empty
                name means "do not archive".

        Returns:
            ``target_name`` if the current key was moved, ``""`` if there was
            nothing to do

        Raises:
            FileConflictError: If a key already exists under ``target_name``.
                No file is touched in that case.
        """
        if target_name == "":
            return ""

        target = self.resolve_path(target_name)
        if target.exists():
            raise FileConflictError(
                f"Private key file for version {target_name!r} already exists: {target}"
            )

        current = self.resolve_path(CURRENT_KEY_NAME)
        if not current.is_file():
            logger.debug("No current key to archive as %s", target_name)
            return ""

        os.rename(current, target)
        logger.info("Archived current private key as %s", target_name)
        return target_name

    def write_current(self, encrypted_blob: bytes) -> Path:
        """Replace the current key with ``encrypted_blob``.

        The blob is written to a temporary sibling and renamed into place.

        Returns:
            Path of the current key file
        """
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.resolve_path(CURRENT_KEY_NAME)

        fd, tmp_name = tempfile.mkstemp(prefix=".current-", suffix=".tmp", dir=self.root)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(encrypted_blob)
            # Set restrictive permissions
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("Wrote current private key to %s", path)
        return path

    def restore_current(self, archived_as: str, previous: Optional[bytes]) -> None:
        """Undo ``archive_current`` and ``write_current`` after a failed rotation.

        Args:
            archived_as: Name returned by ``archive_current``, ``""`` if nothing moved
            previous: Current key blob before the rotation, None if there was none
        """
        current = self.resolve_path(CURRENT_KEY_NAME)
        if archived_as:
            os.replace(self.resolve_path(archived_as), current)
        elif previous is not None:
            self.write_current(previous)
        else:
            current.unlink(missing_ok=True)
        logger.warning("Restored previous current private key after failed rotation")

    def list_keys(self) -> list[StoredPrivateKey]:
        """List stored keys, ``current`` first, then archived versions by name."""
        if not self.root.is_dir():
            return []

        keys = []
        for path in self.root.iterdir():
            if not path.is_file() or path.name.startswith("."):
                continue
            if not path.name.endswith(self.extension):
                continue
            name = path.name[: -len(self.extension)]
            if not name:
                continue
            keys.append(StoredPrivateKey(name=name, path=path, encrypted_bytes=path.read_bytes()))

        keys.sort(key=lambda k: (not k.is_current, k.name))
        return keys
