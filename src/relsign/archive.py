"""Release archive building for signed payloads.

A release archive is a zip file with exactly two entries:
- payload.zip: The release payload, byte for byte
- signature.sig: 64-byte Ed25519 signature over the payload digest
"""

import io
import logging
import os
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import MalformedArchiveError

logger = logging.getLogger(__name__)

PAYLOAD_ENTRY = "payload.zip"
SIGNATURE_ENTRY = "signature.sig"
BACKUP_SUFFIX = ".backup"


@dataclass
class ArchiveBuildResult:
    """Outcome of writing a release archive."""

    path: Path
    size: int
    backup_path: Optional[Path] = None


def backup_path_for(output_path: Path) -> Path:
    """Pick the backup name for an existing output file.

    ``<output>.backup`` if free, else ``<output>.backup-<i>`` for the
    smallest free ``i >= 1``.
    """
    candidate = Path(f"{output_path}{BACKUP_SUFFIX}")
    if not candidate.exists():
        return candidate

    i = 1
    while Path(f"{output_path}{BACKUP_SUFFIX}-{i}").exists():
        i += 1
    return Path(f"{output_path}{BACKUP_SUFFIX}-{i}")


class ArchiveBuilder:
    """Packs and unpacks release archives."""

    def rotate_existing(self, output_path: Path) -> Optional[Path]:
        """Move an existing output file out of the way.

        Returns:
            The backup path, or None if ``output_path`` did not exist
        """
        output_path = Path(output_path)
        if not output_path.exists():
            return None

        backup = backup_path_for(output_path)
        os.rename(output_path, backup)
        logger.info("Moved %s to %s", output_path, backup)
        return backup

    def build(self, payload: bytes, signature: bytes, output_path: Path) -> ArchiveBuildResult:
        """Write a release archive, backing up any existing file first.

        Args:
            payload: Payload bytes
            signature: Signature bytes
            output_path: Archive path

        Returns:
            ArchiveBuildResult with the final size and backup location
        """
        output_path = Path(output_path)
        archive_data = self.pack(payload, signature)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{output_path.name}-", suffix=".tmp", dir=output_path.parent
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(archive_data)

            backup = self.rotate_existing(output_path)
            try:
                os.replace(tmp_name, output_path)
            except BaseException:
                if backup is not None:
                    os.rename(backup, output_path)
                raise
        finally:
            Path(tmp_name).unlink(missing_ok=True)

        logger.debug("Wrote release archive %s (%d bytes)", output_path, len(archive_data))
        return ArchiveBuildResult(path=output_path, size=len(archive_data), backup_path=backup)

    def pack(self, payload: bytes, signature: bytes) -> bytes:
        """Build the archive in memory.

        Returns:
            Complete archive as bytes
        """
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            self._add_to_zip(zf, PAYLOAD_ENTRY, payload)
            self._add_to_zip(zf, SIGNATURE_ENTRY, signature)
        return buffer.getvalue()

    def _add_to_zip(self, zf: zipfile.ZipFile, name: str, data: bytes) -> None:
        """Add data to zip archive.

        Args:
            zf: ZipFile object
            name: File name in archive
            data: File contents
        """
        info = zipfile.ZipInfo(filename=name, date_time=datetime.now().timetuple()[:6])
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        zf.writestr(info, data)

    def unpack(self, archive_path: Path) -> tuple[bytes, bytes]:
        """Extract payload and signature from a release archive.

        Returns:
            Tuple of (payload, signature)

        Raises:
            MalformedArchiveError: If the file is not an archive, an entry is
                missing or its data is corrupted
        """
        try:
            with zipfile.ZipFile(archive_path) as zf:
                names = set(zf.namelist())
                missing = [n for n in (PAYLOAD_ENTRY, SIGNATURE_ENTRY) if n not in names]
                if missing:
                    raise MalformedArchiveError(
                        f"Archive is not a signed release, missing {', '.join(missing)}"
                    )
                return zf.read(PAYLOAD_ENTRY), zf.read(SIGNATURE_ENTRY)
        except zipfile.BadZipFile as e:
            raise MalformedArchiveError(f"Not a release archive: {e}") from e
        except (zlib.error, EOFError) as e:
            raise MalformedArchiveError(f"Corrupted release archive: {e}") from e
